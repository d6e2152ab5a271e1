"""Runtime configuration read from the environment (and an optional .env file)."""
import os

from dotenv import load_dotenv

load_dotenv()

# "development" logs raw error detail; anything else keeps it out of the logs
ENVIRONMENT = os.getenv("TEAMTASKS_ENV", "production")

# Local directory backing the attachment bucket
ATTACHMENT_DIR = os.getenv("TEAMTASKS_ATTACHMENT_DIR", "./attachments")

# Base URL the attachment bucket is served from
PUBLIC_URL = os.getenv("TEAMTASKS_PUBLIC_URL", "http://localhost:8000/files").rstrip("/")

# 0 disables the periodic deadline sweep
DEADLINE_SWEEP_SECONDS = int(os.getenv("TEAMTASKS_DEADLINE_SWEEP_SECONDS", "0"))

# First admin seeded into an empty database
ADMIN_EMAIL = os.getenv("TEAMTASKS_ADMIN_EMAIL")
ADMIN_PASSWORD = os.getenv("TEAMTASKS_ADMIN_PASSWORD")
ADMIN_NAME = os.getenv("TEAMTASKS_ADMIN_NAME", "Workspace Admin")

# Whether people signing up may pick manager or admin for themselves
SIGNUP_ROLE_CHOICE = os.getenv("TEAMTASKS_SIGNUP_ROLE_CHOICE", "true").lower() in ("1", "true", "yes")

MAX_ATTACHMENT_BYTES = 10 * 1024 * 1024


def is_development() -> bool:
    return ENVIRONMENT.lower() == "development"
