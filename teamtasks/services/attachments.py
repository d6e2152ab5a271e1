"""
Completion attachments: validation and the blob storage they land in.

Validation always runs before any upload is attempted.
"""
import logging
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from teamtasks import config
from teamtasks.errors import TransientBackendError, ValidationFailed

logger = logging.getLogger(__name__)

ALLOWED_CONTENT_TYPES = {
    "application/pdf": "pdf",
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/png": "png",
    "application/msword": "doc",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": "docx",
}

ALLOWED_EXTENSIONS = {"pdf", "jpg", "jpeg", "png", "doc", "docx"}


@dataclass
class Attachment:
    filename: str
    content_type: str
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def extension(self) -> str:
        _, dot, ext = self.filename.rpartition(".")
        return ext.lower() if dot else ""


def validate_attachment(attachment: Attachment, max_bytes: int = config.MAX_ATTACHMENT_BYTES) -> None:
    """Reject oversized files and anything that isn't PDF, JPEG, PNG, DOC or DOCX."""
    if attachment.size > max_bytes:
        raise ValidationFailed(
            "File size must be less than 10MB",
            {"attachment": "File size must be less than 10MB"},
        )
    if attachment.content_type not in ALLOWED_CONTENT_TYPES or attachment.extension not in ALLOWED_EXTENSIONS:
        raise ValidationFailed(
            "Only PDF, images, and Word documents are allowed",
            {"attachment": "Only PDF, images, and Word documents are allowed"},
        )


def attachment_path(task_id: str, attachment: Attachment, timestamp_ms: Optional[int] = None) -> str:
    """Storage key convention: ``{task_id}/{timestamp}.{ext}``."""
    if timestamp_ms is None:
        timestamp_ms = int(time.time() * 1000)
    ext = attachment.extension or ALLOWED_CONTENT_TYPES.get(attachment.content_type, "bin")
    return f"{task_id}/{timestamp_ms}.{ext}"


class LocalBlobStorage:
    """Bucket backed by a local directory and served under ``public_url``."""

    def __init__(self, root: str = config.ATTACHMENT_DIR, public_url: str = config.PUBLIC_URL):
        self.root = Path(root)
        self.public_url = public_url.rstrip("/")

    def upload(self, path: str, data: bytes) -> None:
        target = (self.root / path).resolve()
        if self.root.resolve() not in target.parents:
            raise ValueError(f"Refusing to write outside the bucket: {path}")
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            with open(target, "wb") as f:
                f.write(data)
        except OSError as e:
            logger.warning("Attachment upload to %s failed: %s", path, e)
            raise TransientBackendError(detail=str(e)) from e

    def get_public_url(self, path: str) -> str:
        return f"{self.public_url}/{path}"

    def exists(self, path: str) -> bool:
        return os.path.exists(self.root / path)
