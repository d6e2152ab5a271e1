"""
Error taxonomy and the single boundary that turns errors into user-facing text.

Validation failures and access denials are raised locally, before any
backend call. Conflicts and transient failures come back from the
persistence or auth layer. Whatever the source, end users only ever see
``user_message(exc)``; raw detail goes to the log, and only in development.
"""
import logging
from typing import Dict, Optional

from teamtasks import config

logger = logging.getLogger(__name__)

ACCESS_RESTRICTED_MESSAGE = (
    "Access restricted. Please contact your Admin for permission to join the workspace."
)
GENERIC_RETRY_MESSAGE = "Something went wrong. Please try again."


class TeamTasksError(Exception):
    """Base class for every error the service raises on purpose."""
    code = "error"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class AccessDenied(TeamTasksError):
    """The policy decision was Deny. Never downgraded to a partial success."""
    code = "access_denied"


class ValidationFailed(TeamTasksError):
    code = "validation_failed"

    def __init__(self, message: str, field_errors: Optional[Dict[str, str]] = None):
        self.field_errors = field_errors or {}
        super().__init__(message)


class Conflict(TeamTasksError):
    """A unique key already exists (e.g. duplicate allow-list email)."""
    code = "conflict"


class NotFound(TeamTasksError):
    code = "not_found"


class TransientBackendError(TeamTasksError):
    """Network or service failure. Retryable; detail is never shown to users."""
    code = "transient"

    def __init__(self, message: str = GENERIC_RETRY_MESSAGE, detail: Optional[str] = None):
        self.detail = detail
        super().__init__(message)


class NotAllowedToAuthenticate(TeamTasksError):
    """Email is not on the allow-list. Fatal for this attempt."""
    code = "not_allowed"

    def __init__(self, message: str = ACCESS_RESTRICTED_MESSAGE):
        super().__init__(message)


class InvalidCredentials(TeamTasksError):
    code = "invalid_credentials"

    def __init__(self, message: str = "Invalid email or password"):
        super().__init__(message)


def user_message(exc: BaseException) -> str:
    """Message safe to show an end user for ``exc``."""
    if isinstance(exc, TransientBackendError):
        return GENERIC_RETRY_MESSAGE
    if isinstance(exc, TeamTasksError):
        return exc.message
    return GENERIC_RETRY_MESSAGE


def handle_error(exc: BaseException, context: Optional[str] = None) -> str:
    """Log ``exc`` (with detail only in development) and return its user message."""
    if config.is_development():
        logger.error("[%s] %r", context or "error", exc, exc_info=exc)
    elif not isinstance(exc, TeamTasksError) or isinstance(exc, TransientBackendError):
        logger.error("[%s] %s", context or "error", type(exc).__name__)
    return user_message(exc)
