"""
Internal audit logging model - NOT a user-facing domain object.

Provides an append-only trail of policy denials and task lifecycle
events. It is not exposed in user-facing APIs.
"""
from sqlalchemy import Column, DateTime, JSON, String

from teamtasks.database import Base
from teamtasks.models.domain import new_id, utc_now


class AuditEvent(Base):
    """
    Invariants:
    - Once written, never edited or deleted
    - Append-only
    """
    __tablename__ = "audit_events"

    id = Column(String, primary_key=True, default=new_id)
    event_type = Column(String, nullable=False, index=True)  # e.g., "access_denied"
    entity_type = Column(String, nullable=False)  # e.g., "Task", "AllowedEmail"
    entity_id = Column(String, nullable=True, index=True)  # Null for actions with no target row
    user_id = Column(String, nullable=True)  # Nullable for system events
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now, index=True)
    payload_json = Column(JSON, nullable=True)  # Minimal contextual data


class AuditEventType:
    """Enumeration of audit event types."""
    ACCESS_DENIED = "access_denied"
    SIGN_IN_REFUSED = "sign_in_refused"

    TASK_CREATED = "task_created"
    TASK_UPDATED = "task_updated"
    TASK_COMPLETED = "task_completed"
    TASK_DELETED = "task_deleted"

    ALLOWED_EMAIL_ADDED = "allowed_email_added"
    ALLOWED_EMAIL_REMOVED = "allowed_email_removed"

    USER_CREATED = "user_created"
    USER_UPDATED = "user_updated"
    USER_DELETED = "user_deleted"


def record_audit(db, event_type, entity_type, entity_id=None, user_id=None, **payload):
    """Stage an audit event on ``db``; it is written with the caller's commit."""
    audit = AuditEvent(
        event_type=event_type,
        entity_type=entity_type,
        entity_id=None if entity_id is None else str(entity_id),
        user_id=user_id,
        payload_json=payload or None,
    )
    db.add(audit)
    return audit
