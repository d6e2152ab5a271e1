"""Policy enforcement at the service layer, with denials written to the audit trail."""
import logging
from typing import Optional

from sqlalchemy.orm import Session

from teamtasks.errors import AccessDenied
from teamtasks.models.audit import AuditEventType, record_audit
from teamtasks.models.enums import Action, Role
from teamtasks.services.policy import TaskRef, require

logger = logging.getLogger(__name__)


def authorize(
    db: Session,
    role: Optional[Role],
    principal_id: str,
    action: Action,
    resource: Optional[TaskRef] = None,
    entity_type: str = "Task",
    entity_id: Optional[str] = None,
) -> None:
    """
    Raise AccessDenied unless the policy permits the action.

    Called before anything is staged on ``db``, so the only write a denial
    ever produces is its own audit event.
    """
    try:
        require(role, principal_id, action, resource)
    except AccessDenied:
        logger.info(
            "Denied %s on %s %s for %s (role=%s)",
            action.value, entity_type, entity_id, principal_id, role.value if role else None,
        )
        db.rollback()
        record_audit(
            db,
            AuditEventType.ACCESS_DENIED,
            entity_type,
            entity_id,
            user_id=principal_id,
            action=action.value,
            role=role.value if role else None,
        )
        db.commit()
        raise
