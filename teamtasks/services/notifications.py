"""Notification emitter - append-only side effects of task lifecycle events."""
import logging
from datetime import date, timedelta
from typing import List

from sqlalchemy.orm import Session

from teamtasks.errors import NotFound
from teamtasks.models.domain import Notification, Task
from teamtasks.models.enums import NotificationType, TaskStatus

logger = logging.getLogger(__name__)


class NotificationEmitter:
    """
    Creates notifications and flips them to read.

    ``emit`` only stages the row; it is written with the caller's commit so
    a notification never outlives a rolled back lifecycle change.
    """

    def __init__(self, db: Session):
        self.db = db

    def emit(self, user_id: str, type: NotificationType, message: str) -> Notification:
        notification = Notification(user_id=user_id, type=type, message=message, read=False)
        self.db.add(notification)
        logger.debug("Queued %s notification for %s", type.value, user_id)
        return notification

    def list_for(self, principal_id: str) -> List[Notification]:
        return (
            self.db.query(Notification)
            .filter(Notification.user_id == principal_id)
            .order_by(Notification.created_at.desc())
            .all()
        )

    def mark_read(self, principal_id: str, notification_id: str) -> Notification:
        """
        Mark a notification as read. Idempotent.

        The recipient check is part of the query: someone else's
        notification is simply not found.
        """
        notification = (
            self.db.query(Notification)
            .filter(Notification.id == notification_id, Notification.user_id == principal_id)
            .first()
        )
        if notification is None:
            raise NotFound("Notification not found")
        if not notification.read:
            notification.read = True
            self.db.commit()
            self.db.refresh(notification)
        return notification

    def sweep_deadlines(self, today: date = None, within_days: int = 1) -> List[Notification]:
        """
        Warn assignees about open tasks due within ``within_days`` of ``today``.

        Each (recipient, message) pair is only ever emitted once.
        """
        today = today or date.today()
        horizon = today + timedelta(days=within_days)
        due = (
            self.db.query(Task)
            .filter(
                Task.status != TaskStatus.COMPLETED,
                Task.deadline >= today,
                Task.deadline <= horizon,
            )
            .all()
        )

        created = []
        for task in due:
            message = f'Task "{task.title}" is due on {task.deadline.isoformat()}'
            already_sent = (
                self.db.query(Notification.id)
                .filter(
                    Notification.user_id == task.assigned_to,
                    Notification.type == NotificationType.DEADLINE_APPROACHING,
                    Notification.message == message,
                )
                .first()
            )
            if already_sent:
                continue
            created.append(self.emit(task.assigned_to, NotificationType.DEADLINE_APPROACHING, message))

        if created:
            self.db.commit()
            logger.info("Deadline sweep created %d notifications", len(created))
        return created
