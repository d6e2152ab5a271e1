"""
Task lifecycle controller.

All task mutations MUST go through here: every one is checked against the
access policy before anything is staged, and the notifications a change
implies are written in the same commit as the change itself.

Status moves pending -> in-progress -> completed, but an authorized editor
may set any status directly. The completion flow (``complete_task``) is
the guarded path assignees use, and it is the only place the member
attachment requirement applies.
"""
import logging
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy.orm import Session

from teamtasks.api.schemas import CommentCreate, TaskCreate, TaskUpdate, validate
from teamtasks.errors import NotFound, ValidationFailed
from teamtasks.models.audit import AuditEventType, record_audit
from teamtasks.models.domain import Comment, Profile, Task, new_id
from teamtasks.models.enums import Action, NotificationType, Role, TaskStatus
from teamtasks.services.attachments import Attachment, attachment_path, validate_attachment
from teamtasks.services.guard import authorize
from teamtasks.services.notifications import NotificationEmitter
from teamtasks.services.policy import TaskRef, completion_requires_attachment

logger = logging.getLogger(__name__)


class TaskLifecycle:
    """Enforces task permissions, transitions and their notifications."""

    def __init__(self, db: Session, notifier: Optional[NotificationEmitter] = None, storage=None):
        self.db = db
        self.notifier = notifier or NotificationEmitter(db)
        self.storage = storage

    def get_task(self, task_id: str) -> Task:
        task = self.db.query(Task).filter(Task.id == task_id).first()
        if task is None:
            raise NotFound("Task not found")
        return task

    def list_tasks(self) -> List[Task]:
        """Every role may view every task."""
        return self.db.query(Task).order_by(Task.created_at.desc()).all()

    def list_comments(self, task_id: Optional[str] = None) -> List[Comment]:
        query = self.db.query(Comment)
        if task_id is not None:
            query = query.filter(Comment.task_id == task_id)
        return query.order_by(Comment.created_at.asc()).all()

    def _require_assignee(self, user_id: str) -> Profile:
        profile = self.db.query(Profile).filter(Profile.id == user_id).first()
        if profile is None:
            raise ValidationFailed("Please select a valid user", {"assigned_to": "Please select a valid user"})
        return profile

    def create_task(self, actor_id: str, role: Optional[Role], data) -> Task:
        """
        Create a task. Side effect: the assignee gets a task-created notification.
        """
        authorize(self.db, role, actor_id, Action.CREATE_TASK)
        payload = data if isinstance(data, TaskCreate) else validate(TaskCreate, data)
        assignee = self._require_assignee(payload.assigned_to)

        task = Task(
            id=new_id(),
            title=payload.title,
            description=payload.description,
            assigned_to=payload.assigned_to,
            deadline=payload.deadline,
            status=payload.status,
            priority=payload.priority,
            created_by=actor_id,
        )
        self.db.add(task)
        self.notifier.emit(
            task.assigned_to,
            NotificationType.TASK_CREATED,
            f'New task "{task.title}" assigned to {assignee.name}',
        )
        record_audit(self.db, AuditEventType.TASK_CREATED, "Task", task.id, actor_id, assigned_to=task.assigned_to)
        self.db.commit()
        self.db.refresh(task)
        logger.info("Task %s created by %s for %s", task.id, actor_id, task.assigned_to)
        return task

    def update_task(self, actor_id: str, role: Optional[Role], task_id: str, changes) -> Task:
        """
        Apply a partial update.

        Notifications:
        - status set to completed -> task-completed to the creator
        - any other status change, or a reassignment -> task-updated to the creator
        """
        task = self.get_task(task_id)
        authorize(self.db, role, actor_id, Action.EDIT_TASK, TaskRef.of(task), entity_id=task.id)
        update = changes if isinstance(changes, TaskUpdate) else validate(TaskUpdate, changes)
        fields = update.changes()
        if "assigned_to" in fields:
            self._require_assignee(fields["assigned_to"])

        previous_status = task.status
        previous_assignee = task.assigned_to
        for name, value in fields.items():
            setattr(task, name, value)
        task.updated_at = datetime.now(timezone.utc)

        self._notify_update(task, fields, previous_status, previous_assignee)
        record_audit(
            self.db, AuditEventType.TASK_UPDATED, "Task", task.id, actor_id,
            fields=sorted(fields),
        )
        self.db.commit()
        self.db.refresh(task)
        return task

    def _notify_update(self, task: Task, fields: dict, previous_status, previous_assignee) -> None:
        status_changed = "status" in fields and fields["status"] != previous_status
        reassigned = "assigned_to" in fields and fields["assigned_to"] != previous_assignee

        if status_changed and task.status == TaskStatus.COMPLETED:
            self.notifier.emit(
                task.created_by,
                NotificationType.TASK_COMPLETED,
                f'Task "{task.title}" has been completed',
            )
        elif status_changed or reassigned:
            # Goes to the creator, not the (new) assignee. See DESIGN.md.
            self.notifier.emit(
                task.created_by,
                NotificationType.TASK_UPDATED,
                f'Task "{task.title}" has been updated',
            )

    def complete_task(
        self,
        actor_id: str,
        role: Optional[Role],
        task_id: str,
        completion_note: Optional[str] = None,
        attachment: Optional[Attachment] = None,
    ) -> Task:
        """
        The completion flow.

        Order matters: permission, then the member attachment rule, then
        attachment validation, and only then the upload. A rejected request
        never touches storage.
        """
        task = self.get_task(task_id)
        authorize(self.db, role, actor_id, Action.COMPLETE_TASK, TaskRef.of(task), entity_id=task.id)

        if attachment is None and completion_requires_attachment(role):
            raise ValidationFailed(
                "Please attach a file to complete this task",
                {"attachment": "An attachment is required to complete this task"},
            )
        if attachment is not None:
            validate_attachment(attachment)

        note = (completion_note or "").strip() or None
        if note is not None and len(note) > 2000:
            raise ValidationFailed("Completion note is too long", {"completion_note": "Note must be less than 2000 characters"})

        attachment_url = None
        if attachment is not None:
            if self.storage is None:
                raise RuntimeError("No attachment storage configured")
            path = attachment_path(task.id, attachment)
            self.storage.upload(path, attachment.data)
            attachment_url = self.storage.get_public_url(path)

        previous_status = task.status
        task.status = TaskStatus.COMPLETED
        task.completion_note = note
        if attachment_url is not None:
            # Completing again without a file keeps the earlier upload
            task.attachment_url = attachment_url
        task.updated_at = datetime.now(timezone.utc)

        self._notify_update(task, {"status": TaskStatus.COMPLETED}, previous_status, task.assigned_to)
        record_audit(
            self.db, AuditEventType.TASK_COMPLETED, "Task", task.id, actor_id,
            attachment=attachment_url is not None,
        )
        self.db.commit()
        self.db.refresh(task)
        logger.info("Task %s completed by %s", task.id, actor_id)
        return task

    def delete_task(self, actor_id: str, role: Optional[Role], task_id: str) -> None:
        """Delete a task and, through the cascade, all of its comments. No notification."""
        task = self.get_task(task_id)
        authorize(self.db, role, actor_id, Action.DELETE_TASK, TaskRef.of(task), entity_id=task.id)
        comment_count = len(task.comments)
        self.db.delete(task)
        record_audit(self.db, AuditEventType.TASK_DELETED, "Task", task_id, actor_id, comments=comment_count)
        self.db.commit()
        logger.info("Task %s deleted by %s with %d comments", task_id, actor_id, comment_count)

    def add_comment(self, actor_id: str, task_id: str, data) -> Comment:
        """Comments are append-only and open to anyone who can view the task."""
        task = self.get_task(task_id)
        payload = data if isinstance(data, CommentCreate) else validate(CommentCreate, data)
        comment = Comment(task_id=task.id, user_id=actor_id, content=payload.content)
        self.db.add(comment)
        self.db.commit()
        self.db.refresh(comment)
        return comment
