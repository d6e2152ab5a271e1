"""
Client session: the context object handed to everything that acts on behalf
of the signed-in principal.

It is built on sign-in and torn down on sign-out; there is no ambient,
process-wide session. Access decisions and input validation run here,
locally, so a denied or malformed request never reaches the network.
"""
import logging
from typing import Optional

from teamtasks.api.schemas import CommentCreate, TaskCreate, TaskUpdate, validate
from teamtasks.client.store import SharedStateStore, Snapshot
from teamtasks.errors import NotFound, ValidationFailed
from teamtasks.models.enums import Action, AuthEvent, Role
from teamtasks.services import reports
from teamtasks.services.attachments import Attachment, validate_attachment
from teamtasks.services.policy import TaskRef, completion_requires_attachment, is_permitted, require

logger = logging.getLogger(__name__)


class ClientSession:
    def __init__(self, api, changes, principal_id: str, name: str = "", email: str = "",
                 role: Optional[Role] = None):
        self.api = api
        self.principal_id = principal_id
        self.name = name
        self.email = email
        self.role = role
        self.store = SharedStateStore(api, changes, principal_id)
        self._unsubscribe_auth = None
        self.active = False

    @classmethod
    async def sign_in(cls, api, changes, email: str, password: str) -> "ClientSession":
        """Authenticate, then build and start a session for the principal."""
        data = await api.sign_in(email, password)
        role = Role(data["role"]) if data.get("role") else None
        session = cls(api, changes, data["user_id"], data["name"], data["email"], role)
        await session.start()
        return session

    async def start(self) -> Snapshot:
        self._unsubscribe_auth = self.api.on_auth_state_change(self._on_auth_state_change)
        self.active = True
        return await self.store.start()

    async def _on_auth_state_change(self, event: AuthEvent, session: Optional[dict]) -> None:
        if event is AuthEvent.SIGNED_OUT:
            await self._teardown()
        else:
            await self.resolve_role()

    async def resolve_role(self) -> Optional[Role]:
        """
        Ask the server for our role again.

        None means the role has not been assigned yet; callers should show
        that as pending rather than as unauthorized.
        """
        data = await self.api.get_session()
        self.role = Role(data["role"]) if data and data.get("role") else None
        return self.role

    @property
    def role_pending(self) -> bool:
        return self.role is None

    @property
    def snapshot(self) -> Snapshot:
        return self.store.snapshot

    # Policy helpers

    def _task_ref(self, task_id: str) -> TaskRef:
        task = self.snapshot.task(task_id)
        if task is None:
            raise NotFound("Task not found")
        return TaskRef(created_by=task["created_by"], assigned_to=task["assigned_to"])

    def can(self, action: Action, task_id: Optional[str] = None) -> bool:
        resource = self._task_ref(task_id) if task_id else None
        return is_permitted(self.role, self.principal_id, action, resource)

    # Mutations. Each one is checked and validated here before it is sent.

    async def create_task(self, payload: dict) -> dict:
        require(self.role, self.principal_id, Action.CREATE_TASK)
        task = validate(TaskCreate, payload)
        return await self.store.mutate("task", "create", task.model_dump(mode="json"))

    async def update_task(self, task_id: str, changes: dict) -> dict:
        require(self.role, self.principal_id, Action.EDIT_TASK, self._task_ref(task_id))
        update = validate(TaskUpdate, changes)
        return await self.store.mutate(
            "task", "update", {"id": task_id, "changes": update.model_dump(mode="json", exclude_unset=True)}
        )

    async def complete_task(self, task_id: str, completion_note: Optional[str] = None,
                            attachment: Optional[Attachment] = None) -> dict:
        """The completion flow: permission, attachment rule and file checks all pass before any upload."""
        require(self.role, self.principal_id, Action.COMPLETE_TASK, self._task_ref(task_id))
        if attachment is None and completion_requires_attachment(self.role):
            raise ValidationFailed(
                "Please attach a file to complete this task",
                {"attachment": "An attachment is required to complete this task"},
            )
        if attachment is not None:
            validate_attachment(attachment)
        return await self.store.mutate(
            "task", "complete",
            {"id": task_id, "completion_note": completion_note, "attachment": attachment},
        )

    async def delete_task(self, task_id: str) -> None:
        require(self.role, self.principal_id, Action.DELETE_TASK, self._task_ref(task_id))
        await self.store.mutate("task", "delete", {"id": task_id})

    async def add_comment(self, task_id: str, content: str) -> dict:
        self._task_ref(task_id)
        comment = validate(CommentCreate, {"content": content})
        return await self.store.mutate("comment", "create", {"task_id": task_id, "content": comment.content})

    async def mark_read(self, notification_id: str) -> dict:
        return await self.store.mutate("notification", "mark_read", {"id": notification_id})

    # Views over the snapshot

    def my_tasks(self) -> list:
        return [t for t in self.snapshot.tasks if t["assigned_to"] == self.principal_id]

    def filter_tasks(self, search: str = "", status: Optional[str] = None, priority: Optional[str] = None) -> list:
        return reports.filter_tasks(self.snapshot.tasks, self.snapshot.profiles, search, status, priority)

    def team_progress(self) -> dict:
        require(self.role, self.principal_id, Action.VIEW_TEAM_PROGRESS)
        return reports.team_progress(self.snapshot.tasks)

    def attachments(self) -> list:
        require(self.role, self.principal_id, Action.VIEW_ALL_ATTACHMENTS)
        return reports.tasks_with_attachments(self.snapshot.tasks)

    # Teardown

    async def _teardown(self) -> None:
        if not self.active:
            return
        self.active = False
        await self.store.close()
        if self._unsubscribe_auth is not None:
            self._unsubscribe_auth()
            self._unsubscribe_auth = None

    async def sign_out(self) -> None:
        """Close the store (subscriptions released, collections cleared) and only then sign out."""
        await self._teardown()
        await self.api.sign_out()
        logger.info("Session for %s ended", self.principal_id)
