"""
Access policy - who may do what.

``decide`` is a pure function of (role, principal, action, resource). Each
role has its own rule function and every action is matched explicitly, so
adding a Role or an Action without a rule fails loudly instead of
silently permitting or denying.

The member attachment requirement on completion is a business rule layered
on top of the decision, see ``completion_requires_attachment``.
"""
from dataclasses import dataclass
from typing import Optional

from teamtasks.errors import AccessDenied
from teamtasks.models.enums import Action, Decision, Role


@dataclass(frozen=True)
class TaskRef:
    """The parts of a task the policy looks at."""
    created_by: Optional[str] = None
    assigned_to: Optional[str] = None

    @classmethod
    def of(cls, task) -> "TaskRef":
        return cls(created_by=task.created_by, assigned_to=task.assigned_to)


DENIAL_REASONS = {
    Action.CREATE_TASK: "Only admins and managers can create tasks.",
    Action.EDIT_TASK: "You can only edit tasks you created.",
    Action.DELETE_TASK: "You can only delete tasks you created.",
    Action.COMPLETE_TASK: "You can only complete tasks assigned to you.",
    Action.VIEW_ALL_TASKS: "You are not permitted to view tasks.",
    Action.MANAGE_ALLOWED_EMAILS: "Only admins can manage the allowed email list.",
    Action.DELETE_ADMIN_ALLOWED_EMAIL: "An admin's email cannot be removed from the allowed list.",
    Action.MANAGE_USERS: "Only admins can manage user accounts.",
    Action.VIEW_TEAM_ROSTER: "You don't have access to view team details.",
    Action.VIEW_TEAM_PROGRESS: "You don't have access to view team progress.",
    Action.VIEW_ALL_ATTACHMENTS: "Only admins can view all attachments.",
}


def _permit(allowed: bool) -> Decision:
    return Decision.PERMIT if allowed else Decision.DENY


def _admin(action: Action, principal_id: str, resource: TaskRef) -> Decision:
    if action is Action.DELETE_ADMIN_ALLOWED_EMAIL:
        # Blocked for everyone, admins included
        return Decision.DENY
    if action in (
        Action.CREATE_TASK,
        Action.EDIT_TASK,
        Action.DELETE_TASK,
        Action.COMPLETE_TASK,
        Action.VIEW_ALL_TASKS,
        Action.MANAGE_ALLOWED_EMAILS,
        Action.MANAGE_USERS,
        Action.VIEW_TEAM_ROSTER,
        Action.VIEW_TEAM_PROGRESS,
        Action.VIEW_ALL_ATTACHMENTS,
    ):
        return Decision.PERMIT
    raise ValueError(f"No admin rule for action {action!r}")


def _manager(action: Action, principal_id: str, resource: TaskRef) -> Decision:
    if action in (Action.EDIT_TASK, Action.DELETE_TASK):
        return _permit(resource.created_by is not None and resource.created_by == principal_id)
    if action in (
        Action.CREATE_TASK,
        Action.COMPLETE_TASK,
        Action.VIEW_ALL_TASKS,
        Action.VIEW_TEAM_ROSTER,
        Action.VIEW_TEAM_PROGRESS,
    ):
        return Decision.PERMIT
    if action in (
        Action.MANAGE_ALLOWED_EMAILS,
        Action.DELETE_ADMIN_ALLOWED_EMAIL,
        Action.MANAGE_USERS,
        Action.VIEW_ALL_ATTACHMENTS,
    ):
        return Decision.DENY
    raise ValueError(f"No manager rule for action {action!r}")


def _member(action: Action, principal_id: str, resource: TaskRef) -> Decision:
    if action is Action.COMPLETE_TASK:
        return _permit(resource.assigned_to is not None and resource.assigned_to == principal_id)
    if action is Action.VIEW_ALL_TASKS:
        return Decision.PERMIT
    if action in (
        Action.CREATE_TASK,
        Action.EDIT_TASK,
        Action.DELETE_TASK,
        Action.MANAGE_ALLOWED_EMAILS,
        Action.DELETE_ADMIN_ALLOWED_EMAIL,
        Action.MANAGE_USERS,
        Action.VIEW_TEAM_ROSTER,
        Action.VIEW_TEAM_PROGRESS,
        Action.VIEW_ALL_ATTACHMENTS,
    ):
        return Decision.DENY
    raise ValueError(f"No member rule for action {action!r}")


_RULES = {
    Role.ADMIN: _admin,
    Role.MANAGER: _manager,
    Role.MEMBER: _member,
}


def decide(
    role: Optional[Role],
    principal_id: str,
    action: Action,
    resource: Optional[TaskRef] = None,
) -> Decision:
    """
    Evaluate the access table for one request.

    A principal whose role has not been resolved yet is judged as a member,
    so privileged actions stay denied until the role shows up.
    """
    effective = Role.MEMBER if role is None else Role(role)
    rule = _RULES.get(effective)
    if rule is None:
        raise ValueError(f"Unhandled role {effective!r}")
    return rule(Action(action), principal_id, resource or TaskRef())


def is_permitted(role, principal_id, action, resource=None) -> bool:
    return decide(role, principal_id, action, resource) is Decision.PERMIT


def require(role, principal_id, action, resource=None) -> None:
    """Raise AccessDenied unless the decision is Permit."""
    if not is_permitted(role, principal_id, action, resource):
        raise AccessDenied(DENIAL_REASONS[Action(action)])


def completion_requires_attachment(role: Optional[Role]) -> bool:
    """Members must attach proof of work when completing; admins and managers need not."""
    effective = Role.MEMBER if role is None else Role(role)
    if effective is Role.MEMBER:
        return True
    if effective in (Role.ADMIN, Role.MANAGER):
        return False
    raise ValueError(f"Unhandled role {effective!r}")
