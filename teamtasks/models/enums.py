"""Enums for the task manager - these define the valid values for roles, states and actions."""
from enum import Enum


class Role(str, Enum):
    """The three access tiers. Every principal holds exactly one."""
    ADMIN = "admin"
    MANAGER = "manager"
    MEMBER = "member"


class TaskStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"


class TaskPriority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class NotificationType(str, Enum):
    TASK_CREATED = "task-created"
    TASK_UPDATED = "task-updated"
    TASK_COMPLETED = "task-completed"
    DEADLINE_APPROACHING = "deadline-approaching"


class Action(str, Enum):
    """Every action the access policy knows how to decide."""
    CREATE_TASK = "create_task"
    EDIT_TASK = "edit_task"
    DELETE_TASK = "delete_task"
    COMPLETE_TASK = "complete_task"
    VIEW_ALL_TASKS = "view_all_tasks"
    MANAGE_ALLOWED_EMAILS = "manage_allowed_emails"
    DELETE_ADMIN_ALLOWED_EMAIL = "delete_admin_allowed_email"
    MANAGE_USERS = "manage_users"
    VIEW_TEAM_ROSTER = "view_team_roster"
    VIEW_TEAM_PROGRESS = "view_team_progress"
    VIEW_ALL_ATTACHMENTS = "view_all_attachments"


class Decision(str, Enum):
    PERMIT = "permit"
    DENY = "deny"


class AuthEvent(str, Enum):
    """Authentication state transitions observers can react to."""
    SIGNED_IN = "SIGNED_IN"
    SIGNED_OUT = "SIGNED_OUT"
    TOKEN_REFRESHED = "TOKEN_REFRESHED"
