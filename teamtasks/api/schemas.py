"""Pydantic schemas for request/response validation."""
from datetime import date, datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, ValidationError, field_validator

from teamtasks.errors import ValidationFailed
from teamtasks.models.enums import NotificationType, Role, TaskPriority, TaskStatus


def _check_length(value: str, label: str, minimum: int, maximum: int) -> str:
    if len(value) < minimum:
        raise ValueError(f"{label} must be at least {minimum} characters")
    if len(value) > maximum:
        raise ValueError(f"{label} must be less than {maximum} characters")
    return value


def clean_title(value: str) -> str:
    return _check_length(value.strip(), "Title", 3, 200)


def clean_description(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    if len(value) > 2000:
        raise ValueError("Description must be less than 2000 characters")
    return value or None


def clean_deadline(value: date) -> date:
    if value < date.today():
        raise ValueError("Deadline cannot be in the past")
    return value


def clean_name(value: str) -> str:
    return _check_length(value.strip(), "Name", 2, 100)


def clean_email(value: str) -> str:
    value = value.strip().lower()
    if len(value) > 255:
        raise ValueError("Email must be less than 255 characters")
    return value


def field_errors(exc: ValidationError) -> Dict[str, str]:
    """Flatten a pydantic error into {field: message}, first message per field."""
    errors: Dict[str, str] = {}
    for err in exc.errors():
        name = str(err["loc"][0]) if err.get("loc") else "__root__"
        if err.get("type") == "value_error" and "error" in err.get("ctx", {}):
            message = str(err["ctx"]["error"])
        else:
            message = err["msg"]
        errors.setdefault(name, message)
    return errors


def validate(schema, data):
    """Parse ``data`` with ``schema``, raising ValidationFailed with field-level messages."""
    try:
        return schema.model_validate(data)
    except ValidationError as exc:
        raise ValidationFailed("Please fix validation errors", field_errors(exc)) from exc


# Auth schemas
class SignUpRequest(BaseModel):
    name: str
    email: EmailStr
    password: str = Field(..., min_length=6, max_length=128)
    role: Role = Role.MEMBER

    @field_validator("name")
    @classmethod
    def check_name(cls, v):
        return clean_name(v)

    @field_validator("email")
    @classmethod
    def check_email(cls, v):
        return clean_email(v)


class SignInRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1, max_length=128)

    @field_validator("email")
    @classmethod
    def check_email(cls, v):
        return clean_email(v)


class SessionResponse(BaseModel):
    access_token: str
    user_id: str
    name: str
    email: str
    role: Optional[Role]


class RoleResponse(BaseModel):
    """``role`` is None while the role assignment is still pending."""
    user_id: str
    role: Optional[Role]
    pending: bool


# Profile / user management schemas
class ProfileResponse(BaseModel):
    id: str
    name: str
    email: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class UserCreate(SignUpRequest):
    """Admin-created account; same fields as a sign-up."""


class UserUpdate(BaseModel):
    name: Optional[str] = None
    email: Optional[EmailStr] = None
    role: Optional[Role] = None

    @field_validator("name")
    @classmethod
    def check_name(cls, v):
        return None if v is None else clean_name(v)

    @field_validator("email")
    @classmethod
    def check_email(cls, v):
        return None if v is None else clean_email(v)


class RosterEntry(BaseModel):
    id: str
    name: str
    email: str
    role: Role
    task_count: int


# Allow-list schemas
class AllowedEmailCreate(BaseModel):
    email: EmailStr

    @field_validator("email")
    @classmethod
    def check_email(cls, v):
        return clean_email(v)


class AllowedEmailResponse(BaseModel):
    id: str
    email: str
    added_by: Optional[str]
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


# Task schemas
class TaskCreate(BaseModel):
    title: str
    description: Optional[str] = None
    assigned_to: str = Field(..., min_length=1)
    deadline: date
    status: TaskStatus = TaskStatus.PENDING
    priority: TaskPriority = TaskPriority.MEDIUM

    @field_validator("title")
    @classmethod
    def check_title(cls, v):
        return clean_title(v)

    @field_validator("description")
    @classmethod
    def check_description(cls, v):
        return clean_description(v)

    @field_validator("deadline")
    @classmethod
    def check_deadline(cls, v):
        return clean_deadline(v)


class TaskUpdate(BaseModel):
    """
    Partial update. Every field is optional; the ones present are held to
    the same rules as TaskCreate. Only ``description`` may be sent as null.
    """
    title: Optional[str] = None
    description: Optional[str] = None
    assigned_to: Optional[str] = Field(None, min_length=1)
    deadline: Optional[date] = None
    status: Optional[TaskStatus] = None
    priority: Optional[TaskPriority] = None

    @field_validator("title", "assigned_to", "deadline", "status", "priority", mode="before")
    @classmethod
    def reject_null(cls, v, info):
        if v is None:
            raise ValueError(f"{info.field_name.replace('_', ' ').capitalize()} is required")
        return v

    @field_validator("title")
    @classmethod
    def check_title(cls, v):
        return clean_title(v)

    @field_validator("description")
    @classmethod
    def check_description(cls, v):
        return clean_description(v)

    @field_validator("deadline")
    @classmethod
    def check_deadline(cls, v):
        return clean_deadline(v)

    def changes(self) -> dict:
        """Only the fields the caller actually sent."""
        return self.model_dump(exclude_unset=True)


class TaskResponse(BaseModel):
    id: str
    title: str
    description: Optional[str]
    assigned_to: str
    deadline: date
    status: TaskStatus
    priority: TaskPriority
    created_by: str
    created_at: datetime
    updated_at: datetime
    attachment_url: Optional[str]
    completion_note: Optional[str]

    model_config = ConfigDict(from_attributes=True)


class TeamProgress(BaseModel):
    total: int
    pending: int
    in_progress: int
    completed: int
    completion_rate: int


# Comment schemas
class CommentCreate(BaseModel):
    content: str

    @field_validator("content")
    @classmethod
    def check_content(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("Comment cannot be empty")
        if len(v) > 1000:
            raise ValueError("Comment must be less than 1000 characters")
        return v


class CommentResponse(BaseModel):
    id: str
    task_id: str
    user_id: str
    content: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


# Notification schemas
class NotificationResponse(BaseModel):
    id: str
    user_id: str
    message: str
    type: NotificationType
    read: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


# Error response
class ErrorResponse(BaseModel):
    code: str
    message: str
    errors: Dict[str, str] = {}

