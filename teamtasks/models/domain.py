"""Domain models - principals, the allow-list, tasks and what hangs off them."""
import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, Date, DateTime, Enum as SQLEnum, ForeignKey, String, Text
from sqlalchemy.orm import relationship

from teamtasks.database import Base
from teamtasks.models.enums import NotificationType, Role, TaskPriority, TaskStatus


def new_id() -> str:
    return str(uuid.uuid4())


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _values(enum_cls):
    # Persist the wire value ("in-progress"), not the member name
    return [member.value for member in enum_cls]


class Profile(Base):
    """
    A principal. Created on successful sign-up against the allow-list.

    Invariants:
    - email is unique and stored lowercase
    - Exactly one UserRole per profile; deleting the profile removes it
    """
    __tablename__ = "profiles"

    id = Column(String, primary_key=True, default=new_id)
    name = Column(String, nullable=False)
    email = Column(String, nullable=False, unique=True, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)

    role = relationship("UserRole", back_populates="profile", uselist=False, cascade="all, delete-orphan")
    credential = relationship("Credential", uselist=False, cascade="all, delete-orphan")
    sessions = relationship("AuthSession", cascade="all, delete-orphan")


class UserRole(Base):
    __tablename__ = "user_roles"

    id = Column(String, primary_key=True, default=new_id)
    user_id = Column(String, ForeignKey("profiles.id"), nullable=False, unique=True)
    role = Column(SQLEnum(Role, values_callable=_values), nullable=False, default=Role.MEMBER)

    profile = relationship("Profile", back_populates="role")


class Credential(Base):
    """Password material, owned by the authentication layer."""
    __tablename__ = "credentials"

    user_id = Column(String, ForeignKey("profiles.id"), primary_key=True)
    password_hash = Column(String, nullable=False)


class AuthSession(Base):
    __tablename__ = "auth_sessions"

    token = Column(String, primary_key=True)
    user_id = Column(String, ForeignKey("profiles.id"), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)


class AllowedEmail(Base):
    """
    Gate for sign-up and sign-in.

    An entry does not imply a profile exists yet (pre-registration).
    """
    __tablename__ = "allowed_emails"

    id = Column(String, primary_key=True, default=new_id)
    email = Column(String, nullable=False, unique=True, index=True)
    added_by = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)


class Task(Base):
    """
    A unit of assigned work: pending -> in-progress -> completed.

    Any status may be set directly by an authorized editor; the completion
    flow is the guarded path used by assignees.
    """
    __tablename__ = "tasks"

    id = Column(String, primary_key=True, default=new_id)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    assigned_to = Column(String, nullable=False, index=True)
    deadline = Column(Date, nullable=False)
    status = Column(SQLEnum(TaskStatus, values_callable=_values), nullable=False, default=TaskStatus.PENDING)
    priority = Column(SQLEnum(TaskPriority, values_callable=_values), nullable=False, default=TaskPriority.MEDIUM)
    created_by = Column(String, nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now)
    attachment_url = Column(String, nullable=True)
    completion_note = Column(Text, nullable=True)

    comments = relationship("Comment", back_populates="task", cascade="all, delete-orphan")


class Comment(Base):
    """Append-only. Destroyed together with its task."""
    __tablename__ = "comments"

    id = Column(String, primary_key=True, default=new_id)
    task_id = Column(String, ForeignKey("tasks.id"), nullable=False, index=True)
    user_id = Column(String, nullable=False)
    content = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)

    task = relationship("Task", back_populates="comments")


class Notification(Base):
    """Never deleted; the only mutation is flipping ``read`` to true."""
    __tablename__ = "notifications"

    id = Column(String, primary_key=True, default=new_id)
    user_id = Column(String, nullable=False, index=True)
    message = Column(String, nullable=False)
    type = Column(SQLEnum(NotificationType, values_callable=_values), nullable=False)
    read = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
