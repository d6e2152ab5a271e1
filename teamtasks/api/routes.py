"""API routes for auth, tasks, comments, notifications, the allow-list and the team views."""
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, Response, UploadFile, status
from sqlalchemy.orm import Session

from teamtasks import config
from teamtasks.api.deps import Principal, get_principal, get_storage
from teamtasks.api.schemas import (
    AllowedEmailCreate,
    AllowedEmailResponse,
    CommentCreate,
    CommentResponse,
    ErrorResponse,
    NotificationResponse,
    ProfileResponse,
    RoleResponse,
    RosterEntry,
    SessionResponse,
    SignInRequest,
    SignUpRequest,
    TaskCreate,
    TaskResponse,
    TaskUpdate,
    TeamProgress,
    UserCreate,
    UserUpdate,
)
from teamtasks.database import get_db
from teamtasks.models.domain import UserRole
from teamtasks.models.enums import Action, Role
from teamtasks.services import reports
from teamtasks.services.attachments import Attachment
from teamtasks.services.guard import authorize
from teamtasks.services.identity import IdentityService, SignedIn
from teamtasks.services.lifecycle import TaskLifecycle
from teamtasks.services.notifications import NotificationEmitter

router = APIRouter()

ERRORS = {
    401: {"model": ErrorResponse, "description": "Not signed in"},
    403: {"model": ErrorResponse, "description": "Access denied"},
    404: {"model": ErrorResponse, "description": "Not found"},
    409: {"model": ErrorResponse, "description": "Conflict"},
    422: {"model": ErrorResponse, "description": "Validation failed"},
}


def _session_response(signed_in: SignedIn) -> SessionResponse:
    return SessionResponse(
        access_token=signed_in.token,
        user_id=signed_in.profile.id,
        name=signed_in.profile.name,
        email=signed_in.profile.email,
        role=signed_in.role,
    )


# Auth endpoints
@router.post("/auth/sign-up", response_model=ProfileResponse, status_code=status.HTTP_201_CREATED, responses=ERRORS)
def sign_up(data: SignUpRequest, db: Session = Depends(get_db)):
    """Register an allow-listed email with the chosen role (member by default)."""
    return IdentityService(db).sign_up(data.name, data.email, data.password, data.role)


@router.post("/auth/sign-in", response_model=SessionResponse, responses=ERRORS)
def sign_in(data: SignInRequest, db: Session = Depends(get_db)):
    """
    Sign in with email and password.
    WILL REFUSE if the email is no longer on the allow-list, even with the right password.
    """
    return _session_response(IdentityService(db).sign_in(data.email, data.password))


@router.post("/auth/refresh", response_model=SessionResponse, responses=ERRORS)
def refresh_session(principal: Principal = Depends(get_principal), db: Session = Depends(get_db)):
    """Exchange the current token for a new one."""
    return _session_response(IdentityService(db).refresh_session(principal.token))


@router.post("/auth/sign-out", status_code=status.HTTP_204_NO_CONTENT)
def sign_out(principal: Principal = Depends(get_principal), db: Session = Depends(get_db)):
    IdentityService(db).sign_out(principal.token)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/auth/session", response_model=RoleResponse, responses=ERRORS)
def get_session(principal: Principal = Depends(get_principal)):
    """Who am I, and what is my role (None while pending)."""
    return RoleResponse(user_id=principal.id, role=principal.role, pending=principal.role is None)


# Collections the client store mirrors
@router.get("/profiles", response_model=List[ProfileResponse])
def list_profiles(principal: Principal = Depends(get_principal), db: Session = Depends(get_db)):
    return IdentityService(db).list_profiles()


@router.get("/tasks", response_model=List[TaskResponse])
def list_tasks(principal: Principal = Depends(get_principal), db: Session = Depends(get_db)):
    """List all tasks. Every role may view every task."""
    authorize(db, principal.role, principal.id, Action.VIEW_ALL_TASKS)
    return TaskLifecycle(db).list_tasks()


@router.get("/comments", response_model=List[CommentResponse])
def list_comments(
    task_id: Optional[str] = None,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
):
    return TaskLifecycle(db).list_comments(task_id)


@router.get("/notifications", response_model=List[NotificationResponse])
def list_notifications(principal: Principal = Depends(get_principal), db: Session = Depends(get_db)):
    """Only the caller's own notifications, newest first."""
    return NotificationEmitter(db).list_for(principal.id)


# Task endpoints
@router.post("/tasks", response_model=TaskResponse, status_code=status.HTTP_201_CREATED, responses=ERRORS)
def create_task(data: TaskCreate, principal: Principal = Depends(get_principal), db: Session = Depends(get_db)):
    """Create a task. Side effect: the assignee is notified."""
    return TaskLifecycle(db).create_task(principal.id, principal.role, data)


@router.get("/tasks/{task_id}", response_model=TaskResponse, responses=ERRORS)
def get_task(task_id: str, principal: Principal = Depends(get_principal), db: Session = Depends(get_db)):
    return TaskLifecycle(db).get_task(task_id)


@router.patch("/tasks/{task_id}", response_model=TaskResponse, responses=ERRORS)
def update_task(
    task_id: str,
    data: TaskUpdate,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
):
    """Partial update by an authorized editor (admin, or the manager who created the task)."""
    return TaskLifecycle(db).update_task(principal.id, principal.role, task_id, data)


@router.post("/tasks/{task_id}/complete", response_model=TaskResponse, responses=ERRORS)
def complete_task(
    task_id: str,
    completion_note: Optional[str] = Form(None),
    attachment: Optional[UploadFile] = File(None),
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
    storage=Depends(get_storage),
):
    """
    Completion flow.

    WILL REFUSE if:
    - The caller is a member completing someone else's task
    - The caller is a member and sent no attachment
    - The attachment is over 10MB or not a PDF, image or Word document
    """
    upload = None
    if attachment is not None and attachment.filename:
        # Read one byte past the limit so oversize files are detected without buffering them whole
        data = attachment.file.read(config.MAX_ATTACHMENT_BYTES + 1)
        upload = Attachment(
            filename=attachment.filename,
            content_type=attachment.content_type or "application/octet-stream",
            data=data,
        )
    lifecycle = TaskLifecycle(db, storage=storage)
    return lifecycle.complete_task(principal.id, principal.role, task_id, completion_note, upload)


@router.delete("/tasks/{task_id}", status_code=status.HTTP_204_NO_CONTENT, responses=ERRORS)
def delete_task(task_id: str, principal: Principal = Depends(get_principal), db: Session = Depends(get_db)):
    """Delete a task together with all of its comments."""
    TaskLifecycle(db).delete_task(principal.id, principal.role, task_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# Comment endpoints
@router.post("/tasks/{task_id}/comments", response_model=CommentResponse, status_code=status.HTTP_201_CREATED, responses=ERRORS)
def add_comment(
    task_id: str,
    data: CommentCreate,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
):
    return TaskLifecycle(db).add_comment(principal.id, task_id, data)


# Notification endpoints
@router.post("/notifications/{notification_id}/read", response_model=NotificationResponse, responses=ERRORS)
def mark_notification_read(
    notification_id: str,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
):
    """Idempotent. Only the recipient can mark a notification as read."""
    return NotificationEmitter(db).mark_read(principal.id, notification_id)


# Allow-list endpoints
@router.get("/allowed-emails", response_model=List[AllowedEmailResponse], responses=ERRORS)
def list_allowed_emails(principal: Principal = Depends(get_principal), db: Session = Depends(get_db)):
    return IdentityService(db).list_allowed_emails(principal.id, principal.role)


@router.post("/allowed-emails", response_model=AllowedEmailResponse, status_code=status.HTTP_201_CREATED, responses=ERRORS)
def add_allowed_email(
    data: AllowedEmailCreate,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
):
    return IdentityService(db).add_allowed_email(principal.id, principal.role, data.email)


@router.delete("/allowed-emails/{entry_id}", status_code=status.HTTP_204_NO_CONTENT, responses=ERRORS)
def remove_allowed_email(entry_id: str, principal: Principal = Depends(get_principal), db: Session = Depends(get_db)):
    """WILL REFUSE to remove the entry of any admin."""
    IdentityService(db).remove_allowed_email(principal.id, principal.role, entry_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# User management endpoints
@router.post("/users", response_model=ProfileResponse, status_code=status.HTTP_201_CREATED, responses=ERRORS)
def create_user(data: UserCreate, principal: Principal = Depends(get_principal), db: Session = Depends(get_db)):
    return IdentityService(db).create_user(
        principal.id, principal.role, data.name, data.email, data.password, data.role
    )


@router.patch("/users/{user_id}", response_model=ProfileResponse, responses=ERRORS)
def update_user(
    user_id: str,
    data: UserUpdate,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
):
    return IdentityService(db).update_user(
        principal.id, principal.role, user_id, name=data.name, email=data.email, role=data.role
    )


@router.delete("/users/{user_id}", status_code=status.HTTP_204_NO_CONTENT, responses=ERRORS)
def delete_user(user_id: str, principal: Principal = Depends(get_principal), db: Session = Depends(get_db)):
    IdentityService(db).delete_user(principal.id, principal.role, user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# Team views
@router.get("/team", response_model=List[RosterEntry], responses=ERRORS)
def team_roster(principal: Principal = Depends(get_principal), db: Session = Depends(get_db)):
    """Every profile with its role and assigned-task count."""
    authorize(db, principal.role, principal.id, Action.VIEW_TEAM_ROSTER, entity_type="Profile")
    roles = {row.user_id: Role(row.role) for row in db.query(UserRole).all()}
    return reports.team_roster(IdentityService(db).list_profiles(), roles, TaskLifecycle(db).list_tasks())


@router.get("/team/progress", response_model=TeamProgress, responses=ERRORS)
def team_progress(principal: Principal = Depends(get_principal), db: Session = Depends(get_db)):
    authorize(db, principal.role, principal.id, Action.VIEW_TEAM_PROGRESS)
    return reports.team_progress(TaskLifecycle(db).list_tasks())


@router.get("/attachments", response_model=List[TaskResponse], responses=ERRORS)
def list_attachments(principal: Principal = Depends(get_principal), db: Session = Depends(get_db)):
    """Completed tasks that carry an attachment, across the whole workspace."""
    authorize(db, principal.role, principal.id, Action.VIEW_ALL_ATTACHMENTS)
    return reports.tasks_with_attachments(TaskLifecycle(db).list_tasks())
