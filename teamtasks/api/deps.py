"""Request-scoped dependencies: the authenticated principal and attachment storage."""
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from teamtasks.database import get_db
from teamtasks.errors import InvalidCredentials
from teamtasks.models.enums import Role
from teamtasks.services.attachments import LocalBlobStorage
from teamtasks.services.identity import IdentityService

bearer = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class Principal:
    id: str
    role: Optional[Role]  # None while the role assignment is pending
    token: str


def get_principal(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
    db: Session = Depends(get_db),
) -> Principal:
    """Resolve the bearer token to a principal; the role is looked up fresh on every request."""
    if credentials is None:
        raise InvalidCredentials("Not signed in")
    identity = IdentityService(db)
    session = identity.get_session(credentials.credentials)
    if session is None:
        raise InvalidCredentials("Session expired. Please sign in again.")
    return Principal(id=session.user_id, role=identity.resolve_role(session.user_id), token=session.token)


def get_storage() -> LocalBlobStorage:
    return LocalBlobStorage()
