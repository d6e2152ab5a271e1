"""
Identity and role resolution, the email allow-list, and account management.

The allow-list gates both sign-up and sign-in. If the allow-list can't be
read, the attempt fails with a retryable error; it never falls back to
"allowed".
"""
import hashlib
import hmac
import logging
import secrets
from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from teamtasks import config
from teamtasks.errors import (
    Conflict,
    InvalidCredentials,
    NotAllowedToAuthenticate,
    NotFound,
    TransientBackendError,
    ValidationFailed,
)
from teamtasks.models.audit import AuditEventType, record_audit
from teamtasks.models.domain import AllowedEmail, AuthSession, Credential, Profile, UserRole, new_id
from teamtasks.models.enums import Action, Role
from teamtasks.services.guard import authorize

logger = logging.getLogger(__name__)

_HASH_ITERATIONS = 200_000


def hash_password(password: str, salt: Optional[bytes] = None) -> str:
    salt = salt or secrets.token_bytes(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode(), salt, _HASH_ITERATIONS)
    return f"pbkdf2_sha256${_HASH_ITERATIONS}${salt.hex()}${digest.hex()}"


def verify_password(password: str, stored: str) -> bool:
    try:
        _, iterations, salt_hex, digest_hex = stored.split("$")
    except ValueError:
        return False
    digest = hashlib.pbkdf2_hmac("sha256", password.encode(), bytes.fromhex(salt_hex), int(iterations))
    return hmac.compare_digest(digest.hex(), digest_hex)


@dataclass
class SignedIn:
    token: str
    profile: Profile
    role: Optional[Role]


class IdentityService:
    """Resolves principals to roles and guards who may authenticate."""

    def __init__(self, db: Session):
        self.db = db

    # Role resolution

    def resolve_role(self, principal_id: str) -> Optional[Role]:
        """The principal's role, or None if it hasn't been assigned yet."""
        row = self.db.query(UserRole).filter(UserRole.user_id == principal_id).first()
        return Role(row.role) if row else None

    def get_profile(self, principal_id: str) -> Profile:
        profile = self.db.query(Profile).filter(Profile.id == principal_id).first()
        if profile is None:
            raise NotFound("User not found")
        return profile

    def find_profile_by_email(self, email: str) -> Optional[Profile]:
        return self.db.query(Profile).filter(func.lower(Profile.email) == email.strip().lower()).first()

    def list_profiles(self) -> List[Profile]:
        return self.db.query(Profile).order_by(Profile.name).all()

    # Allow-list gate

    def is_email_allowed(self, email: str) -> bool:
        """Case-insensitive exact match against the allow-list."""
        try:
            match = (
                self.db.query(AllowedEmail.id)
                .filter(func.lower(AllowedEmail.email) == email.strip().lower())
                .first()
            )
        except SQLAlchemyError as e:
            logger.warning("Allow-list lookup failed: %s", e)
            raise TransientBackendError("Unable to verify email access. Please try again.", detail=str(e)) from e
        return match is not None

    def _require_allowed(self, email: str) -> None:
        if not self.is_email_allowed(email):
            logger.info("Authentication refused for %s: not on the allow-list", email)
            record_audit(self.db, AuditEventType.SIGN_IN_REFUSED, "AllowedEmail", user_id=None, email=email.lower())
            self.db.commit()
            raise NotAllowedToAuthenticate()

    # Authentication

    def sign_up(self, name: str, email: str, password: str, role: Role = Role.MEMBER) -> Profile:
        """
        Register an allow-listed email with the role picked at sign-up.

        With ``TEAMTASKS_SIGNUP_ROLE_CHOICE`` off, anything but member is
        refused and only an admin can grant higher roles.
        """
        role = Role(role)
        if role is not Role.MEMBER and not config.SIGNUP_ROLE_CHOICE:
            raise ValidationFailed(
                "Please fix validation errors",
                {"role": "Only admins can grant the manager or admin role"},
            )
        self._require_allowed(email)
        return self._create_account(name, email, password, role)

    def sign_in(self, email: str, password: str) -> SignedIn:
        """
        Check the allow-list first, then the password.

        Removing an email from the allow-list therefore locks out an account
        that already exists, whatever its password.
        """
        self._require_allowed(email)

        profile = self.find_profile_by_email(email)
        if profile is None or profile.credential is None:
            raise InvalidCredentials()
        if not verify_password(password, profile.credential.password_hash):
            raise InvalidCredentials()

        session = AuthSession(token=secrets.token_urlsafe(32), user_id=profile.id)
        self.db.add(session)
        self.db.commit()
        logger.info("Signed in %s", profile.id)
        return SignedIn(token=session.token, profile=profile, role=self.resolve_role(profile.id))

    def get_session(self, token: str) -> Optional[AuthSession]:
        if not token:
            return None
        return self.db.query(AuthSession).filter(AuthSession.token == token).first()

    def refresh_session(self, token: str) -> SignedIn:
        """Swap ``token`` for a fresh one; the old token stops working."""
        current = self.get_session(token)
        if current is None:
            raise InvalidCredentials("Session expired. Please sign in again.")
        profile = self.get_profile(current.user_id)
        self.db.delete(current)
        fresh = AuthSession(token=secrets.token_urlsafe(32), user_id=profile.id)
        self.db.add(fresh)
        self.db.commit()
        return SignedIn(token=fresh.token, profile=profile, role=self.resolve_role(profile.id))

    def sign_out(self, token: str) -> None:
        current = self.get_session(token)
        if current is not None:
            self.db.delete(current)
            self.db.commit()

    def create_admin_if_empty(self, name: str, email: str, password: str) -> Optional[Profile]:
        """Seed the first admin (and its allow-list entry) into an empty workspace."""
        if self.db.query(Profile.id).first() is not None:
            return None
        email = email.strip().lower()
        if not self.is_email_allowed(email):
            self.db.add(AllowedEmail(email=email, added_by=None))
        profile = self._create_account(name, email, password, Role.ADMIN)
        logger.info("Seeded admin account %s", email)
        return profile

    def _create_account(self, name: str, email: str, password: str, role: Role) -> Profile:
        email = email.strip().lower()
        if self.find_profile_by_email(email) is not None:
            raise Conflict("An account with this email already exists")

        profile = Profile(name=name.strip(), email=email)
        profile.credential = Credential(password_hash=hash_password(password))
        profile.role = UserRole(role=role)
        self.db.add(profile)
        self._commit_unique("An account with this email already exists")
        self.db.refresh(profile)
        return profile

    def _commit_unique(self, conflict_message: str) -> None:
        try:
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            raise Conflict(conflict_message) from e

    # Allow-list management (admin only)

    def list_allowed_emails(self, actor_id: str, actor_role: Optional[Role]) -> List[AllowedEmail]:
        authorize(self.db, actor_role, actor_id, Action.MANAGE_ALLOWED_EMAILS, entity_type="AllowedEmail")
        return self.db.query(AllowedEmail).order_by(AllowedEmail.created_at.desc()).all()

    def add_allowed_email(self, actor_id: str, actor_role: Optional[Role], email: str) -> AllowedEmail:
        authorize(self.db, actor_role, actor_id, Action.MANAGE_ALLOWED_EMAILS, entity_type="AllowedEmail")
        email = email.strip().lower()
        if self.is_email_allowed(email):
            raise Conflict("This email is already in the allowed list")

        entry = AllowedEmail(id=new_id(), email=email, added_by=actor_id)
        self.db.add(entry)
        record_audit(self.db, AuditEventType.ALLOWED_EMAIL_ADDED, "AllowedEmail", entry.id, actor_id, email=email)
        self._commit_unique("This email is already in the allowed list")
        self.db.refresh(entry)
        return entry

    def remove_allowed_email(self, actor_id: str, actor_role: Optional[Role], entry_id: str) -> None:
        """Remove an allow-list entry. An admin's own entry can never be removed."""
        authorize(self.db, actor_role, actor_id, Action.MANAGE_ALLOWED_EMAILS, entity_type="AllowedEmail", entity_id=entry_id)
        entry = self.db.query(AllowedEmail).filter(AllowedEmail.id == entry_id).first()
        if entry is None:
            raise NotFound("Allowed email not found")

        if self.is_admin_email(entry.email):
            authorize(
                self.db, actor_role, actor_id, Action.DELETE_ADMIN_ALLOWED_EMAIL,
                entity_type="AllowedEmail", entity_id=entry_id,
            )

        self.db.delete(entry)
        record_audit(self.db, AuditEventType.ALLOWED_EMAIL_REMOVED, "AllowedEmail", entry_id, actor_id, email=entry.email)
        self.db.commit()

    def is_admin_email(self, email: str) -> bool:
        profile = self.find_profile_by_email(email)
        return profile is not None and self.resolve_role(profile.id) is Role.ADMIN

    # User management (admin only)

    def create_user(self, actor_id: str, actor_role: Optional[Role], name: str, email: str,
                    password: str, role: Role = Role.MEMBER) -> Profile:
        """Create an account with any role. The email is allow-listed if it wasn't already."""
        authorize(self.db, actor_role, actor_id, Action.MANAGE_USERS, entity_type="Profile")
        email = email.strip().lower()
        if not self.is_email_allowed(email):
            self.db.add(AllowedEmail(email=email, added_by=actor_id))
        profile = self._create_account(name, email, password, role)
        record_audit(self.db, AuditEventType.USER_CREATED, "Profile", profile.id, actor_id, role=role.value)
        self.db.commit()
        return profile

    def update_user(self, actor_id: str, actor_role: Optional[Role], user_id: str,
                    name: Optional[str] = None, email: Optional[str] = None,
                    role: Optional[Role] = None) -> Profile:
        authorize(self.db, actor_role, actor_id, Action.MANAGE_USERS, entity_type="Profile", entity_id=user_id)
        profile = self.get_profile(user_id)

        if name is not None:
            profile.name = name.strip()
        if email is not None:
            email = email.strip().lower()
            other = self.find_profile_by_email(email)
            if other is not None and other.id != profile.id:
                raise Conflict("An account with this email already exists")
            if email != profile.email and not self.is_email_allowed(email):
                # The profile email is the sign-in email: carry its allow-list entry over
                entry = self.db.query(AllowedEmail).filter(AllowedEmail.email == profile.email).first()
                if entry is not None:
                    entry.email = email
                else:
                    self.db.add(AllowedEmail(email=email, added_by=actor_id))
            profile.email = email
        if role is not None:
            if profile.role is None:
                profile.role = UserRole(role=role)
            else:
                profile.role.role = role

        record_audit(
            self.db, AuditEventType.USER_UPDATED, "Profile", user_id, actor_id,
            role=role.value if role else None,
        )
        self._commit_unique("An account with this email already exists")
        self.db.refresh(profile)
        return profile

    def delete_user(self, actor_id: str, actor_role: Optional[Role], user_id: str) -> None:
        """Delete the account; its role, credentials and sessions go with it."""
        authorize(self.db, actor_role, actor_id, Action.MANAGE_USERS, entity_type="Profile", entity_id=user_id)
        profile = self.get_profile(user_id)
        self.db.delete(profile)
        record_audit(self.db, AuditEventType.USER_DELETED, "Profile", user_id, actor_id)
        self.db.commit()
