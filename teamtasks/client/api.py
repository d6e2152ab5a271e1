"""
Async HTTP client for the Team Tasks API.

Every response is translated back into the service's error taxonomy, so
callers handle AccessDenied, Conflict, etc. the same way on both sides of
the wire. Network failures surface as TransientBackendError.
"""
import inspect
import logging
from typing import Any, Callable, Dict, List, Optional

import httpx

from teamtasks.errors import (
    AccessDenied,
    Conflict,
    InvalidCredentials,
    NotAllowedToAuthenticate,
    NotFound,
    TeamTasksError,
    TransientBackendError,
    ValidationFailed,
)
from teamtasks.models.enums import AuthEvent, Role
from teamtasks.services.attachments import Attachment

logger = logging.getLogger(__name__)

API_BASE_URL = "http://localhost:8000"
TIMEOUT_SECONDS = 10

_ERRORS_BY_CODE = {
    AccessDenied.code: AccessDenied,
    Conflict.code: Conflict,
    NotFound.code: NotFound,
    InvalidCredentials.code: InvalidCredentials,
}


def error_from_response(response: httpx.Response) -> TeamTasksError:
    try:
        body = response.json()
    except ValueError:
        body = {}
    if not isinstance(body, dict):
        body = {}
    code = body.get("code")
    message = body.get("message") or response.reason_phrase

    if response.status_code >= 500 or code == TransientBackendError.code:
        return TransientBackendError(detail=f"{response.status_code} {message}")
    if code == NotAllowedToAuthenticate.code:
        return NotAllowedToAuthenticate(message)
    if code == ValidationFailed.code or response.status_code == 422:
        return ValidationFailed(message, body.get("errors") or {})
    error_cls = _ERRORS_BY_CODE.get(code)
    if error_cls is not None:
        return error_cls(message)
    return TeamTasksError(message)


class TeamTasksApi:
    """Thin async wrapper over the REST API that also tracks the auth session."""

    def __init__(self, base_url: str = API_BASE_URL, transport: Optional[httpx.AsyncBaseTransport] = None,
                 timeout: float = TIMEOUT_SECONDS):
        self.client = httpx.AsyncClient(base_url=base_url, transport=transport, timeout=timeout)
        self.token: Optional[str] = None
        self._listeners: List[Callable] = []

    async def aclose(self) -> None:
        await self.client.aclose()

    async def __aenter__(self) -> "TeamTasksApi":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    # Auth state listeners

    def on_auth_state_change(self, callback: Callable) -> Callable[[], None]:
        """Register ``callback(event, session)``; returns a function that unregisters it."""
        self._listeners.append(callback)

        def unsubscribe():
            if callback in self._listeners:
                self._listeners.remove(callback)
        return unsubscribe

    async def _emit(self, event: AuthEvent, session: Optional[dict]) -> None:
        for callback in list(self._listeners):
            result = callback(event, session)
            if inspect.isawaitable(result):
                await result

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        headers = kwargs.pop("headers", {})
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        try:
            response = await self.client.request(method, f"/api{path}", headers=headers, **kwargs)
        except httpx.TransportError as e:
            logger.warning("%s %s failed: %s", method, path, e)
            raise TransientBackendError(detail=str(e)) from e
        if response.is_error:
            raise error_from_response(response)
        return response

    async def _json(self, method: str, path: str, **kwargs) -> Any:
        return (await self._request(method, path, **kwargs)).json()

    # Authentication

    async def sign_up(self, name: str, email: str, password: str, role: Role = Role.MEMBER) -> dict:
        return await self._json(
            "POST", "/auth/sign-up",
            json={"name": name, "email": email, "password": password, "role": Role(role).value},
        )

    async def sign_in(self, email: str, password: str) -> dict:
        session = await self._json("POST", "/auth/sign-in", json={"email": email, "password": password})
        self.token = session["access_token"]
        await self._emit(AuthEvent.SIGNED_IN, session)
        return session

    async def refresh_session(self) -> dict:
        session = await self._json("POST", "/auth/refresh")
        self.token = session["access_token"]
        await self._emit(AuthEvent.TOKEN_REFRESHED, session)
        return session

    async def sign_out(self) -> None:
        try:
            if self.token:
                await self._request("POST", "/auth/sign-out")
        finally:
            self.token = None
            await self._emit(AuthEvent.SIGNED_OUT, None)

    async def get_session(self) -> Optional[dict]:
        if not self.token:
            return None
        return await self._json("GET", "/auth/session")

    # Collections

    async def list_profiles(self) -> List[dict]:
        return await self._json("GET", "/profiles")

    async def list_tasks(self) -> List[dict]:
        return await self._json("GET", "/tasks")

    async def list_comments(self, task_id: Optional[str] = None) -> List[dict]:
        params = {"task_id": task_id} if task_id else None
        return await self._json("GET", "/comments", params=params)

    async def list_notifications(self) -> List[dict]:
        return await self._json("GET", "/notifications")

    # Tasks and comments

    async def create_task(self, payload: Dict[str, Any]) -> dict:
        return await self._json("POST", "/tasks", json=payload)

    async def update_task(self, task_id: str, changes: Dict[str, Any]) -> dict:
        return await self._json("PATCH", f"/tasks/{task_id}", json=changes)

    async def complete_task(self, task_id: str, completion_note: Optional[str] = None,
                            attachment: Optional[Attachment] = None) -> dict:
        data = {"completion_note": completion_note} if completion_note else {}
        files = None
        if attachment is not None:
            files = {"attachment": (attachment.filename, attachment.data, attachment.content_type)}
        return await self._json("POST", f"/tasks/{task_id}/complete", data=data, files=files)

    async def delete_task(self, task_id: str) -> None:
        await self._request("DELETE", f"/tasks/{task_id}")

    async def add_comment(self, task_id: str, content: str) -> dict:
        return await self._json("POST", f"/tasks/{task_id}/comments", json={"content": content})

    async def mark_notification_read(self, notification_id: str) -> dict:
        return await self._json("POST", f"/notifications/{notification_id}/read")

    # Admin surfaces

    async def list_allowed_emails(self) -> List[dict]:
        return await self._json("GET", "/allowed-emails")

    async def add_allowed_email(self, email: str) -> dict:
        return await self._json("POST", "/allowed-emails", json={"email": email})

    async def remove_allowed_email(self, entry_id: str) -> None:
        await self._request("DELETE", f"/allowed-emails/{entry_id}")

    async def create_user(self, payload: Dict[str, Any]) -> dict:
        return await self._json("POST", "/users", json=payload)

    async def update_user(self, user_id: str, changes: Dict[str, Any]) -> dict:
        return await self._json("PATCH", f"/users/{user_id}", json=changes)

    async def delete_user(self, user_id: str) -> None:
        await self._request("DELETE", f"/users/{user_id}")

    async def team_roster(self) -> List[dict]:
        return await self._json("GET", "/team")

    async def team_progress(self) -> dict:
        return await self._json("GET", "/team/progress")

    async def list_attachments(self) -> List[dict]:
        return await self._json("GET", "/attachments")
