"""Pytest configuration and shared fixtures."""
from datetime import date, timedelta

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine

from teamtasks.api.deps import get_storage
from teamtasks.client.api import TeamTasksApi
from teamtasks.database import Base, get_db, make_session_factory
from teamtasks.main import app
from teamtasks.models import audit, domain  # noqa: F401
from teamtasks.models.domain import AllowedEmail
from teamtasks.models.enums import Role
from teamtasks.realtime import ChangeFeed
from teamtasks.services.attachments import Attachment, LocalBlobStorage
from teamtasks.services.identity import IdentityService

PASSWORD = "correct-horse"


class RecordingStorage(LocalBlobStorage):
    """Local bucket that remembers every upload attempt."""

    def __init__(self, root):
        super().__init__(root=str(root), public_url="http://files.test")
        self.uploads = []

    def upload(self, path, data):
        self.uploads.append(path)
        super().upload(path, data)


@pytest.fixture(autouse=True)
def fast_password_hashing(monkeypatch):
    monkeypatch.setattr("teamtasks.services.identity._HASH_ITERATIONS", 1_000)


@pytest.fixture
def feed():
    return ChangeFeed()


@pytest.fixture
def session_factory(tmp_path, feed):
    """A fresh file-backed SQLite database per test, publishing to ``feed``."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'teamtasks.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(engine)
    yield make_session_factory(engine, feed)
    engine.dispose()


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def storage(tmp_path):
    return RecordingStorage(tmp_path / "bucket")


@pytest.fixture
def make_user(db_session):
    """Allow-list an email and create an account with the given role."""
    def _make(name, role=Role.MEMBER, email=None):
        email = email or f"{name.lower().replace(' ', '.')}@co.com"
        identity = IdentityService(db_session)
        if not identity.is_email_allowed(email):
            db_session.add(AllowedEmail(email=email))
            db_session.commit()
        return identity._create_account(name, email, PASSWORD, role)
    return _make


@pytest.fixture
def admin(make_user):
    return make_user("Ada Admin", Role.ADMIN)


@pytest.fixture
def manager(make_user):
    return make_user("Max Manager", Role.MANAGER)


@pytest.fixture
def other_manager(make_user):
    return make_user("Mia Manager", Role.MANAGER)


@pytest.fixture
def member(make_user):
    return make_user("Meg Member", Role.MEMBER)


@pytest.fixture
def task_payload(member):
    def _payload(**overrides):
        payload = {
            "title": "Prepare quarterly report",
            "description": "Numbers for Q3",
            "assigned_to": member.id,
            "deadline": (date.today() + timedelta(days=3)).isoformat(),
            "priority": "high",
        }
        payload.update(overrides)
        return payload
    return _payload


@pytest.fixture
def pdf():
    return Attachment(filename="proof.pdf", content_type="application/pdf", data=b"%PDF-1.4 done")


@pytest.fixture
def api_app(session_factory, storage):
    """The app bound to the per-test database and bucket."""
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_storage] = lambda: storage
    yield app
    app.dependency_overrides.clear()


@pytest.fixture
def client(api_app):
    # No context manager: the lifespan (table creation on the real engine, admin seed) stays off
    return TestClient(api_app)


@pytest.fixture
def make_api(api_app):
    """Async API clients that talk to the app in-process."""
    def _make():
        return TeamTasksApi(base_url="http://test", transport=httpx.ASGITransport(app=api_app))
    return _make


@pytest.fixture
def login(client):
    """Sign in over HTTP and return the bearer header."""
    def _login(email, password=PASSWORD):
        response = client.post("/api/auth/sign-in", json={"email": email, "password": password})
        assert response.status_code == 200, response.text
        return {"Authorization": f"Bearer {response.json()['access_token']}"}
    return _login
