"""Pytest fixtures."""

import os
import uuid

os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")
os.environ.setdefault("LOCATION_PURGE_INTERVAL_SECONDS", "0")
os.environ.setdefault("NOTIFICATION_BACKOFF_SECONDS", "0")

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

from app.core.deps import get_notifier  # noqa: E402
from app.core.errors import DeliveryError  # noqa: E402
from app.db.base import Base  # noqa: E402
from app.db.session import get_db  # noqa: E402
from app.main import app  # noqa: E402
from app.models import AlertNotification, EmergencyAction, Journey, LocationUpdate, SafetyAlert, User  # noqa: E402,F401 - register for create_all
from app.services.notification_service import Notifier  # noqa: E402

TEST_DATABASE_URL = "sqlite:///./test.db"

engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def override_get_db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


class FakeChannel:
    """Records every send; fails for the recipient ids in ``fail_for``."""

    def __init__(self, name="push", fail_for=()):
        self.name = name
        self.fail_for = set(fail_for)
        self.sent = []

    def applies_to(self, recipient, payload):
        return True

    async def send(self, recipient, payload):
        if recipient.id in self.fail_for:
            raise DeliveryError(self.name, "unreachable")
        self.sent.append((recipient.id, payload))

    def types_for(self, recipient_id):
        return [p.data.get("type") for rid, p in self.sent if rid == recipient_id]


class FakeConnection:
    """Live connection stand-in."""

    def __init__(self, fail=False):
        self.fail = fail
        self.frames = []

    async def send_text(self, data):
        if self.fail:
            raise RuntimeError("socket closed")
        self.frames.append(data)


@pytest.fixture(scope="session")
def setup_db():
    """Create tables once for test session."""
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def channel():
    return FakeChannel()


@pytest.fixture
def db_session(setup_db):
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def client(setup_db, channel):
    """Test client with overridden DB and a recording notifier."""
    notifier = Notifier([channel])
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_notifier] = lambda: notifier
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


def register(client, role="user", name=None):
    """Register and log in a fresh account. Returns (user_id, auth headers)."""
    email = f"{role}-{uuid.uuid4().hex[:10]}@test.com"
    r = client.post(
        "/auth/register",
        json={"email": email, "password": "pass1234", "full_name": name or role.title(), "role": role},
    )
    assert r.status_code == 201, r.text
    login = client.post("/auth/login", json={"email": email, "password": "pass1234"}).json()
    return login["user_id"], {"Authorization": f"Bearer {login['access_token']}"}


def link(client, user_headers, parent_headers):
    code = client.post("/links/code", headers=user_headers).json()["code"]
    r = client.post("/links/redeem", headers=parent_headers, json={"code": code})
    assert r.status_code == 200, r.text


START = {"lat": 40.7128, "lng": -74.0060}
DESTINATION = {"lat": 40.7306, "lng": -73.9352}


def create_journey(client, headers, **extra):
    body = {
        "startLocation": START,
        "destination": {**DESTINATION, "address": "Home"},
        "transportMode": "walking",
        "scheduledTime": "2026-11-01T08:30:00Z",
        **extra,
    }
    r = client.post("/journeys", headers=headers, json=body)
    assert r.status_code == 201, r.text
    return r.json()


def start_journey(client, headers, **extra):
    journey = create_journey(client, headers, **extra)
    r = client.post(f"/journeys/{journey['id']}/start", headers=headers, json={})
    assert r.status_code == 200, r.text
    return r.json()
