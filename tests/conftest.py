"""
Test setup: a throwaway SQLite database, a recording scheduler and captured notifications.
Environment is set before any app import so the cached settings pick it up.
"""
import os
import re
import tempfile
from decimal import Decimal

_tmpdir = tempfile.mkdtemp(prefix="parkshare-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_tmpdir, 'parkshare.db')}"
os.environ["APP_ENV"] = "test"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["JWT_SECRET_KEY"] = "test-jwt-secret-key"
os.environ["BCRYPT_ROUNDS"] = "10"
os.environ["DEVICE_API_KEY"] = "test-device-key"
os.environ["EXPIRY_SWEEP_ENABLED"] = "false"
os.environ["NOTIFICATIONS_DRY_RUN"] = "true"
os.environ["FRONTEND_URL"] = "http://frontend.local"

import pytest
from fastapi.testclient import TestClient

from app.database import Base, SessionLocal, engine
from app.dependencies import get_expiry_scheduler
from app.main import app
from app.models.parking import Parking
from app.models.user import User, UserRole
from app.services import notifications
from app.services.auth import create_access_token, get_password_hash

PASSWORD = "Abc#1234"
DEVICE_KEY = "test-device-key"


class RecordingScheduler:
    """Stands in for ExpiryScheduler: remembers timers instead of running them."""

    def __init__(self):
        self.jobs = {}
        self.cancelled = []

    def schedule(self, key, delay, callback, *args):
        self.jobs[key] = (delay, callback, args)

    def cancel(self, key):
        self.cancelled.append(key)
        return self.jobs.pop(key, None) is not None

    def is_scheduled(self, key):
        return key in self.jobs

    def fire(self, key):
        _delay, callback, args = self.jobs.pop(key)
        return callback(*args)


class Outbox:
    """Captured SMS and emails; flip sms_ok/email_ok to simulate delivery failures."""

    def __init__(self):
        self.sms = []
        self.emails = []
        self.sms_ok = True
        self.email_ok = True

    def send_sms(self, to_phone, body):
        if self.sms_ok:
            self.sms.append((to_phone, body))
        return self.sms_ok

    def send_email(self, to_email, subject, html_content, text_content=None):
        if self.email_ok:
            self.emails.append((to_email, subject, text_content or html_content))
        return self.email_ok

    def last_pin(self, phone=None):
        for to_phone, body in reversed(self.sms):
            if phone is None or to_phone == phone:
                return re.search(r"PIN code is (\d{6})", body).group(1)
        raise AssertionError(f"no PIN sent to {phone}")

    def last_link_token(self, kind):
        for _to, _subject, body in reversed(self.emails):
            match = re.search(rf"/{kind}/([0-9a-f]+)", body)
            if match:
                return match.group(1)
        raise AssertionError(f"no {kind} link sent")

    def subjects(self, to_email):
        return [subject for to, subject, _body in self.emails if to == to_email]


@pytest.fixture(autouse=True)
def _schema():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def scheduler():
    return RecordingScheduler()


@pytest.fixture(autouse=True)
def outbox(monkeypatch):
    box = Outbox()
    monkeypatch.setattr(notifications, "send_sms", box.send_sms)
    monkeypatch.setattr(notifications, "send_email", box.send_email)
    return box


@pytest.fixture
def client(scheduler):
    app.dependency_overrides[get_expiry_scheduler] = lambda: scheduler
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def make_user(db):
    """Create a confirmed account directly in the database."""
    counter = {"n": 0}

    def _make(username=None, role=UserRole.client, confirmed=True, password=PASSWORD):
        counter["n"] += 1
        n = counter["n"]
        username = username or f"user{n:03d}"
        user = User(
            username=username,
            email=f"{username}@x.com",
            phone=f"+4179123{n:04d}",
            hashed_password=get_password_hash(password),
            role=role,
            is_confirmed=confirmed,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make


@pytest.fixture
def make_parking(db):
    def _make(owner, title="garage one", price=Decimal("2.00"), validated=True, city="lausanne"):
        parking = Parking(owner_id=owner.id, title=title, price=price, city=city, is_pending=not validated)
        db.add(parking)
        db.commit()
        db.refresh(parking)
        return parking

    return _make


def auth_headers(user):
    return {"Authorization": f"Bearer {create_access_token(user.id)}"}
