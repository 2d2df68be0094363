"""
Shared pytest fixtures for the Municipal Complaint Portal test suite.

Provides an in-process httpx AsyncClient backed by mongomock, a stub
categorization assistant, and pre-authenticated users for every role.
"""

import os
import tempfile

# Settings are read at import time, so they have to be in place first
os.environ["JWT_SECRET"] = "test-secret-key-with-at-least-thirty-two-characters-ok"
os.environ["MONGODB_DB"] = "complaint_portal_test"
os.environ["UPLOAD_DIR"] = tempfile.mkdtemp(prefix="complaint-portal-uploads-")
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["ENVIRONMENT"] = "development"
for _name in ("AI_API_KEY", "AI_API_URL", "ADMIN_EMAIL", "ADMIN_PASSWORD", "REALTIME_REDIS_URL"):
    os.environ.pop(_name, None)

import httpx
import mongomock
import pytest
import pytest_asyncio

from complaint_portal import db as database
from complaint_portal.accounts import build_user_doc
from complaint_portal.app import app, lifespan
from complaint_portal.assistant import Categorization, get_assistant
from complaint_portal.db import new_id, now_utc
from complaint_portal.models import Category, Priority
from complaint_portal.security import create_access_token, limiter


class StubAssistant:
    """Deterministic stand-in for the categorization assistant."""

    def __init__(self, category=Category.WATER_SUPPLY, priority=Priority.HIGH, fallback=False):
        self.category = category
        self.priority = priority
        self.fallback = fallback
        self.categorize_calls = 0
        self.summary_calls = 0

    async def categorize(self, title, description):
        self.categorize_calls += 1
        return Categorization(self.category, self.priority, self.fallback)

    async def summarize_resolution(self, title, description, details):
        self.summary_calls += 1
        return f"Summary: {details}"


@pytest.fixture
def mongo(monkeypatch):
    """Fresh in-memory MongoDB per test, handed to the app at startup."""
    client = mongomock.MongoClient(tz_aware=True)
    monkeypatch.setattr(database, "MongoClient", lambda *args, **kwargs: client)
    return client


@pytest.fixture
def assistant():
    stub = StubAssistant()
    app.dependency_overrides[get_assistant] = lambda: stub
    yield stub
    app.dependency_overrides.pop(get_assistant, None)


@pytest_asyncio.fixture
async def client(mongo, assistant):
    """In-process httpx AsyncClient running inside the app lifespan."""
    # Disable rate limiting so repeated logins aren't throttled
    limiter.enabled = False
    async with lifespan(app):
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as c:
            yield c


@pytest.fixture
def db(client):
    return database.db


def _make_user(db, role="user", name=None, email=None, password="secret123", department=None):
    email = email or f"{role}-{new_id()[:8]}@example.com"
    doc = build_user_doc(name or role.title(), email, password, role)
    doc["department"] = department
    db.users.insert_one(doc)
    if department:
        db.departments.update_one({"_id": department}, {"$addToSet": {"staff": doc["_id"]}})
    return doc


def _auth(user) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user)}"}


@pytest.fixture
def department(db):
    now = now_utc()
    doc = {"_id": new_id(), "name": "Water Board", "description": "Water supply",
           "category": "water_supply", "head": None, "contact_email": None, "contact_phone": None,
           "staff": [], "is_active": True, "created_at": now, "updated_at": now}
    db.departments.insert_one(doc)
    return doc


@pytest.fixture
def citizen(db):
    return _make_user(db, "user", name="Citizen One", email="citizen1@example.com")


@pytest.fixture
def other_citizen(db):
    return _make_user(db, "user", name="Citizen Two", email="citizen2@example.com")


@pytest.fixture
def admin(db):
    return _make_user(db, "admin", name="Admin", email="admin@example.com")


@pytest.fixture
def staff(db, department):
    return _make_user(db, "department_staff", name="Staff One", email="staff1@example.com",
                     department=department["_id"])


@pytest.fixture
def other_staff(db, department):
    return _make_user(db, "department_staff", name="Staff Two", email="staff2@example.com",
                     department=department["_id"])


@pytest.fixture
def citizen_headers(citizen):
    return _auth(citizen)


@pytest.fixture
def admin_headers(admin):
    return _auth(admin)


@pytest.fixture
def staff_headers(staff):
    return _auth(staff)


@pytest.fixture
def file_complaint(client, citizen_headers):
    """Returns a coroutine that files a complaint over HTTP and returns it."""
    async def _file(headers=None, **fields):
        data = {"title": "Burst water pipe", "description": "Water is leaking onto the main road",
                "category": "water_supply", "priority": "high", **fields}
        data = {k: v for k, v in data.items() if v is not None}
        resp = await client.post("/complaints", data=data, headers=headers or citizen_headers)
        assert resp.status_code == 201, resp.text
        return resp.json()["complaint"]
    return _file


@pytest.fixture
def new_user(db):
    """Factory for extra accounts: new_user(role, **fields) -> stored user document."""
    def _new(role="user", **fields):
        return _make_user(db, role, **fields)
    return _new


@pytest.fixture
def headers_for():
    return _auth
