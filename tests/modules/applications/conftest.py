"""
Fixtures for applications tests.
"""

import asyncio
import copy
from collections import defaultdict
from datetime import UTC, datetime
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch
from uuid import UUID, uuid4

import pytest

from idv.core.auth import ANONYMOUS, Principal, PrincipalRole
from idv.modules.applications.models import (
    ACTIVE_STATUSES,
    Application,
    ApplicationStatus,
    Gender,
    IdentityDocumentType,
)
from idv.modules.applications.schemas import ApplicationCreate

CUSTOMER_ID = UUID("0b6f2f54-5d1e-4c38-9a51-3f4f3a1d2c01")
OTHER_CUSTOMER_ID = UUID("7d0c7b0e-8f7a-4f52-8f7f-6a4c2e9b1d02")
AUDITOR_ID = UUID("c3a1e9d4-2b6f-4e0a-b7d8-91f0a2c4e503")

RESIDENT_ID_NUMBER = "11010519900101001X"
FRONT_PHOTO = "https://cdn.example.com/ids/front.jpg"
BACK_PHOTO = "https://cdn.example.com/ids/back.jpg"


@pytest.fixture
def mock_db():
    """Create a mock database session."""
    db = AsyncMock()
    db.commit = AsyncMock()
    db.rollback = AsyncMock()
    db.refresh = AsyncMock()
    db.flush = AsyncMock()
    db.get = AsyncMock()
    db.execute = AsyncMock()
    db.add = MagicMock()
    return db


# ============================================
# Principals
# ============================================


@pytest.fixture
def customer():
    return Principal(id=CUSTOMER_ID, role=PrincipalRole.CUSTOMER)


@pytest.fixture
def other_customer():
    return Principal(id=OTHER_CUSTOMER_ID, role=PrincipalRole.CUSTOMER)


@pytest.fixture
def auditor():
    return Principal(id=AUDITOR_ID, role=PrincipalRole.AUDITOR)


@pytest.fixture
def admin():
    return Principal(id=uuid4(), role=PrincipalRole.ADMIN)


@pytest.fixture
def anonymous():
    return ANONYMOUS


# ============================================
# Applications
# ============================================


@pytest.fixture
def sample_application_create():
    """A valid submission for a resident ID."""
    return ApplicationCreate(
        name="张三",
        gender=Gender.MALE,
        id_type=IdentityDocumentType.RESIDENT_ID,
        id_number=RESIDENT_ID_NUMBER,
        phone_number="13800138000",
        address="北京市朝阳区建国路88号",
        id_front_photo_url=FRONT_PHOTO,
        id_back_photo_url=BACK_PHOTO,
    )


@pytest.fixture
def application_factory():
    """Build Application mocks with sensible defaults."""

    def _make(**overrides):
        app = MagicMock(spec=Application)
        now = datetime.now(UTC)
        values = {
            "id": uuid4(),
            "owner_id": CUSTOMER_ID,
            "name": "张三",
            "gender": Gender.MALE,
            "id_type": IdentityDocumentType.RESIDENT_ID,
            "id_number": RESIDENT_ID_NUMBER,
            "phone_number": "13800138000",
            "address": "北京市朝阳区建国路88号",
            "id_front_photo_url": FRONT_PHOTO,
            "id_back_photo_url": BACK_PHOTO,
            "status": ApplicationStatus.PENDING,
            "comments": None,
            "created_at": now,
            "updated_at": now,
        }
        values.update(overrides)
        for key, value in values.items():
            setattr(app, key, value)
        return app

    return _make


@pytest.fixture
def pending_application(application_factory):
    return application_factory(status=ApplicationStatus.PENDING)


@pytest.fixture
def rejected_application(application_factory):
    return application_factory(status=ApplicationStatus.REJECTED, comments="photo unreadable")


# ============================================
# In-memory storage
# ============================================


class FakeSession:
    """
    Session double with transactional staging.

    Writes are staged until commit; commit and rollback both release the
    row locks taken through InMemoryStore.lock_application.
    """

    def __init__(self, store: "InMemoryStore"):
        self.store = store
        self.staged_applications: dict = {}
        self.staged_audit: list = []
        self.held_locks: list[asyncio.Lock] = []
        self.commits = 0
        self.rollbacks = 0

    async def commit(self):
        self.store.applications.update(self.staged_applications)
        for entry in self.staged_audit:
            entry.id = self.store.next_audit_id()
            self.store.audit_log.append(entry)
        self.commits += 1
        self._end()

    async def rollback(self):
        self.rollbacks += 1
        self._end()

    def _end(self):
        self.staged_applications = {}
        self.staged_audit = []
        for lock in self.held_locks:
            lock.release()
        self.held_locks = []


class InMemoryStore:
    """
    Committed rows, an audit log and per-row locks.

    Exposes the repository and locking functions the service calls, so it
    can be patched in for both modules.
    """

    def __init__(self):
        self.applications: dict = {}
        self.audit_log: list = []
        self.locks: defaultdict[UUID, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._audit_seq = 0

    def session(self) -> FakeSession:
        return FakeSession(self)

    def next_audit_id(self) -> int:
        self._audit_seq += 1
        return self._audit_seq

    def history(self, application_id):
        return [e for e in self.audit_log if e.application_id == application_id]

    # locking
    async def lock_application(self, db, application_id):
        lock = self.locks[application_id]
        await lock.acquire()
        db.held_locks.append(lock)
        # Yield so a competing task can reach the lock
        await asyncio.sleep(0)
        committed = self.applications.get(application_id)
        return copy.copy(committed) if committed else None

    # repository
    async def get_by_id(self, db, id):
        committed = self.applications.get(id)
        return copy.copy(committed) if committed else None

    async def get_active_by_id_number(self, db, id_number, exclude_id=None):
        rows = {**self.applications, **db.staged_applications}
        for app in rows.values():
            if app.id_number == id_number and app.status in ACTIVE_STATUSES and app.id != exclude_id:
                return app
        return None

    async def create(self, db, **fields):
        now = datetime.now(UTC)
        app = SimpleNamespace(id=uuid4(), comments=None, created_at=now, updated_at=now, **fields)
        db.staged_applications[app.id] = app
        return app

    async def update(self, db, application, changes):
        for key, value in changes.items():
            setattr(application, key, value)
        application.updated_at = datetime.now(UTC)
        db.staged_applications[application.id] = application
        return application

    async def add_audit_entry(self, db, application_id, actor, action, remarks=None):
        entry = SimpleNamespace(
            id=None,
            application_id=application_id,
            actor=actor,
            action=action,
            remarks=remarks,
            created_at=datetime.now(UTC),
        )
        db.staged_audit.append(entry)
        return entry

    async def get_audit_history(self, db, application_id):
        return sorted(
            self.history(application_id),
            key=lambda e: (e.created_at, e.id),
            reverse=True,
        )

    async def list_by_owner(self, db, owner_id):
        rows = [a for a in self.applications.values() if a.owner_id == owner_id]
        return sorted(rows, key=lambda a: a.created_at, reverse=True)


@pytest.fixture
def memory_store():
    """Patch the service's repository and locking with an InMemoryStore."""
    store = InMemoryStore()
    with (
        patch("idv.modules.applications.service.repository", store),
        patch("idv.modules.applications.service.locking", store),
    ):
        yield store
