"""
ScribeConnect Backend: Test Configuration (conftest.py)
========================================================

What:  Shared pytest fixtures for the entire test suite.
How:   Services run against a fresh in-memory SQLite database (aiosqlite)
       per test; the realtime feed and the audit port are replaced by
       in-process fakes.

Fixture Hierarchy:
    Function-scoped (created fresh for each test):
    ├── db_engine: in-memory SQLite engine with all tables created
    ├── session_factory / db_session: sessions bound to that engine
    ├── audit: RecordingAuditLogger (keeps entries in a list)
    ├── make_profile / make_exam / make_request: row factories
    ├── mock_db_session: AsyncMock session for failure-path tests
    └── test_client: HTTPX AsyncClient over ASGITransport, with the
        database and audit dependencies overridden
"""

import os
import uuid
from datetime import date
from typing import Callable, List, Optional

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool
from unittest.mock import AsyncMock, MagicMock


# ══════════════════════════════════════════════════════════════════════════
# Environment Setup
# ══════════════════════════════════════════════════════════════════════════

# Set before any scribeconnect import so Settings() picks them up
os.environ["LOG_LEVEL"] = "WARNING"
os.environ["AUDIT_ENABLED"] = "false"

from scribeconnect.database import Base  # noqa: E402
from scribeconnect.models.exam import ExamRequest  # noqa: E402
from scribeconnect.models.match_request import MatchRequest, MatchStatus  # noqa: E402
from scribeconnect.models.profile import Profile, UserRole  # noqa: E402
from scribeconnect.services.audit_service import AuditEntry, AuditLogger  # noqa: E402
from scribeconnect.services.change_feed import (  # noqa: E402
    ChangeEvent,
    ChangeFeed,
    ChangeHandler,
    LostHandler,
    Subscription,
)
from scribeconnect.exceptions import RealtimeSubscriptionError  # noqa: E402
from scribeconnect.session import UserSession  # noqa: E402


# ══════════════════════════════════════════════════════════════════════════
# Fakes
# ══════════════════════════════════════════════════════════════════════════

class RecordingAuditLogger(AuditLogger):
    """Audit port that keeps every entry in memory."""

    def __init__(self):
        self.entries: List[AuditEntry] = []

    def record(self, entry: AuditEntry) -> None:
        self.entries.append(entry)

    def of_type(self, event_type: str) -> List[AuditEntry]:
        return [e for e in self.entries if e.event_type == event_type]


class FakeChangeFeed(ChangeFeed):
    """
    In-process ChangeFeed.

    fail_subscribe=True makes subscribe() raise RealtimeSubscriptionError.
    emit() awaits every handler directly; lose() simulates a dropped connection.
    """

    def __init__(self, fail_subscribe: bool = False):
        self.fail_subscribe = fail_subscribe
        self.handlers: dict = {}
        self.lost_handlers: dict = {}
        self.closed = False
        self._next = 0

    @property
    def active_subscriptions(self) -> int:
        return len(self.handlers)

    @property
    def is_connected(self) -> bool:
        return not self.fail_subscribe and not self.closed

    async def subscribe(
        self, handler: ChangeHandler, on_lost: Optional[LostHandler] = None
    ) -> Subscription:
        if self.fail_subscribe:
            raise RealtimeSubscriptionError(context={"reason": "test"})
        self._next += 1
        token = self._next
        self.handlers[token] = handler
        if on_lost is not None:
            self.lost_handlers[token] = on_lost

        def release():
            self.handlers.pop(token, None)
            self.lost_handlers.pop(token, None)

        return Subscription(release)

    async def emit(self, event: ChangeEvent) -> None:
        for handler in list(self.handlers.values()):
            await handler(event)

    def lose(self) -> None:
        for on_lost in list(self.lost_handlers.values()):
            on_lost()

    async def close(self) -> None:
        self.closed = True
        self.handlers.clear()
        self.lost_handlers.clear()


# ══════════════════════════════════════════════════════════════════════════
# Database Fixtures
# ══════════════════════════════════════════════════════════════════════════

@pytest_asyncio.fixture
async def db_engine():
    """
    In-memory SQLite engine shared by all sessions of one test.

    pysqlite's own transaction handling breaks SAVEPOINT; the connect/begin
    listeners hand transaction control to SQLAlchemy so begin_nested() works.
    """
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(engine.sync_engine, "connect")
    def do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def mock_db_session():
    """
    Provides a mock async database session.

    Usage:
        mock_db_session.execute.side_effect = OperationalError(...)
    """
    session = AsyncMock()
    session.execute = AsyncMock()
    session.flush = AsyncMock()
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    session.close = AsyncMock()
    session.add = MagicMock()
    return session


@pytest.fixture
def audit() -> RecordingAuditLogger:
    return RecordingAuditLogger()


# ══════════════════════════════════════════════════════════════════════════
# Row Factories
# ══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def make_profile(db_session) -> Callable:
    """
    Usage:
        writer = await make_profile(UserRole.WRITER, postal_code="110001")
    """

    async def _make(
        role: UserRole = UserRole.STUDENT,
        postal_code: str = "110001",
        name: Optional[str] = None,
    ) -> Profile:
        profile = Profile(
            id=uuid.uuid4(),
            role=role,
            name=name or f"{role.value.title()} {uuid.uuid4().hex[:4]}",
            age=24,
            gender="female",
            mobile="9876543210",
            email=f"{uuid.uuid4().hex[:8]}@example.com",
            district="New Delhi",
            state="Delhi",
            postal_code=postal_code,
            verified=False,
        )
        db_session.add(profile)
        await db_session.commit()
        return profile

    return _make


@pytest.fixture
def make_exam(db_session) -> Callable:
    async def _make(
        student: Profile,
        exam_name: str = "CAT",
        exam_date: Optional[date] = None,
        postal_code: Optional[str] = None,
    ) -> ExamRequest:
        exam = ExamRequest(
            student_id=student.id,
            exam_date=exam_date,
            exam_name=exam_name,
            qualification_required="Graduate",
            center="Delhi Public School",
            postal_code=postal_code or student.postal_code,
        )
        db_session.add(exam)
        await db_session.commit()
        return exam

    return _make


@pytest.fixture
def make_request(db_session) -> Callable:
    async def _make(
        student: Profile,
        writer: Profile,
        exam: ExamRequest,
        status: MatchStatus = MatchStatus.PENDING,
    ) -> MatchRequest:
        request = MatchRequest(
            student_id=student.id,
            writer_id=writer.id,
            exam_id=exam.id,
            status=status,
        )
        db_session.add(request)
        await db_session.commit()
        return request

    return _make


def session_for(profile: Profile, session_id: str = "session_1760790000000_testabcde") -> UserSession:
    """UserSession for a stored profile."""
    return UserSession(
        user_id=profile.id,
        role=profile.role,
        name=profile.name,
        session_id=session_id,
    )


@pytest.fixture
def as_session() -> Callable[[Profile], UserSession]:
    return session_for


# ══════════════════════════════════════════════════════════════════════════
# API Client
# ══════════════════════════════════════════════════════════════════════════

@pytest_asyncio.fixture
async def test_client(session_factory, audit):
    """
    HTTPX AsyncClient wired to the FastAPI app.

    get_db_session and get_audit_logger are overridden so routes use the
    test database and the recording audit port.

    Usage:
        response = await test_client.get(
            "/api/requests", headers={"X-User-ID": str(student.id)}
        )
    """
    from scribeconnect.database import get_db_session
    from scribeconnect.main import app
    from scribeconnect.services.audit_service import get_audit_logger

    async def override_db_session():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db_session] = override_db_session
    app.dependency_overrides[get_audit_logger] = lambda: audit

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
