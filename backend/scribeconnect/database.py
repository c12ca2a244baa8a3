"""
ScribeConnect Backend: Database Session Management
===================================================

What:  The shared async engine, the session factory and the per-request
       session dependency for profiles, exams, match requests and audit rows.
How:   One pooled asyncpg engine; a request session commits when the route
       returns and rolls back when it raises.
Who:   Route handlers (via Depends), the realtime bridge and the audit logger
       (via async_session_factory, outside any request).
Engine and factory exist from import time; request sessions live for one call.

Connection Pooling:
    pool_size=20, max_overflow=10 → at most 30 connections from the API.
    The realtime change feed holds one more dedicated LISTEN connection.
    pool_recycle=3600 recycles connections every hour.
"""

from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from scribeconnect.config import settings


# ── Engine Configuration ──────────────────────────────────────────────────
engine = create_async_engine(
    settings.database_url,
    pool_size=settings.db_pool_size,
    max_overflow=settings.db_max_overflow,
    pool_pre_ping=settings.db_pool_pre_ping,
    pool_recycle=3600,
    # SQL echo only in DEBUG
    echo=settings.log_level == "DEBUG",
)

# ── Session Factory ───────────────────────────────────────────────────────
# expire_on_commit=False: attributes stay readable after commit; the
# enrichment step builds responses from rows after the transaction ends.
async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


# ── Base Model ────────────────────────────────────────────────────────────
class Base(DeclarativeBase):
    """
    Declarative base shared by Profile, ExamRequest, MatchRequest and
    ActivityLog; Alembic autogenerate and the test create_all() read its metadata.
    """
    pass


# ── Session Dependency ────────────────────────────────────────────────────
async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency that provides a database session per request.

    Commits after the route returns, rolls back if it raised, and always
    hands the connection back to the pool.

    The lifecycle controller relies on this: deleting an exam removes its
    match requests and the exam row inside one transaction, so a failure
    between the two statements leaves both in place.
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


# ── Lifecycle Helpers ─────────────────────────────────────────────────────
async def dispose_engine() -> None:
    """
    Closes every pooled connection. Runs last in the lifespan shutdown,
    after the bridges and the change feed are closed.
    """
    await engine.dispose()
