"""
ScribeConnect Backend: Audit Logging Tests
===========================================

What we test:
    ✅ DatabaseAuditLogger writes rows in the background
    ✅ A failing write is logged, never raised
    ✅ Disabled logger records nothing
    ✅ Helpers fill user, session and category
    ✅ Client request info from the correlation context is attached
"""

import logging
import uuid
from unittest.mock import MagicMock

import pytest
from sqlalchemy import select

from scribeconnect.middleware.correlation import client_info_var, session_id_var
from scribeconnect.models.activity_log import ActivityLog
from scribeconnect.models.profile import UserRole
from scribeconnect.services.audit_service import DatabaseAuditLogger
from scribeconnect.session import UserSession


def make_session() -> UserSession:
    return UserSession(
        user_id=uuid.uuid4(),
        role=UserRole.WRITER,
        name="Meera",
        session_id="session_1760790000000_abcdefghi",
    )


class TestDatabaseAuditLogger:
    @pytest.mark.asyncio
    async def test_writes_row_in_background(self, session_factory):
        logger = DatabaseAuditLogger(session_factory=session_factory)
        session = make_session()

        logger.log_error(session, "fetch_failed", "timeout", {"page": "/home"}, severity="high")
        await logger.drain()

        async with session_factory() as db:
            rows = (await db.execute(select(ActivityLog))).scalars().all()
        assert len(rows) == 1
        assert rows[0].category == "error"
        assert rows[0].severity == "high"
        assert rows[0].success is False
        assert rows[0].user_id == session.user_id
        assert rows[0].session_id == session.session_id

    @pytest.mark.asyncio
    async def test_failure_is_logged_not_raised(self, caplog):
        failing_factory = MagicMock(side_effect=RuntimeError("pool exhausted"))
        logger = DatabaseAuditLogger(session_factory=failing_factory)

        with caplog.at_level(logging.WARNING, logger="scribeconnect.services.audit_service"):
            logger.log_system_action("startup")
            await logger.drain()

        assert "Failed to record audit event system/startup" in caplog.text

    @pytest.mark.asyncio
    async def test_disabled_records_nothing(self, session_factory):
        logger = DatabaseAuditLogger(session_factory=session_factory, enabled=False)

        logger.log_activity(make_session(), "exam_created")
        await logger.drain()

        async with session_factory() as db:
            assert (await db.execute(select(ActivityLog))).scalars().all() == []


class TestAuditHelpers:
    @pytest.mark.asyncio
    async def test_navigation_entry(self, audit):
        session = make_session()

        audit.log_page_navigation(session, "/writer-dashboard", page_title="Dashboard")

        entry = audit.entries[0]
        assert entry.category == "navigation"
        assert entry.event_type == "page_view"
        assert entry.page_url == "/writer-dashboard"
        assert entry.user_id == session.user_id

    @pytest.mark.asyncio
    async def test_anonymous_entry_uses_context_session(self, audit):
        token_sid = session_id_var.set("session_ctx_123")
        token_client = client_info_var.set(("10.0.0.7", "pytest-agent"))
        try:
            audit.log_client_event(None, "form_submission", "register_form", success=False)
        finally:
            session_id_var.reset(token_sid)
            client_info_var.reset(token_client)

        entry = audit.entries[0]
        assert entry.user_id is None
        assert entry.session_id == "session_ctx_123"
        assert entry.ip_address == "10.0.0.7"
        assert entry.user_agent == "pytest-agent"

    @pytest.mark.asyncio
    async def test_tracking_helpers_prefix_event_type(self, audit):
        session = make_session()
        exam_id = uuid.uuid4()

        audit.track_exam_activity(session, "created", exam_id)
        audit.track_profile_activity(session, "updated")

        assert [e.event_type for e in audit.entries] == ["exam_created", "profile_updated"]
        assert audit.entries[0].details == {"exam_id": str(exam_id)}
