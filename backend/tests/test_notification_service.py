"""
ScribeConnect Backend: Notification Service Tests
==================================================

What we test:
    ✅ Students see requests they sent, writers see requests they received
    ✅ Newest first
    ✅ Counterpart contact is the other party (name, mobile, email only)
    ✅ Exam details are attached
    ✅ A failed lookup leaves only its own field null without dropping rows
"""

from unittest.mock import patch

import pytest
from sqlalchemy import update
from sqlalchemy.exc import OperationalError

from scribeconnect.models.match_request import MatchRequest, MatchStatus
from scribeconnect.models.profile import Profile, UserRole
from scribeconnect.services.notification_service import NotificationService


class TestFetchForSession:
    def setup_method(self):
        self.service = NotificationService()

    @pytest.mark.asyncio
    async def test_student_sees_sent_requests_with_writer_contact(
        self, db_session, make_profile, make_exam, make_request, as_session
    ):
        student = await make_profile(UserRole.STUDENT, name="Ravi")
        writer = await make_profile(UserRole.WRITER, name="Meera")
        exam = await make_exam(student, exam_name="CAT")
        await make_request(student, writer, exam)

        result = await self.service.fetch_for_session(db_session, as_session(student))

        assert len(result) == 1
        assert result[0].counterpart.name == "Meera"
        assert result[0].counterpart.email == writer.email
        assert result[0].exam.exam_name == "CAT"
        assert not hasattr(result[0].counterpart, "postal_code")

    @pytest.mark.asyncio
    async def test_writer_sees_received_requests_with_student_contact(
        self, db_session, make_profile, make_exam, make_request, as_session
    ):
        student = await make_profile(UserRole.STUDENT, name="Ravi")
        writer = await make_profile(UserRole.WRITER, name="Meera")
        other_writer = await make_profile(UserRole.WRITER)
        exam = await make_exam(student)
        await make_request(student, writer, exam)
        await make_request(student, other_writer, exam)

        result = await self.service.fetch_for_session(db_session, as_session(writer))

        assert len(result) == 1
        assert result[0].writer_id == writer.id
        assert result[0].counterpart.name == "Ravi"

    @pytest.mark.asyncio
    async def test_newest_first(
        self, db_session, make_profile, make_exam, make_request, as_session
    ):
        student = await make_profile(UserRole.STUDENT)
        exam = await make_exam(student)
        ids = []
        for _ in range(3):
            writer = await make_profile(UserRole.WRITER)
            ids.append((await make_request(student, writer, exam)).id)

        result = await self.service.fetch_for_session(db_session, as_session(student))

        assert [r.id for r in result] == list(reversed(ids))

    @pytest.mark.asyncio
    async def test_empty(self, db_session, make_profile, as_session):
        student = await make_profile(UserRole.STUDENT)
        assert await self.service.fetch_for_session(db_session, as_session(student)) == []

    @pytest.mark.asyncio
    async def test_failed_contact_lookup_keeps_exam(
        self, db_session, make_profile, make_exam, make_request, as_session
    ):
        student = await make_profile(UserRole.STUDENT)
        writer = await make_profile(UserRole.WRITER)
        exam = await make_exam(student, exam_name="GATE")
        await make_request(student, writer, exam, MatchStatus.ACCEPTED)

        real_execute = db_session.execute

        async def execute(statement, *args, **kwargs):
            if Profile.__table__ in statement.get_final_froms():
                raise OperationalError(
                    "SELECT profiles", {}, Exception("canceling statement due to statement timeout")
                )
            return await real_execute(statement, *args, **kwargs)

        with patch.object(db_session, "execute", new=execute):
            result = await self.service.fetch_for_session(db_session, as_session(student))

        assert len(result) == 1
        assert result[0].counterpart is None
        assert result[0].exam is not None
        assert result[0].exam.exam_name == "GATE"
        assert result[0].status is MatchStatus.ACCEPTED

    @pytest.mark.asyncio
    async def test_missing_exam_is_null(
        self, db_session, make_profile, make_exam, make_request, as_session
    ):
        student = await make_profile(UserRole.STUDENT)
        writer = await make_profile(UserRole.WRITER)
        exam = await make_exam(student)
        other_exam = await make_exam(student, exam_name="GATE")
        request = await make_request(student, writer, exam)

        # Point the request at an exam id that no longer resolves
        await db_session.execute(
            update(MatchRequest)
            .where(MatchRequest.id == request.id)
            .values(exam_id=other_exam.id)
        )
        await db_session.execute(
            other_exam.__table__.delete().where(other_exam.__table__.c.id == other_exam.id)
        )
        await db_session.commit()
        db_session.expire_all()

        result = await self.service.fetch_for_session(db_session, as_session(student))

        assert len(result) == 1
        assert result[0].exam is None
        assert result[0].counterpart is not None
