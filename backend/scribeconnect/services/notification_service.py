"""
ScribeConnect Backend: Notification Service
============================================

What:  A user's match requests ("notifications"), newest first, each enriched
       with the counterpart's contact details and the referenced exam.
How:   One query for the rows, then one bulk lookup for counterpart profiles
       and one for exams, each in its own savepoint. Lookups are keyed by id,
       so a missing or failed lookup leaves only that field null; the row
       itself is always returned.
Who:   GET /api/requests and every refresh of the realtime bridge.

Counterpart:
    student viewer → the writer's name, mobile, email
    writer viewer  → the student's name, mobile, email
"""

import logging
import uuid
from typing import Dict, Iterable, List

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from scribeconnect.exceptions import DatabaseError
from scribeconnect.models.exam import ExamRequest
from scribeconnect.models.match_request import MatchRequest
from scribeconnect.models.profile import Profile
from scribeconnect.schemas.exam import ExamResponse
from scribeconnect.schemas.match_request import EnrichedMatchRequest
from scribeconnect.schemas.profile import ContactInfo
from scribeconnect.session import UserSession

logger = logging.getLogger(__name__)


class NotificationService:
    async def fetch_for_session(
        self, db: AsyncSession, session: UserSession
    ) -> List[EnrichedMatchRequest]:
        """
        Loads and enriches the caller's match requests.

        Raises:
            DatabaseError: The match request query itself failed
        """
        own_column = MatchRequest.writer_id if session.is_writer else MatchRequest.student_id

        try:
            result = await db.execute(
                select(MatchRequest)
                .where(own_column == session.user_id)
                .order_by(MatchRequest.created_at.desc())
            )
            rows = list(result.scalars().all())
        except SQLAlchemyError as e:
            logger.error("Failed to load requests for %s: %s", session.user_id, str(e))
            raise DatabaseError(
                message="Failed to load notifications",
                context={"user_id": str(session.user_id), "error": str(e)},
            )

        if not rows:
            return []

        counterpart_ids = {
            r.student_id if session.is_writer else r.writer_id for r in rows
        }
        contacts = await self._load_contacts(db, counterpart_ids)
        exams = await self._load_exams(db, {r.exam_id for r in rows})

        enriched = []
        for r in rows:
            counterpart_id = r.student_id if session.is_writer else r.writer_id
            enriched.append(
                EnrichedMatchRequest(
                    id=r.id,
                    student_id=r.student_id,
                    writer_id=r.writer_id,
                    exam_id=r.exam_id,
                    status=r.status,
                    created_at=r.created_at,
                    updated_at=r.updated_at,
                    counterpart=contacts.get(counterpart_id),
                    exam=exams.get(r.exam_id),
                )
            )
        return enriched

    async def _load_contacts(
        self, db: AsyncSession, ids: Iterable[uuid.UUID]
    ) -> Dict[uuid.UUID, ContactInfo]:
        try:
            async with db.begin_nested():
                result = await db.execute(
                    select(Profile.id, Profile.name, Profile.mobile, Profile.email).where(
                        Profile.id.in_(list(ids))
                    )
                )
                return {
                    row.id: ContactInfo(name=row.name, mobile=row.mobile, email=row.email)
                    for row in result
                }
        except SQLAlchemyError as e:
            logger.warning("Counterpart lookup failed; contact details omitted: %s", str(e))
            return {}

    async def _load_exams(
        self, db: AsyncSession, ids: Iterable[uuid.UUID]
    ) -> Dict[uuid.UUID, ExamResponse]:
        try:
            async with db.begin_nested():
                result = await db.execute(
                    select(ExamRequest).where(ExamRequest.id.in_(list(ids)))
                )
                return {
                    exam.id: ExamResponse.model_validate(exam)
                    for exam in result.scalars().all()
                }
        except SQLAlchemyError as e:
            logger.warning("Exam lookup failed; exam details omitted: %s", str(e))
            return {}


# ── Singleton Instance ────────────────────────────────────────────────────
notification_service = NotificationService()
