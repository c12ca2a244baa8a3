"""
ScribeConnect Backend: Writer Matcher
======================================

What:  Produces the candidate writers for an exam, experienced writers first.
How:   Two queries and a stable partition:
         1. writers in the exam's postal code, excluding the caller
         2. writers with at least one completed request for an exam with
            the same exam_name (the "experienced" set)
         3. experienced candidates first, then the rest, store order kept
Who:   GET /api/exams/{exam_id}/candidates.

Failure policy:
    Step 1 failing is a DatabaseError: there is nothing to rank.
    Step 2 failing is fail-open: the candidates are returned unranked with
    has_experience = False and a WARNING is logged. Step 2 runs inside a
    savepoint so a failed query leaves the request's transaction usable.

No other ranking signal (distance, rating, verification) is applied.
"""

import logging
import uuid
from dataclasses import dataclass
from typing import List, Set

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from scribeconnect.exceptions import DatabaseError
from scribeconnect.models.exam import ExamRequest
from scribeconnect.models.match_request import MatchRequest, MatchStatus
from scribeconnect.models.profile import Profile, UserRole
from scribeconnect.schemas.profile import CandidateResponse

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CandidateWriter:
    profile: Profile
    has_experience: bool

    def to_response(self) -> CandidateResponse:
        p = self.profile
        return CandidateResponse(
            id=p.id,
            name=p.name,
            age=p.age,
            gender=p.gender,
            district=p.district,
            state=p.state,
            postal_code=p.postal_code,
            verified=p.verified,
            has_experience=self.has_experience,
        )


class WriterMatcher:
    """Stateless matcher; one instance is shared by all requests."""

    async def find_candidates(
        self,
        db: AsyncSession,
        postal_code: str,
        exam_name: str,
        exclude_user_id: uuid.UUID,
    ) -> List[CandidateWriter]:
        """
        Returns the writers in `postal_code`, experienced with `exam_name` first.

        Args:
            db:               Async database session
            postal_code:      The exam's postal code
            exam_name:        The exam's name; experience is matched on it exactly
            exclude_user_id:  The requesting user, never a candidate of their own exam

        Raises:
            DatabaseError: The writer lookup itself failed
        """
        try:
            result = await db.execute(
                select(Profile).where(
                    Profile.postal_code == postal_code,
                    Profile.role == UserRole.WRITER,
                    Profile.id != exclude_user_id,
                )
            )
            writers = list(result.scalars().all())
        except SQLAlchemyError as e:
            logger.error("Failed to load writers for postal code %s: %s", postal_code, str(e))
            raise DatabaseError(
                message="Failed to load available writers",
                context={"postal_code": postal_code, "error": str(e)},
            )

        if not writers:
            return []

        try:
            experienced = await self._experienced_writer_ids(db, exam_name)
        except (SQLAlchemyError, OSError) as e:
            logger.warning(
                "Experience lookup failed for exam '%s'; returning unranked writers: %s",
                exam_name,
                str(e),
            )
            experienced = set()

        ranked = [CandidateWriter(w, True) for w in writers if w.id in experienced]
        ranked.extend(CandidateWriter(w, False) for w in writers if w.id not in experienced)

        logger.debug(
            "Matched %d writers for %s/%s (%d experienced)",
            len(ranked),
            postal_code,
            exam_name,
            len(experienced),
        )
        return ranked

    async def _experienced_writer_ids(
        self, db: AsyncSession, exam_name: str
    ) -> Set[uuid.UUID]:
        """Writers with a completed request for an exam of the same name."""
        async with db.begin_nested():
            result = await db.execute(
                select(MatchRequest.writer_id)
                .join(ExamRequest, ExamRequest.id == MatchRequest.exam_id)
                .where(
                    MatchRequest.status == MatchStatus.COMPLETED,
                    ExamRequest.exam_name == exam_name,
                )
                .distinct()
            )
            return set(result.scalars().all())


# ── Singleton Instance ────────────────────────────────────────────────────
writer_matcher = WriterMatcher()
