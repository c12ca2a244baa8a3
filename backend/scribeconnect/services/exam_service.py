"""
ScribeConnect Backend: Exam Service
====================================

What:  Creation and listing of a student's exams, and owner-checked lookup.
Who:   /api/exams routes. Deletion lives in RequestLifecycleController
       because it must remove dependent match requests first.

Listing order:
    exam date descending (undated exams last), newest created first within
    a date. If the store rejects that ordering the list falls back to
    created_at descending.
"""

import logging
import uuid
from typing import List

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from scribeconnect.exceptions import DatabaseError, NotFoundError, PermissionDeniedError
from scribeconnect.models.exam import ExamRequest
from scribeconnect.schemas.exam import ExamCreate
from scribeconnect.services.audit_service import AuditLogger
from scribeconnect.session import UserSession

logger = logging.getLogger(__name__)


class ExamService:
    def __init__(self, audit: AuditLogger):
        self._audit = audit

    async def create_exam(
        self, db: AsyncSession, session: UserSession, data: ExamCreate
    ) -> ExamRequest:
        if not session.is_student:
            raise PermissionDeniedError(
                message="Only students can add exams",
                context={"user_id": str(session.user_id)},
            )

        exam = ExamRequest(student_id=session.user_id, status="open", **data.model_dump())
        try:
            db.add(exam)
            await db.flush()
        except Exception as e:
            logger.error("Failed to create exam for %s: %s", session.user_id, str(e))
            raise DatabaseError(
                message="Failed to save the exam",
                context={"user_id": str(session.user_id), "error": str(e)},
            )

        logger.info("Exam %s created by %s: %s", exam.id, session.user_id, exam.exam_name)
        self._audit.track_exam_activity(
            session, "created", exam.id, {"exam_name": exam.exam_name}
        )
        return exam

    async def list_exams(self, db: AsyncSession, session: UserSession) -> List[ExamRequest]:
        base = select(ExamRequest).where(ExamRequest.student_id == session.user_id)
        try:
            async with db.begin_nested():
                result = await db.execute(
                    base.order_by(
                        ExamRequest.exam_date.desc().nulls_last(),
                        ExamRequest.created_at.desc(),
                    )
                )
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            logger.warning("Ordering exams by date failed, using created_at: %s", str(e))

        try:
            result = await db.execute(base.order_by(ExamRequest.created_at.desc()))
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            logger.error("Failed to list exams for %s: %s", session.user_id, str(e))
            raise DatabaseError(
                message="Failed to load your exams",
                context={"user_id": str(session.user_id), "error": str(e)},
            )

    async def get_owned_exam(
        self, db: AsyncSession, session: UserSession, exam_id: uuid.UUID
    ) -> ExamRequest:
        exam = await db.get(ExamRequest, exam_id)
        if exam is None:
            raise NotFoundError(resource="exam", resource_id=str(exam_id))
        if exam.student_id != session.user_id:
            raise PermissionDeniedError(
                message="This exam belongs to another student",
                context={"exam_id": str(exam_id)},
            )
        return exam
