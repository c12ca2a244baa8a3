"""
ScribeConnect Backend: Exam Routes
===================================

What:  A student's exams and the writers who could help with each.

    POST   /api/exams                     create (status open)
    GET    /api/exams                     list, latest exam date first
    DELETE /api/exams/{id}                delete with its match requests
    GET    /api/exams/{id}/candidates     writers in the exam's postal code,
                                          experienced with this exam first
"""

import logging
import uuid
from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from scribeconnect.database import get_db_session
from scribeconnect.dependencies import get_exam_service, get_lifecycle_controller
from scribeconnect.schemas.common import ErrorResponse
from scribeconnect.schemas.exam import ExamCreate, ExamResponse
from scribeconnect.schemas.match_request import DeleteResult
from scribeconnect.schemas.profile import CandidateResponse
from scribeconnect.services.exam_service import ExamService
from scribeconnect.services.lifecycle_service import RequestLifecycleController
from scribeconnect.services.matcher_service import writer_matcher
from scribeconnect.session import UserSession, get_user_session

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/exams", tags=["Exams"])


@router.post(
    "",
    response_model=ExamResponse,
    status_code=status.HTTP_201_CREATED,
    responses={403: {"description": "Caller is not a student", "model": ErrorResponse}},
    summary="Add an exam",
)
async def create_exam(
    data: ExamCreate,
    session: UserSession = Depends(get_user_session),
    db: AsyncSession = Depends(get_db_session),
    service: ExamService = Depends(get_exam_service),
) -> ExamResponse:
    exam = await service.create_exam(db, session, data)
    return ExamResponse.model_validate(exam)


@router.get(
    "",
    response_model=List[ExamResponse],
    summary="List the caller's exams",
)
async def list_exams(
    session: UserSession = Depends(get_user_session),
    db: AsyncSession = Depends(get_db_session),
    service: ExamService = Depends(get_exam_service),
) -> List[ExamResponse]:
    exams = await service.list_exams(db, session)
    return [ExamResponse.model_validate(e) for e in exams]


@router.delete(
    "/{exam_id}",
    response_model=DeleteResult,
    responses={
        403: {"description": "Not the owner", "model": ErrorResponse},
        404: {"description": "Exam not found", "model": ErrorResponse},
        409: {"description": "Deletion already in progress", "model": ErrorResponse},
    },
    summary="Delete an exam and its match requests",
    description="`deleted` is the number of match requests removed together with the exam.",
)
async def delete_exam(
    exam_id: uuid.UUID,
    session: UserSession = Depends(get_user_session),
    db: AsyncSession = Depends(get_db_session),
    controller: RequestLifecycleController = Depends(get_lifecycle_controller),
) -> DeleteResult:
    removed = await controller.delete_exam(db, session, exam_id)
    return DeleteResult(deleted=removed)


@router.get(
    "/{exam_id}/candidates",
    response_model=List[CandidateResponse],
    responses={
        403: {"description": "Not the owner", "model": ErrorResponse},
        404: {"description": "Exam not found", "model": ErrorResponse},
    },
    summary="Candidate writers for an exam",
    description=(
        "Writers registered in the exam's postal code. Writers who completed "
        "assistance for an exam with the same name are listed first."
    ),
)
async def list_candidates(
    exam_id: uuid.UUID,
    session: UserSession = Depends(get_user_session),
    db: AsyncSession = Depends(get_db_session),
    service: ExamService = Depends(get_exam_service),
) -> List[CandidateResponse]:
    exam = await service.get_owned_exam(db, session, exam_id)
    candidates = await writer_matcher.find_candidates(
        db,
        postal_code=exam.postal_code,
        exam_name=exam.exam_name,
        exclude_user_id=session.user_id,
    )
    return [c.to_response() for c in candidates]
