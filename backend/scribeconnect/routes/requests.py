"""
ScribeConnect Backend: Match Request Routes
============================================

What:  The request lifecycle over HTTP.

    POST   /api/requests              student asks a writer (201)
    GET    /api/requests              caller's requests, enriched, newest first
    PATCH  /api/requests/{id}         status change, checked against the role table
    DELETE /api/requests/{id}         participant deletes one request (204)
    POST   /api/requests/bulk-delete  participant deletes several

Conflicts (409): duplicate pending request, disallowed transition, or the
same action still being processed.
"""

import logging
import uuid
from typing import List

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from scribeconnect.database import get_db_session
from scribeconnect.dependencies import get_lifecycle_controller
from scribeconnect.schemas.common import ErrorResponse
from scribeconnect.schemas.match_request import (
    BulkDeleteRequest,
    DeleteResult,
    EnrichedMatchRequest,
    MatchRequestCreate,
    MatchRequestResponse,
    StatusUpdate,
)
from scribeconnect.services.lifecycle_service import RequestLifecycleController
from scribeconnect.services.notification_service import notification_service
from scribeconnect.session import UserSession, get_user_session

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/requests", tags=["Requests"])

_CONFLICT = {"description": "Duplicate, disallowed, or in-progress action", "model": ErrorResponse}


@router.post(
    "",
    response_model=MatchRequestResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        403: {"description": "Not a student, or not the exam owner", "model": ErrorResponse},
        404: {"description": "Exam or writer not found", "model": ErrorResponse},
        409: _CONFLICT,
    },
    summary="Request a writer for an exam",
)
async def create_request(
    data: MatchRequestCreate,
    session: UserSession = Depends(get_user_session),
    db: AsyncSession = Depends(get_db_session),
    controller: RequestLifecycleController = Depends(get_lifecycle_controller),
) -> MatchRequestResponse:
    request = await controller.create_request(
        db,
        session,
        writer_id=data.writer_id,
        exam_id=data.exam_id,
        idempotency_key=data.idempotency_key,
    )
    return MatchRequestResponse.model_validate(request)


@router.get(
    "",
    response_model=List[EnrichedMatchRequest],
    summary="The caller's notifications",
    description=(
        "Requests sent (students) or received (writers), newest first, with the "
        "other party's name, mobile and email and the exam details."
    ),
)
async def list_requests(
    response: Response,
    session: UserSession = Depends(get_user_session),
    db: AsyncSession = Depends(get_db_session),
) -> List[EnrichedMatchRequest]:
    notifications = await notification_service.fetch_for_session(db, session)
    response.headers["Cache-Control"] = "no-store"
    return notifications


@router.patch(
    "/{request_id}",
    response_model=MatchRequestResponse,
    responses={
        403: {"description": "Not a participant", "model": ErrorResponse},
        404: {"description": "Request not found", "model": ErrorResponse},
        409: _CONFLICT,
    },
    summary="Accept, reject, complete or cancel a request",
)
async def update_request_status(
    request_id: uuid.UUID,
    data: StatusUpdate,
    session: UserSession = Depends(get_user_session),
    db: AsyncSession = Depends(get_db_session),
    controller: RequestLifecycleController = Depends(get_lifecycle_controller),
) -> MatchRequestResponse:
    request = await controller.transition(db, session, request_id, data.status)
    return MatchRequestResponse.model_validate(request)


@router.delete(
    "/{request_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses={
        403: {"description": "Not a participant", "model": ErrorResponse},
        404: {"description": "Request not found", "model": ErrorResponse},
    },
    summary="Delete a request",
)
async def delete_request(
    request_id: uuid.UUID,
    session: UserSession = Depends(get_user_session),
    db: AsyncSession = Depends(get_db_session),
    controller: RequestLifecycleController = Depends(get_lifecycle_controller),
) -> Response:
    await controller.delete_request(db, session, request_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/bulk-delete",
    response_model=DeleteResult,
    responses={403: {"description": "A selected request is not yours", "model": ErrorResponse}},
    summary="Delete several requests",
)
async def bulk_delete_requests(
    data: BulkDeleteRequest,
    session: UserSession = Depends(get_user_session),
    db: AsyncSession = Depends(get_db_session),
    controller: RequestLifecycleController = Depends(get_lifecycle_controller),
) -> DeleteResult:
    deleted = await controller.delete_requests(db, session, data.ids)
    return DeleteResult(deleted=deleted)
