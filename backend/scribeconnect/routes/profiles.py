"""
ScribeConnect Backend: Profile Routes
======================================

What:  POST /api/profiles (register), GET/PATCH /api/profiles/me.
How:   Registration only needs an identity (the profile does not exist yet);
       the /me routes resolve the full UserSession.
"""

import logging
import uuid

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from scribeconnect.database import get_db_session
from scribeconnect.dependencies import get_profile_service
from scribeconnect.schemas.common import ErrorResponse
from scribeconnect.schemas.profile import ProfileCreate, ProfileResponse, ProfileUpdate
from scribeconnect.services.profile_service import ProfileService
from scribeconnect.session import UserSession, get_identity, get_user_session

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/profiles", tags=["Profiles"])


@router.post(
    "",
    response_model=ProfileResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        400: {"description": "Profile already exists", "model": ErrorResponse},
        401: {"description": "No identity", "model": ErrorResponse},
    },
    summary="Register the caller's profile",
)
async def register_profile(
    data: ProfileCreate,
    identity: uuid.UUID = Depends(get_identity),
    db: AsyncSession = Depends(get_db_session),
    service: ProfileService = Depends(get_profile_service),
) -> ProfileResponse:
    profile = await service.register_profile(db, identity, data)
    return ProfileResponse.model_validate(profile)


@router.get(
    "/me",
    response_model=ProfileResponse,
    responses={404: {"description": "Not registered yet", "model": ErrorResponse}},
    summary="The caller's profile",
)
async def get_my_profile(
    session: UserSession = Depends(get_user_session),
    db: AsyncSession = Depends(get_db_session),
    service: ProfileService = Depends(get_profile_service),
) -> ProfileResponse:
    profile = await service.get_profile(db, session.user_id)
    return ProfileResponse.model_validate(profile)


@router.patch(
    "/me",
    response_model=ProfileResponse,
    summary="Edit the caller's profile",
    description="Only the fields present in the body are changed. Role and verification are fixed.",
)
async def update_my_profile(
    data: ProfileUpdate,
    session: UserSession = Depends(get_user_session),
    db: AsyncSession = Depends(get_db_session),
    service: ProfileService = Depends(get_profile_service),
) -> ProfileResponse:
    profile = await service.update_profile(db, session, data)
    return ProfileResponse.model_validate(profile)
