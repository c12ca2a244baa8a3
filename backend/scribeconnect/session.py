"""
ScribeConnect Backend: User Session
====================================

What:  The explicit per-call session object handed to every service.
How:   Authentication itself happens upstream (the managed auth platform /
       gateway). This module only turns the asserted identity into a
       UserSession by loading the caller's Profile, so the role that gates
       status transitions is the stored role, never a client claim.
Who:   Route dependencies (get_user_session) and the WebSocket endpoint
       (parse_identity + load_user_session).
"""

import uuid
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from scribeconnect.config import settings
from scribeconnect.database import get_db_session
from scribeconnect.exceptions import AuthenticationError, NotFoundError
from scribeconnect.middleware.correlation import normalize_session_id
from scribeconnect.models.profile import Profile, UserRole


@dataclass(frozen=True)
class UserSession:
    """
    Identity of the caller for the duration of one request or one WebSocket.

    Attributes:
        user_id:     Profile id (equals the auth platform identity)
        role:        Stored role; `disabled` is kept as-is for display
        name:        Display name, used in audit details
        session_id:  Audit session identifier persisted by the browser
    """

    user_id: uuid.UUID
    role: UserRole
    name: str
    session_id: str

    @property
    def effective_role(self) -> UserRole:
        return self.role.effective

    @property
    def is_student(self) -> bool:
        return self.effective_role is UserRole.STUDENT

    @property
    def is_writer(self) -> bool:
        return self.effective_role is UserRole.WRITER


def parse_identity(raw: Optional[str]) -> uuid.UUID:
    """Validates the identity header value."""
    if not raw:
        raise AuthenticationError(
            message="Authentication required",
            context={"header": settings.identity_header},
        )
    try:
        return uuid.UUID(raw)
    except ValueError:
        raise AuthenticationError(
            message="Malformed identity",
            context={"header": settings.identity_header},
        )


async def get_identity(request: Request) -> uuid.UUID:
    """FastAPI dependency: the caller's identity, whether or not a profile exists yet."""
    return parse_identity(request.headers.get(settings.identity_header))


async def load_user_session(
    db: AsyncSession,
    user_id: uuid.UUID,
    session_id: Optional[str],
) -> UserSession:
    """Resolves an identity to a UserSession; unknown identities have no profile yet."""
    profile = await db.get(Profile, user_id)
    if profile is None:
        raise NotFoundError(resource="profile", resource_id=str(user_id))
    return UserSession(
        user_id=profile.id,
        role=profile.role,
        name=profile.name,
        session_id=normalize_session_id(session_id),
    )


async def get_user_session(
    request: Request,
    db: AsyncSession = Depends(get_db_session),
) -> UserSession:
    """FastAPI dependency used by every route that acts on behalf of a registered user."""
    user_id = parse_identity(request.headers.get(settings.identity_header))
    session_id = getattr(request.state, "session_id", None)
    return await load_user_session(db, user_id, session_id)
