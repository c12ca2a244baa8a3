"""
ScribeConnect Backend: Profile Service
=======================================

What:  Registration and editing of the caller's own profile.
How:   The profile id is the authenticated identity. Field rules are enforced
       by the Pydantic schemas before this service is reached; this layer
       handles the rules that need the database (one profile per identity).
Who:   /api/profiles routes.
"""

import logging
import uuid

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from scribeconnect.exceptions import (
    DatabaseError,
    NotFoundError,
    ScribeConnectError,
    ValidationError,
)
from scribeconnect.models.profile import Profile
from scribeconnect.schemas.profile import ProfileCreate, ProfileUpdate
from scribeconnect.services.audit_service import AuditLogger
from scribeconnect.session import UserSession

logger = logging.getLogger(__name__)


class ProfileService:
    def __init__(self, audit: AuditLogger):
        self._audit = audit

    async def register_profile(
        self, db: AsyncSession, identity: uuid.UUID, data: ProfileCreate
    ) -> Profile:
        """
        Creates the profile for a newly signed-up identity (verified = False).

        Raises:
            ValidationError: A profile already exists for this identity
            DatabaseError: Store failure
        """
        try:
            if await db.get(Profile, identity) is not None:
                raise ValidationError(
                    message="A profile already exists for this account",
                    field="id",
                )

            profile = Profile(id=identity, verified=False, **data.model_dump())
            try:
                async with db.begin_nested():
                    db.add(profile)
            except IntegrityError:
                raise ValidationError(
                    message="A profile already exists for this account",
                    field="id",
                )
        except ScribeConnectError as e:
            self._audit.log_auth_event(
                identity, "registration", success=False, error_message=e.message
            )
            raise
        except Exception as e:
            logger.error("Failed to register profile %s: %s", identity, str(e))
            self._audit.log_auth_event(
                identity, "registration", success=False, error_message="database error"
            )
            raise DatabaseError(
                message="Failed to create your profile",
                context={"user_id": str(identity), "error": str(e)},
            )

        logger.info("Registered %s profile %s", profile.role.value, identity)
        self._audit.log_auth_event(
            identity, "registration", success=True, details={"role": profile.role.value}
        )
        return profile

    async def get_profile(self, db: AsyncSession, user_id: uuid.UUID) -> Profile:
        try:
            profile = await db.get(Profile, user_id)
        except Exception as e:
            logger.error("Failed to load profile %s: %s", user_id, str(e))
            raise DatabaseError(
                message="Failed to load the profile",
                context={"user_id": str(user_id), "error": str(e)},
            )
        if profile is None:
            raise NotFoundError(resource="profile", resource_id=str(user_id))
        return profile

    async def update_profile(
        self, db: AsyncSession, session: UserSession, data: ProfileUpdate
    ) -> Profile:
        """Applies the fields present in `data` to the caller's own profile."""
        profile = await self.get_profile(db, session.user_id)
        changes = data.model_dump(exclude_unset=True, exclude_none=True)
        if not changes:
            return profile

        old_values = {field: getattr(profile, field) for field in changes}
        try:
            for field, value in changes.items():
                setattr(profile, field, value)
            await db.flush()
        except Exception as e:
            logger.error("Failed to update profile %s: %s", session.user_id, str(e))
            raise DatabaseError(
                message="Failed to update your profile",
                context={"user_id": str(session.user_id), "error": str(e)},
            )

        self._audit.track_profile_activity(session, "updated", {"fields": sorted(changes)})
        self._audit.log_data_change(
            session,
            "profiles",
            session.user_id,
            "update",
            old_values=old_values,
            new_values=changes,
        )
        return profile
