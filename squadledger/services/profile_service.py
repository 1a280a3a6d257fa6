"""Profile store: registration, display data and accumulated scores."""

from __future__ import annotations

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from squadledger.config import COMPATIBLE_LEVELS, VOTING_POWER, is_compatible
from squadledger.datetime_utils import utcnow
from squadledger.exceptions import ConflictError, InputValidationError, NotFoundError
from squadledger.locks import access_locks
from squadledger.logging_config import get_logger
from squadledger.models import UserProfile
from squadledger.services.access_service import AccessService

logger = get_logger(__name__)


def _validate_role_and_level(squad_role: str, level: str) -> None:
    if squad_role not in COMPATIBLE_LEVELS:
        raise InputValidationError(f"Unknown squad role '{squad_role}'")
    if level not in VOTING_POWER:
        raise InputValidationError(f"Unknown participation level '{level}'")
    if not is_compatible(squad_role, level):
        raise InputValidationError(
            f"Squad role '{squad_role}' is not compatible with level '{level}'; "
            f"allowed: {list(COMPATIBLE_LEVELS[squad_role])}"
        )


async def adjust_profile_counters(
    db: AsyncSession,
    principal: str,
    pledged_hh: float = 0.0,
    earned_hh: float = 0.0,
    enabler_points: int = 0,
) -> None:
    """Increment cumulative counters in place, inside the caller's transaction."""
    await db.execute(
        update(UserProfile)
        .where(UserProfile.principal == principal)
        .values(
            total_pledged_hh=UserProfile.total_pledged_hh + pledged_hh,
            total_earned_hh=UserProfile.total_earned_hh + earned_hh,
            enabler_points=UserProfile.enabler_points + enabler_points,
            updated_at=utcnow(),
        )
        .execution_options(synchronize_session=False)
    )


class ProfileService:
    """Registration and profile reads for users."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.access = AccessService(session)

    async def register_user(
        self,
        principal: str,
        display_name: str,
        squad_role: str,
        participation_level: str,
    ) -> UserProfile:
        """Create the caller's profile. Each principal registers exactly once."""
        await self.access.require_not_guest(principal)
        display_name = display_name.strip()
        if not display_name:
            raise InputValidationError("Display name must not be empty")
        _validate_role_and_level(squad_role, participation_level)

        async with access_locks.hold(principal):
            if await self.session.get(UserProfile, principal) is not None:
                raise ConflictError(f"Principal '{principal}' is already registered")
            profile = UserProfile(
                principal=principal,
                display_name=display_name,
                squad_role=squad_role,
                participation_level=participation_level,
                participation_level_locked=True,
            )
            self.session.add(profile)
            try:
                await self.session.commit()
            except IntegrityError:
                await self.session.rollback()
                raise ConflictError(f"Principal '{principal}' is already registered") from None

        logger.info(
            "user_registered",
            principal=principal,
            squad_role=squad_role,
            participation_level=participation_level,
        )
        return profile

    async def update_profile(
        self,
        principal: str,
        display_name: str | None = None,
        profile_picture: str | None = None,
    ) -> UserProfile:
        """Owner-editable fields only; scores and level are not touched here."""
        await self.access.require_not_guest(principal)
        profile = await self.get_profile(principal)
        if display_name is not None:
            display_name = display_name.strip()
            if not display_name:
                raise InputValidationError("Display name must not be empty")
            profile.display_name = display_name
        if profile_picture is not None:
            profile.profile_picture = profile_picture
        profile.updated_at = utcnow()
        await self.session.commit()
        logger.info("profile_updated", principal=principal)
        return profile

    async def update_participation_level(
        self, caller: str, principal: str, participation_level: str
    ) -> UserProfile:
        """Administrator override of a locked participation level."""
        await self.access.require_admin(caller)
        profile = await self.get_profile(principal)
        _validate_role_and_level(profile.squad_role, participation_level)
        previous = profile.participation_level
        profile.participation_level = participation_level
        profile.participation_level_locked = True
        profile.updated_at = utcnow()
        await self.session.commit()
        logger.info(
            "participation_level_updated",
            principal=principal,
            previous=previous,
            level=participation_level,
            updated_by=caller,
        )
        return profile

    async def get_profile(self, principal: str) -> UserProfile:
        profile = await self.session.get(UserProfile, principal, populate_existing=True)
        if profile is None:
            raise NotFoundError("UserProfile", principal)
        return profile

    async def get_caller_profile(self, principal: str) -> UserProfile | None:
        return await self.session.get(UserProfile, principal, populate_existing=True)

    async def list_profiles(self, caller: str) -> list[UserProfile]:
        await self.access.require_admin(caller)
        result = await self.session.execute(
            select(UserProfile).order_by(UserProfile.created_at)
        )
        return list(result.scalars().all())
