"""Peer ratings and mentor-weighted reputation."""

from __future__ import annotations

import math
from datetime import datetime, timedelta

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from squadledger.config import get_settings
from squadledger.datetime_utils import ensure_utc, utcnow
from squadledger.exceptions import (
    AccessDeniedError,
    ConflictError,
    InputValidationError,
    InvalidStateError,
    NotFoundError,
)
from squadledger.locks import access_locks
from squadledger.logging_config import get_logger
from squadledger.models import PeerRating, Project, UserProfile
from squadledger.payout import rating_weight, weighted_reputation
from squadledger.services.access_service import AccessService
from squadledger.services.activity_service import log_activity
from squadledger.services.common import (
    ensure_not_archived,
    get_project,
    is_participant,
    project_transaction,
)

logger = get_logger(__name__)


def rating_deadline(completion_time: datetime) -> datetime:
    return ensure_utc(completion_time) + timedelta(days=get_settings().rating_window_days)


async def recompute_reputation(db: AsyncSession, principal: str) -> float | None:
    """
    Recompute a ratee's reputation from every rating received in-window.

    Ratings recorded after their project's rating window are ignored.
    Does not commit.
    """
    result = await db.execute(
        select(PeerRating.rating, PeerRating.weight, PeerRating.created_at, Project.completion_time)
        .join(Project, Project.id == PeerRating.project_id)
        .where(PeerRating.ratee == principal)
    )
    pairs = [
        (rating, weight)
        for rating, weight, created_at, completion_time in result.all()
        if completion_time is not None
        and ensure_utc(created_at) <= rating_deadline(completion_time)
    ]
    score = weighted_reputation(pairs)
    await db.execute(
        update(UserProfile)
        .where(UserProfile.principal == principal)
        .values(reputation_score=score if score is not None else 0.0, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    return score


class RatingService:
    """Collects peer ratings during a completed project's rating window."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.access = AccessService(session)

    async def submit_rating(
        self,
        principal: str,
        project_id: int,
        ratee: str,
        rating: float,
        now: datetime | None = None,
    ) -> PeerRating:
        """Rate another participant of a completed project, once per pair."""
        await self.access.require_approved(principal)
        if not math.isfinite(rating) or not 0 <= rating <= 5:
            raise InputValidationError("Rating must be between 0 and 5")
        if ratee == principal:
            raise InputValidationError("Participants cannot rate themselves")
        now = ensure_utc(now) if now is not None else utcnow()

        async with project_transaction(self.session, project_id) as project:
            ensure_not_archived(project)
            if project.status != "completed" or project.completion_time is None:
                raise InvalidStateError(f"Project {project_id} is not completed")
            if now > rating_deadline(project.completion_time):
                raise InputValidationError(f"The rating window for project {project_id} has closed")
            if not await is_participant(self.session, project_id, principal):
                raise AccessDeniedError("Only project participants may rate peers")
            if not await is_participant(self.session, project_id, ratee):
                raise InputValidationError(f"'{ratee}' did not participate in project {project_id}")

            existing = await self.session.scalar(
                select(PeerRating.id).where(
                    PeerRating.project_id == project_id,
                    PeerRating.rater == principal,
                    PeerRating.ratee == ratee,
                )
            )
            if existing is not None:
                raise ConflictError(f"{principal} already rated {ratee} in project {project_id}")

            rater_profile = await self.session.get(UserProfile, principal)
            weight = rating_weight(rater_profile.squad_role if rater_profile else None)
            entry = PeerRating(
                project_id=project_id,
                rater=principal,
                ratee=ratee,
                rating=rating,
                weight=weight,
                created_at=now,
            )
            self.session.add(entry)
            try:
                await self.session.flush()
            except IntegrityError:
                raise ConflictError(f"{principal} already rated {ratee} in project {project_id}") from None
            await log_activity(
                self.session, project_id, "peer_rated",
                f"{principal} rated {ratee} {rating:g}/5",
                actor=principal,
                metadata={"rating_id": entry.id, "weight": weight},
            )
            # Rating and reputation commit together
            async with access_locks.hold(("reputation", ratee)):
                score = await recompute_reputation(self.session, ratee)

        logger.info(
            "peer_rating_submitted",
            project_id=project_id,
            rater=principal,
            ratee=ratee,
            weight=weight,
            reputation=score,
        )
        return entry

    async def list_ratings(self, project_id: int, ratee: str | None = None) -> list[PeerRating]:
        await get_project(self.session, project_id)
        query = (
            select(PeerRating)
            .where(PeerRating.project_id == project_id)
            .order_by(PeerRating.created_at, PeerRating.id)
        )
        if ratee is not None:
            query = query.where(PeerRating.ratee == ratee)
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def get_reputation(self, principal: str) -> float:
        """Stored reputation, as last recomputed when a rating arrived."""
        profile = await self.session.get(UserProfile, principal, populate_existing=True)
        if profile is None:
            raise NotFoundError("UserProfile", principal)
        return profile.reputation_score
