"""Weighted voting on task proposals, challenges and final prizes."""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from squadledger.config import HH_EPSILON, get_settings, voting_power_for
from squadledger.datetime_utils import utcnow
from squadledger.exceptions import (
    AccessDeniedError,
    ConflictError,
    InputValidationError,
    InvalidStateError,
)
from squadledger.logging_config import get_logger
from squadledger.models import Task, UserProfile, Vote
from squadledger.services.access_service import AccessService
from squadledger.services.activity_service import log_activity
from squadledger.services.common import (
    ensure_not_archived,
    get_project,
    get_task,
    is_participant,
    project_transaction,
)
from squadledger.services.task_service import audit_deadline, uphold_open_challenges

logger = get_logger(__name__)

VOTE_TYPES = ("finalPrize", "challenge", "taskProposal")


def tally_votes(votes: Iterable[Vote]) -> dict[str, float]:
    """Count and weigh votes."""
    count = 0
    weight = 0.0
    for vote in votes:
        count += 1
        weight += vote.weight
    return {"votes": count, "total_weight": weight}


def challenge_upheld(total_weight: float, threshold: float) -> bool:
    return total_weight + HH_EPSILON >= threshold


class VotingService:
    """Casts append-only votes and resolves challenges that reach the uphold weight."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.access = AccessService(session)

    async def _target_project_id(self, target_id: int, vote_type: str) -> int:
        if vote_type == "finalPrize":
            return (await get_project(self.session, target_id)).id
        return (await get_task(self.session, target_id)).project_id

    def _check_task_target(self, task: Task, vote_type: str) -> None:
        if task.is_pool:
            raise InvalidStateError("The general pool task cannot be voted on")
        expected = "proposed" if vote_type == "taskProposal" else "pendingConfirmation"
        if task.status != expected:
            raise InvalidStateError(
                f"Task {task.id} is '{task.status}'; {vote_type} votes need '{expected}'"
            )

    async def cast_vote(self, principal: str, target_id: int, vote_type: str) -> Vote:
        """
        Record one weighted vote per voter, target and kind.

        The weight is the voter's voting power at cast time. A challenge vote
        that lifts the task's total challenge weight to the uphold threshold
        rejects the task in the same transaction.
        """
        access = await self.access.require_approved(principal)
        if vote_type not in VOTE_TYPES:
            raise InputValidationError(f"Unknown vote type '{vote_type}'")

        profile = await self.session.get(UserProfile, principal, populate_existing=True)
        if profile is None:
            raise AccessDeniedError("Register a profile before voting")
        weight = voting_power_for(profile.participation_level)
        if weight <= 0:
            raise AccessDeniedError(
                f"Participation level '{profile.participation_level}' carries no voting power"
            )

        project_id = await self._target_project_id(target_id, vote_type)
        upheld = False

        async with project_transaction(self.session, project_id) as project:
            ensure_not_archived(project)
            if not (access.is_admin or await is_participant(self.session, project_id, principal)):
                raise AccessDeniedError("Only project participants may vote")

            task = None
            if vote_type == "finalPrize":
                if project.status != "completed":
                    raise InvalidStateError(f"Project {project_id} is not completed")
            else:
                task = await get_task(self.session, target_id, for_update=True)
                self._check_task_target(task, vote_type)
                if vote_type == "challenge":
                    if task.assignee == principal:
                        raise AccessDeniedError("The assignee cannot vote on challenges to their task")
                    deadline = audit_deadline(task)
                    if deadline is not None and utcnow() > deadline:
                        raise InvalidStateError(f"The audit window for task {target_id} has closed")

            existing = await self.session.scalar(
                select(Vote.id).where(
                    Vote.target_id == target_id,
                    Vote.vote_type == vote_type,
                    Vote.voter == principal,
                )
            )
            if existing is not None:
                raise ConflictError(f"{principal} already voted on {vote_type} {target_id}")

            vote = Vote(target_id=target_id, vote_type=vote_type, voter=principal, weight=weight)
            self.session.add(vote)
            try:
                await self.session.flush()
            except IntegrityError:
                raise ConflictError(f"{principal} already voted on {vote_type} {target_id}") from None

            await log_activity(
                self.session, project_id, "vote_cast",
                f"{principal} cast a {vote_type} vote (weight {weight:g})",
                actor=principal,
                task_id=task.id if task is not None else None,
                metadata={"vote_id": vote.id, "vote_type": vote_type, "weight": weight},
            )

            if task is not None and vote_type == "challenge":
                tally = tally_votes(await self._votes(target_id, "challenge"))
                if challenge_upheld(tally["total_weight"], get_settings().challenge_uphold_weight):
                    await uphold_open_challenges(self.session, task, actor=principal)
                    upheld = True

        logger.info(
            "vote_cast",
            target_id=target_id,
            vote_type=vote_type,
            voter=principal,
            weight=weight,
            challenge_upheld=upheld,
        )
        return vote

    async def _votes(self, target_id: int, vote_type: str | None = None) -> list[Vote]:
        query = select(Vote).where(Vote.target_id == target_id).order_by(Vote.id)
        if vote_type is not None:
            query = query.where(Vote.vote_type == vote_type)
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def list_votes(self, target_id: int, vote_type: str | None = None) -> list[Vote]:
        if vote_type is not None and vote_type not in VOTE_TYPES:
            raise InputValidationError(f"Unknown vote type '{vote_type}'")
        return await self._votes(target_id, vote_type)

    async def get_tally(self, target_id: int, vote_type: str) -> dict[str, Any]:
        votes = await self.list_votes(target_id, vote_type)
        return {"target_id": target_id, "vote_type": vote_type, **tally_votes(votes)}
