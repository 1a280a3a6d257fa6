"""Pledge lifecycle: create, confirm, reassign and the expiry sweep."""

from __future__ import annotations

import math
from datetime import datetime, timedelta

from sqlalchemy import select, update
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
from squadledger.ledger import load_ledger
from squadledger.logging_config import get_logger
from squadledger.models import Pledge, Task
from squadledger.services.access_service import AccessService
from squadledger.services.activity_service import log_activity
from squadledger.services.common import (
    add_participant,
    ensure_project_status,
    get_pledge,
    get_pool_task,
    get_project,
    get_task,
    project_transaction,
)
from squadledger.services.profile_service import adjust_profile_counters
from squadledger.services.project_service import ensure_creator_or_admin
from squadledger.state_machine import (
    TASK_CONFIRMED_STATUSES,
    TERMINAL_TASK_STATUSES,
    normalize_pledge_status,
    validate_pledge_transition,
)

logger = get_logger(__name__)


def _validate_amount(amount: float) -> None:
    if not math.isfinite(amount) or amount <= 0:
        raise InputValidationError("Pledge amount must be a positive number of hours")


class PledgeService:
    """Handles pledges of hours against tasks and the general pool."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.access = AccessService(session)

    async def _target_task(self, project_id: int, task_id: int | None) -> Task:
        if task_id is None:
            return await get_pool_task(self.session, project_id)
        task = await get_task(self.session, task_id, for_update=True)
        if task.project_id != project_id:
            raise NotFoundError(f"Task in project {project_id}", task_id)
        return task

    # ==========================================
    # CREATION
    # ==========================================

    async def pledge_to_task(
        self,
        principal: str,
        project_id: int,
        amount: float,
        task_id: int | None = None,
    ) -> Pledge:
        """
        Pledge hours to a task, or to the general pool when ``task_id`` is None.

        The project-wide cap and the target's own cap are checked against the
        ledger and the pledge is inserted while holding the project lock.
        """
        await self.access.require_approved(principal)
        _validate_amount(amount)

        async with project_transaction(self.session, project_id) as project:
            ensure_project_status(project, "pledging")
            task = await self._target_task(project_id, task_id)
            if task.status in TERMINAL_TASK_STATUSES:
                raise InvalidStateError(f"Task {task.id} is '{task.status}' and takes no pledges")

            snapshot = await load_ledger(self.session, project)
            snapshot.check_pledge(task.id, amount)

            pledge = Pledge(
                project_id=project_id,
                task_id=task.id,
                target_kind="pool" if task.is_pool else "task",
                user=principal,
                amount=amount,
                status="pending",
            )
            self.session.add(pledge)
            await self.session.flush()
            await add_participant(self.session, project_id, principal)
            await log_activity(
                self.session, project_id, "pledge_created",
                f"{principal} pledged {amount:g} HH to '{task.title}'",
                actor=principal,
                task_id=task.id,
                metadata={"pledge_id": pledge.id, "amount": amount},
            )

        logger.info(
            "pledge_created",
            pledge_id=pledge.id,
            project_id=project_id,
            task_id=pledge.task_id,
            target_kind=pledge.target_kind,
            amount=amount,
        )
        return pledge

    # ==========================================
    # CONFIRMATION
    # ==========================================

    async def confirm_pledge(self, principal: str, pledge_id: int) -> Pledge:
        """Creator or administrator confirms a pending pledge."""
        access = await self.access.require_approved(principal)
        project_id = (await get_pledge(self.session, pledge_id)).project_id

        async with project_transaction(self.session, project_id) as project:
            ensure_creator_or_admin(access, project)
            ensure_project_status(project, "pledging", "active")
            pledge = await get_pledge(self.session, pledge_id, for_update=True)
            current = normalize_pledge_status(pledge.status)
            validate_pledge_transition(current, "confirmed")

            if pledge.target_kind == "task":
                task = await get_task(self.session, pledge.task_id)
                if task.status not in TASK_CONFIRMED_STATUSES:
                    raise InvalidStateError(
                        f"Task {task.id} must be confirmed before pledges to it (status '{task.status}')"
                    )

            now = utcnow()
            result = await self.session.execute(
                update(Pledge)
                .where(Pledge.id == pledge_id, Pledge.status == "pending")
                .values(status="confirmed", confirmed_at=now)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise ConflictError(f"Pledge {pledge_id} changed status concurrently")
            pledge.status = "confirmed"
            pledge.confirmed_at = now

            await adjust_profile_counters(self.session, pledge.user, pledged_hh=pledge.amount)
            await log_activity(
                self.session, project_id, "pledge_confirmed",
                f"Pledge {pledge_id} of {pledge.amount:g} HH by {pledge.user} confirmed",
                actor=principal,
                task_id=pledge.task_id,
                metadata={"pledge_id": pledge_id, "amount": pledge.amount},
            )

        logger.info("pledge_confirmed", pledge_id=pledge_id, project_id=project_id, confirmed_by=principal)
        return pledge

    # ==========================================
    # REASSIGNMENT
    # ==========================================

    async def reassign_pledge(self, principal: str, pledge_id: int, task_id: int) -> Pledge:
        """Creator moves a confirmed pool pledge onto a regular task."""
        await self.access.require_approved(principal)
        project_id = (await get_pledge(self.session, pledge_id)).project_id

        async with project_transaction(self.session, project_id) as project:
            if project.creator != principal:
                raise AccessDeniedError("Only the project creator may reassign pool pledges")
            ensure_project_status(project, "pledging", "active")
            pledge = await get_pledge(self.session, pledge_id, for_update=True)
            if pledge.target_kind != "pool":
                raise InvalidStateError("Only pledges to the general pool can be reassigned")
            validate_pledge_transition(normalize_pledge_status(pledge.status), "reassigned")

            task = await self._target_task(project_id, task_id)
            if task.is_pool:
                raise InputValidationError("Pool pledges must be reassigned to a regular task")
            if task.status not in TASK_CONFIRMED_STATUSES or task.status in TERMINAL_TASK_STATUSES:
                raise InvalidStateError(
                    f"Task {task.id} must be confirmed and open to receive hours (status '{task.status}')"
                )

            snapshot = await load_ledger(self.session, project)
            snapshot.check_reassignment(task.id, pledge.amount)

            now = utcnow()
            pool_task_id = pledge.task_id
            result = await self.session.execute(
                update(Pledge)
                .where(Pledge.id == pledge_id, Pledge.status == "confirmed")
                .values(
                    status="reassigned",
                    original_task_id=pool_task_id,
                    task_id=task.id,
                    reassigned_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise ConflictError(f"Pledge {pledge_id} changed status concurrently")
            pledge.status = "reassigned"
            pledge.original_task_id = pool_task_id
            pledge.task_id = task.id
            pledge.reassigned_at = now

            await log_activity(
                self.session, project_id, "pledge_reassigned",
                f"Pool pledge {pledge_id} ({pledge.amount:g} HH) moved to '{task.title}'",
                actor=principal,
                task_id=task.id,
                metadata={"pledge_id": pledge_id, "from_task_id": pool_task_id},
            )

        logger.info("pledge_reassigned", pledge_id=pledge_id, project_id=project_id, task_id=task_id)
        return pledge

    # ==========================================
    # EXPIRY SWEEP
    # ==========================================

    async def expire_stale_pledges(self, now: datetime | None = None) -> dict[str, int]:
        """
        Expire pending pledges older than the expiry window.

        Each pledge is expired in its own project transaction with a
        compare-and-swap on ``pending``, so a confirm that commits first wins
        and re-running the sweep changes nothing.
        """
        now = ensure_utc(now) if now is not None else utcnow()
        cutoff = now - timedelta(days=get_settings().pledge_expiry_days)

        result = await self.session.execute(
            select(Pledge.id, Pledge.project_id)
            .where(Pledge.status == "pending", Pledge.created_at <= cutoff)
            .order_by(Pledge.project_id, Pledge.id)
        )
        candidates = result.all()
        await self.session.commit()

        expired = 0
        skipped = 0
        for pledge_id, project_id in candidates:
            try:
                async with project_transaction(self.session, project_id):
                    outcome = await self.session.execute(
                        update(Pledge)
                        .where(
                            Pledge.id == pledge_id,
                            Pledge.status == "pending",
                            Pledge.created_at <= cutoff,
                        )
                        .values(status="expired", expired_at=now)
                        .execution_options(synchronize_session=False)
                    )
                    if outcome.rowcount != 1:
                        skipped += 1
                        logger.info("pledge_expiry_skipped", pledge_id=pledge_id, reason="no_longer_pending")
                        continue
                    await log_activity(
                        self.session, project_id, "pledge_expired",
                        f"Pledge {pledge_id} expired unconfirmed",
                        metadata={"pledge_id": pledge_id},
                    )
                expired += 1
            except Exception:
                skipped += 1
                logger.exception("pledge_expiry_failed", pledge_id=pledge_id, project_id=project_id)

        if expired or skipped:
            logger.info("pledge_expiry_sweep_complete", expired=expired, skipped=skipped)
        return {"expired": expired, "skipped": skipped}

    # ==========================================
    # READS
    # ==========================================

    async def get_pledge(self, pledge_id: int) -> Pledge:
        return await get_pledge(self.session, pledge_id)

    async def list_pledges(
        self,
        project_id: int,
        status: str | None = None,
        user: str | None = None,
    ) -> list[Pledge]:
        await get_project(self.session, project_id)
        query = select(Pledge).where(Pledge.project_id == project_id).order_by(Pledge.id)
        if status is not None:
            query = query.where(Pledge.status == normalize_pledge_status(status))
        if user is not None:
            query = query.where(Pledge.user == user)
        result = await self.session.execute(query.execution_options(populate_existing=True))
        return list(result.scalars().all())

