"""Task lifecycle: proposal, confirmation, assignment, audit and challenges."""

from __future__ import annotations

import math
from datetime import datetime, timedelta

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from squadledger.config import MENTOR_ROLE, get_settings
from squadledger.datetime_utils import ensure_utc, utcnow
from squadledger.exceptions import (
    AccessDeniedError,
    BudgetExceededError,
    ConflictError,
    InputValidationError,
    InvalidStateError,
)
from squadledger.ledger import load_ledger
from squadledger.logging_config import get_logger
from squadledger.models import Challenge, Pledge, Project, Task, UserProfile
from squadledger.services.access_service import AccessInfo, AccessService
from squadledger.services.activity_service import log_activity
from squadledger.services.common import (
    add_participant,
    ensure_not_archived,
    ensure_project_status,
    get_project,
    get_task,
    is_participant,
    project_transaction,
)
from squadledger.services.profile_service import adjust_profile_counters
from squadledger.services.project_service import ensure_creator_or_admin
from squadledger.state_machine import (
    ACCEPTABLE_TASK_STATUSES,
    COMMITTED_PLEDGE_STATUSES,
    validate_task_transition,
)

logger = get_logger(__name__)

WORKING_PROJECT_STATUSES = ("pledging", "active")


def _ensure_regular(task: Task) -> None:
    if task.is_pool:
        raise InvalidStateError("The general pool task has no lifecycle")


def audit_deadline(task: Task) -> datetime | None:
    if task.audit_start_time is None:
        return None
    return ensure_utc(task.audit_start_time) + timedelta(hours=get_settings().audit_window_hours)


async def committed_hours(db: AsyncSession, project_id: int, principal: str) -> float:
    total = await db.scalar(
        select(func.coalesce(func.sum(Pledge.amount), 0.0)).where(
            Pledge.project_id == project_id,
            Pledge.user == principal,
            Pledge.status.in_(COMMITTED_PLEDGE_STATUSES),
        )
    )
    return float(total or 0.0)


async def uphold_open_challenges(
    db: AsyncSession, task: Task, actor: str | None = None
) -> int:
    """
    Uphold every open challenge on a task and reject it.

    Runs inside the caller's project transaction. Each upheld challenger
    earns one enabler point. Returns the number of challenges upheld.
    """
    validate_task_transition(task.status, "rejected")
    result = await db.execute(
        select(Challenge)
        .where(Challenge.task_id == task.id, Challenge.status == "open")
        .execution_options(populate_existing=True)
    )
    challenges = list(result.scalars().all())
    now = utcnow()
    for challenge in challenges:
        challenge.status = "upheld"
        challenge.resolved_at = now
        await adjust_profile_counters(db, challenge.challenger, enabler_points=1)

    task.status = "rejected"
    task.completion_time = now
    await log_activity(
        db, task.project_id, "task_rejected",
        f"Task '{task.title}' rejected after {len(challenges)} challenge(s) were upheld",
        actor=actor,
        task_id=task.id,
        metadata={"reason": "challenge_upheld", "challenges": [c.id for c in challenges]},
    )
    logger.info("challenge_upheld", task_id=task.id, challenges=len(challenges))
    return len(challenges)


class TaskService:
    """Handles the task state machine within a project."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.access = AccessService(session)

    async def _load(self, task_id: int) -> Task:
        return await get_task(self.session, task_id)

    async def _is_reviewer(self, access: AccessInfo, project: Project) -> bool:
        """Admins, the creator, or a mentor with committed hours in the project."""
        if access.is_admin or project.creator == access.principal:
            return True
        profile = await self.session.get(UserProfile, access.principal)
        if profile is None or profile.squad_role != MENTOR_ROLE:
            return False
        return await committed_hours(self.session, project.id, access.principal) > 0

    # ==========================================
    # PROPOSAL & CONFIRMATION
    # ==========================================

    async def create_task(
        self,
        principal: str,
        project_id: int,
        title: str,
        hh_budget: float,
        description: str = "",
        dependencies: list[int] | None = None,
    ) -> Task:
        """Propose a regular task carved out of the project's unallocated capacity."""
        access = await self.access.require_approved(principal)
        title = title.strip()
        if not title:
            raise InputValidationError("Task title must not be empty")
        if not math.isfinite(hh_budget) or hh_budget <= 0:
            raise InputValidationError("Task budget must be a positive number of hours")
        dependency_ids = list(dict.fromkeys(dependencies or []))

        async with project_transaction(self.session, project_id) as project:
            ensure_project_status(project, *WORKING_PROJECT_STATUSES)
            if not (
                access.is_admin
                or project.creator == principal
                or await is_participant(self.session, project_id, principal)
            ):
                raise AccessDeniedError("Only project participants may propose tasks")

            if dependency_ids:
                result = await self.session.execute(
                    select(Task.id, Task.is_pool).where(
                        Task.id.in_(dependency_ids), Task.project_id == project_id
                    )
                )
                found = {row.id: row.is_pool for row in result.all()}
                missing = [dep for dep in dependency_ids if dep not in found]
                if missing:
                    raise InputValidationError(
                        f"Dependencies {missing} are not tasks of project {project_id}"
                    )
                if any(found.values()):
                    raise InputValidationError("The general pool task cannot be a dependency")

            snapshot = await load_ledger(self.session, project)
            snapshot.check_task_allocation(hh_budget)

            task = Task(
                project_id=project_id,
                title=title,
                description=description,
                hh_budget=hh_budget,
                status="proposed",
                is_pool=False,
                dependencies=dependency_ids,
                proposed_by=principal,
            )
            self.session.add(task)
            await self.session.flush()
            await log_activity(
                self.session, project_id, "task_proposed",
                f"Task '{title}' proposed with {hh_budget:g} HH budget",
                actor=principal,
                task_id=task.id,
            )

        logger.info("task_created", task_id=task.id, project_id=project_id, hh_budget=hh_budget)
        return task

    async def confirm_task(self, principal: str, task_id: int) -> Task:
        """Creator or administrator confirms a proposed task."""
        access = await self.access.require_approved(principal)
        project_id = (await self._load(task_id)).project_id

        async with project_transaction(self.session, project_id) as project:
            ensure_creator_or_admin(access, project)
            ensure_project_status(project, *WORKING_PROJECT_STATUSES)
            task = await get_task(self.session, task_id, for_update=True)
            _ensure_regular(task)
            validate_task_transition(task.status, "taskConfirmed")

            task.status = "taskConfirmed"
            task.confirmed_at = utcnow()
            await log_activity(
                self.session, project_id, "task_confirmed",
                f"Task '{task.title}' confirmed",
                actor=principal,
                task_id=task.id,
            )

        logger.info("task_confirmed", task_id=task_id, project_id=project_id)
        return task

    # ==========================================
    # ASSIGNMENT & COMPLETION
    # ==========================================

    async def accept_task(self, principal: str, task_id: int) -> Task:
        """Self-assign a confirmed task whose dependencies are all completed."""
        await self.access.require_approved(principal)
        project_id = (await self._load(task_id)).project_id

        async with project_transaction(self.session, project_id) as project:
            ensure_project_status(project, *WORKING_PROJECT_STATUSES)
            task = await get_task(self.session, task_id, for_update=True)
            _ensure_regular(task)
            if task.assignee is not None:
                raise ConflictError(f"Task {task_id} is already assigned")
            validate_task_transition(task.status, "inProgress")

            if task.dependencies:
                result = await self.session.execute(
                    select(Task.id, Task.status).where(Task.id.in_(task.dependencies))
                )
                statuses = dict(result.all())
                blocked = [
                    dep for dep in task.dependencies if statuses.get(dep) != "completed"
                ]
                if blocked:
                    raise InvalidStateError(
                        f"Task {task_id} is blocked by incomplete dependencies {blocked}"
                    )

            now = utcnow()
            outcome = await self.session.execute(
                update(Task)
                .where(
                    Task.id == task_id,
                    Task.assignee.is_(None),
                    Task.status.in_(ACCEPTABLE_TASK_STATUSES),
                )
                .values(assignee=principal, status="inProgress", started_at=now)
                .execution_options(synchronize_session=False)
            )
            if outcome.rowcount != 1:
                raise ConflictError(f"Task {task_id} was accepted concurrently")
            task.assignee = principal
            task.status = "inProgress"
            task.started_at = now

            await add_participant(self.session, project_id, principal)
            await log_activity(
                self.session, project_id, "task_accepted",
                f"{principal} accepted task '{task.title}'",
                actor=principal,
                task_id=task.id,
            )

        logger.info("task_accepted", task_id=task_id, assignee=principal)
        return task

    async def complete_task(self, principal: str, task_id: int) -> Task:
        """Assignee marks the work done, opening the audit window."""
        await self.access.require_approved(principal)
        project_id = (await self._load(task_id)).project_id

        async with project_transaction(self.session, project_id) as project:
            ensure_not_archived(project)
            task = await get_task(self.session, task_id, for_update=True)
            _ensure_regular(task)
            if task.assignee != principal:
                raise AccessDeniedError("Only the assignee may complete this task")
            validate_task_transition(task.status, "inAudit")

            task.status = "inAudit"
            task.audit_start_time = utcnow()
            await log_activity(
                self.session, project_id, "task_submitted",
                f"Task '{task.title}' submitted for audit",
                actor=principal,
                task_id=task.id,
            )

        logger.info("task_submitted_for_audit", task_id=task_id, assignee=principal)
        return task

    # ==========================================
    # AUDIT
    # ==========================================

    async def challenge_task(self, principal: str, task_id: int, stake_hh: float) -> Challenge:
        """Stake committed hours against a task that is under audit."""
        await self.access.require_approved(principal)
        if not math.isfinite(stake_hh) or stake_hh <= 0:
            raise InputValidationError("Challenge stake must be a positive number of hours")
        project_id = (await self._load(task_id)).project_id

        async with project_transaction(self.session, project_id) as project:
            ensure_not_archived(project)
            task = await get_task(self.session, task_id, for_update=True)
            _ensure_regular(task)
            if task.status not in ("inAudit", "pendingConfirmation"):
                raise InvalidStateError(f"Task {task_id} is not under audit (status '{task.status}')")
            deadline = audit_deadline(task)
            if deadline is not None and utcnow() > deadline:
                raise InvalidStateError(f"The audit window for task {task_id} has closed")
            if task.assignee == principal:
                raise AccessDeniedError("The assignee cannot challenge their own task")
            if not await is_participant(self.session, project_id, principal):
                raise AccessDeniedError("Only project participants may challenge tasks")

            existing = await self.session.scalar(
                select(Challenge.id).where(
                    Challenge.task_id == task_id,
                    Challenge.challenger == principal,
                    Challenge.status == "open",
                )
            )
            if existing is not None:
                raise ConflictError(f"{principal} already has an open challenge on task {task_id}")

            available = await committed_hours(self.session, project_id, principal)
            if stake_hh > available:
                raise BudgetExceededError("Challenge stake", stake_hh, available)

            challenge = Challenge(
                task_id=task_id,
                project_id=project_id,
                challenger=principal,
                stake_hh=stake_hh,
                status="open",
            )
            self.session.add(challenge)
            if task.status == "inAudit":
                validate_task_transition(task.status, "pendingConfirmation")
                task.status = "pendingConfirmation"
            await self.session.flush()
            await log_activity(
                self.session, project_id, "task_challenged",
                f"{principal} challenged task '{task.title}' staking {stake_hh:g} HH",
                actor=principal,
                task_id=task.id,
                metadata={"challenge_id": challenge.id, "stake_hh": stake_hh},
            )

        logger.info("task_challenged", task_id=task_id, challenger=principal, stake_hh=stake_hh)
        return challenge

    async def approve_task(self, principal: str, task_id: int) -> Task:
        """Reviewer approval: the only transition that awards earned hours."""
        access = await self.access.require_approved(principal)
        project_id = (await self._load(task_id)).project_id

        async with project_transaction(self.session, project_id) as project:
            ensure_not_archived(project)
            if not await self._is_reviewer(access, project):
                raise AccessDeniedError("Caller has no reviewer standing in this project")
            task = await get_task(self.session, task_id, for_update=True)
            _ensure_regular(task)
            if task.assignee == principal:
                raise AccessDeniedError("The assignee cannot approve their own task")
            validate_task_transition(task.status, "completed")
            open_challenges = await self.session.scalar(
                select(func.count())
                .select_from(Challenge)
                .where(Challenge.task_id == task_id, Challenge.status == "open")
            )
            if open_challenges:
                raise InvalidStateError(f"Task {task_id} has open challenges")

            task.status = "completed"
            task.completion_time = utcnow()
            await adjust_profile_counters(self.session, task.assignee, earned_hh=task.hh_budget)

            reviewer = await self.session.get(UserProfile, principal)
            if reviewer is not None and reviewer.squad_role == MENTOR_ROLE:
                await adjust_profile_counters(self.session, principal, enabler_points=1)

            await log_activity(
                self.session, project_id, "task_approved",
                f"Task '{task.title}' approved; {task.assignee} earned {task.hh_budget:g} HH",
                actor=principal,
                task_id=task.id,
            )

        logger.info("task_approved", task_id=task_id, reviewer=principal, earned_hh=task.hh_budget)
        return task

    async def reject_task(self, principal: str, task_id: int) -> Task:
        """Reviewer rejection of work under audit."""
        access = await self.access.require_approved(principal)
        project_id = (await self._load(task_id)).project_id

        async with project_transaction(self.session, project_id) as project:
            ensure_not_archived(project)
            if not await self._is_reviewer(access, project):
                raise AccessDeniedError("Caller has no reviewer standing in this project")
            task = await get_task(self.session, task_id, for_update=True)
            _ensure_regular(task)
            if task.status != "inAudit":
                raise InvalidStateError(f"Task {task_id} is not awaiting review (status '{task.status}')")

            task.status = "rejected"
            task.completion_time = utcnow()
            await log_activity(
                self.session, project_id, "task_rejected",
                f"Task '{task.title}' rejected by reviewer",
                actor=principal,
                task_id=task.id,
                metadata={"reason": "reviewer_rejected"},
            )

        logger.info("task_rejected", task_id=task_id, reviewer=principal)
        return task

    async def close_elapsed_audits(self, now: datetime | None = None) -> dict[str, int]:
        """
        Dismiss challenges still open after their audit window closed.

        The task returns to ``inAudit`` for reviewer approval. Safe to run
        repeatedly: tasks are re-read under the project lock before writing.
        """
        now = ensure_utc(now) if now is not None else utcnow()
        cutoff = now - timedelta(hours=get_settings().audit_window_hours)

        result = await self.session.execute(
            select(Task.id, Task.project_id).where(
                Task.status == "pendingConfirmation",
                Task.audit_start_time <= cutoff,
            )
        )
        candidates = result.all()
        await self.session.commit()

        closed = 0
        skipped = 0
        for task_id, project_id in candidates:
            try:
                async with project_transaction(self.session, project_id):
                    task = await get_task(self.session, task_id, for_update=True)
                    deadline = audit_deadline(task)
                    if task.status != "pendingConfirmation" or deadline is None or deadline > now:
                        skipped += 1
                        logger.info("audit_close_skipped", task_id=task_id, status=task.status)
                        continue

                    dismissed = await self.session.execute(
                        update(Challenge)
                        .where(Challenge.task_id == task_id, Challenge.status == "open")
                        .values(status="dismissed", resolved_at=now)
                        .execution_options(synchronize_session=False)
                    )
                    validate_task_transition(task.status, "inAudit")
                    task.status = "inAudit"
                    await log_activity(
                        self.session, project_id, "challenges_dismissed",
                        f"Audit window closed; {dismissed.rowcount} challenge(s) on "
                        f"'{task.title}' dismissed",
                        task_id=task_id,
                    )
                closed += 1
            except Exception:
                skipped += 1
                logger.exception("audit_close_failed", task_id=task_id, project_id=project_id)

        if closed or skipped:
            logger.info("audit_close_sweep_complete", closed=closed, skipped=skipped)
        return {"closed": closed, "skipped": skipped}

    # ==========================================
    # READS
    # ==========================================

    async def get_task(self, task_id: int) -> Task:
        return await self._load(task_id)

    async def list_tasks(
        self, project_id: int, status: str | None = None, include_pool: bool = True
    ) -> list[Task]:
        await get_project(self.session, project_id)
        query = (
            select(Task)
            .where(Task.project_id == project_id)
            .order_by(Task.id)
            .execution_options(populate_existing=True)
        )
        if status is not None:
            query = query.where(Task.status == status)
        if not include_pool:
            query = query.where(Task.is_pool.is_(False))
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def list_challenges(self, task_id: int) -> list[Challenge]:
        await self._load(task_id)
        result = await self.session.execute(
            select(Challenge)
            .where(Challenge.task_id == task_id)
            .order_by(Challenge.id)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())
