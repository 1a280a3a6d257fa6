"""Project lifecycle: creation, activation, completion and archival."""

from __future__ import annotations

from typing import Any

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from squadledger.config import HH_EPSILON, POOL_TASK_TITLE, get_settings
from squadledger.datetime_utils import utcnow
from squadledger.exceptions import (
    AccessDeniedError,
    BudgetExceededError,
    InputValidationError,
    InvalidStateError,
)
from squadledger.ledger import LedgerSnapshot, load_ledger
from squadledger.logging_config import get_logger
from squadledger.models import Pledge, Project, ProjectPayout, Task
from squadledger.payout import compute_payouts
from squadledger.services.access_service import AccessInfo, AccessService
from squadledger.services.activity_service import list_activity, log_activity
from squadledger.services.common import (
    add_participant,
    ensure_not_archived,
    ensure_project_status,
    get_project,
    list_participants,
    project_transaction,
)
from squadledger.state_machine import COMMITTED_PLEDGE_STATUSES, validate_project_transition

logger = get_logger(__name__)


def ensure_creator_or_admin(access: AccessInfo, project: Project) -> None:
    if not (access.is_admin or project.creator == access.principal):
        raise AccessDeniedError("Only the project creator or an administrator may do this")


def ledger_to_dict(snapshot: LedgerSnapshot) -> dict[str, Any]:
    return {
        "project_id": snapshot.project_id,
        "capacity_hh": snapshot.capacity,
        "pool_budget_hh": snapshot.pool_budget,
        "allocated_hh": snapshot.allocated_hh,
        "unallocated_hh": snapshot.unallocated_hh,
        "pending_hh": snapshot.pending_hh,
        "confirmed_hh": snapshot.confirmed_hh,
        "remaining_capacity_hh": snapshot.remaining_capacity,
        "tasks": [
            {
                "task_id": usage.task_id,
                "title": usage.title,
                "is_pool": usage.is_pool,
                "status": usage.status,
                "hh_budget": usage.hh_budget,
                "pending_hh": usage.pending_hh,
                "confirmed_hh": usage.confirmed_hh,
                "remaining_hh": usage.remaining_hh,
            }
            for usage in snapshot.tasks.values()
        ],
    }


class ProjectService:
    """Handles the coarse project state machine and its ledger views."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.access = AccessService(session)

    # ==========================================
    # CREATION & READS
    # ==========================================

    async def create_project(
        self,
        principal: str,
        title: str,
        estimated_total_hh: float,
        description: str = "",
        pool_hh: float = 0.0,
        final_monetary_value: float = 0.0,
        shared_resource_link: str | None = None,
    ) -> Project:
        """Create a project in ``pledging`` together with its pool task."""
        await self.access.require_approved(principal)
        title = title.strip()
        if not title:
            raise InputValidationError("Project title must not be empty")
        if estimated_total_hh < 0:
            raise InputValidationError("estimated_total_hh must not be negative")
        if pool_hh < 0:
            raise InputValidationError("pool_hh must not be negative")
        if final_monetary_value < 0:
            raise InputValidationError("final_monetary_value must not be negative")
        if pool_hh > estimated_total_hh + HH_EPSILON:
            raise BudgetExceededError("Project", pool_hh, estimated_total_hh)

        try:
            project = Project(
                title=title,
                description=description,
                creator=principal,
                status="pledging",
                estimated_total_hh=estimated_total_hh,
                final_monetary_value=final_monetary_value,
                shared_resource_link=shared_resource_link,
            )
            self.session.add(project)
            await self.session.flush()

            pool = Task(
                project_id=project.id,
                title=POOL_TASK_TITLE,
                description="Unallocated project capacity",
                hh_budget=pool_hh,
                status="proposed",
                is_pool=True,
                proposed_by=principal,
            )
            self.session.add(pool)
            await self.session.flush()

            await add_participant(self.session, project.id, principal)
            await log_activity(
                self.session, project.id, "project_created",
                f"Project '{title}' created with {estimated_total_hh:g} HH capacity",
                actor=principal,
                metadata={"pool_hh": pool_hh},
            )
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

        logger.info(
            "project_created",
            project_id=project.id,
            creator=principal,
            capacity_hh=estimated_total_hh,
            pool_hh=pool_hh,
        )
        return project

    async def get_project(self, project_id: int) -> Project:
        return await get_project(self.session, project_id)

    async def list_projects(
        self, status: str | None = None, offset: int = 0, limit: int = 50
    ) -> list[Project]:
        query = select(Project).order_by(Project.id).offset(offset).limit(limit)
        if status is not None:
            query = query.where(Project.status == status)
        result = await self.session.execute(query.execution_options(populate_existing=True))
        return list(result.scalars().all())

    async def list_participants(self, project_id: int) -> list[str]:
        await get_project(self.session, project_id)
        return await list_participants(self.session, project_id)

    async def get_ledger(self, project_id: int) -> dict[str, Any]:
        project = await get_project(self.session, project_id)
        return ledger_to_dict(await load_ledger(self.session, project))

    async def get_activity(self, project_id: int, limit: int = 100, offset: int = 0):
        await get_project(self.session, project_id)
        return await list_activity(self.session, project_id, limit=limit, offset=offset)

    async def update_project(
        self,
        principal: str,
        project_id: int,
        description: str | None = None,
        shared_resource_link: str | None = None,
        final_monetary_value: float | None = None,
    ) -> Project:
        """Edit descriptive fields and the prize pool before completion."""
        access = await self.access.require_approved(principal)
        async with project_transaction(self.session, project_id) as project:
            ensure_creator_or_admin(access, project)
            ensure_project_status(project, "pledging", "active")
            if final_monetary_value is not None:
                if final_monetary_value < 0:
                    raise InputValidationError("final_monetary_value must not be negative")
                project.final_monetary_value = final_monetary_value
            if description is not None:
                project.description = description
            if shared_resource_link is not None:
                project.shared_resource_link = shared_resource_link or None
            await log_activity(
                self.session, project.id, "project_updated",
                f"Project '{project.title}' details updated",
                actor=principal,
            )

        logger.info("project_updated", project_id=project_id, principal=principal)
        return project

    # ==========================================
    # ACTIVATION
    # ==========================================

    async def _readiness(self, project: Project) -> dict[str, Any]:
        snapshot = await load_ledger(self.session, project)
        pending_count = await self.session.scalar(
            select(func.count())
            .select_from(Pledge)
            .where(Pledge.project_id == project.id, Pledge.status == "pending")
        )
        threshold_hh = snapshot.activation_threshold_hh(get_settings().activation_threshold)
        reached = snapshot.confirmed_hh + HH_EPSILON >= threshold_hh
        return {
            "project_id": project.id,
            "status": project.status,
            "confirmed_hh": snapshot.confirmed_hh,
            "threshold_hh": threshold_hh,
            "pending_pledges": pending_count or 0,
            "threshold_reached": reached,
            "ready": project.status == "pledging" and reached and not pending_count,
        }

    async def activation_readiness(self, project_id: int) -> dict[str, Any]:
        project = await get_project(self.session, project_id)
        return await self._readiness(project)

    async def activate_project(
        self, principal: str, project_id: int, force: bool = False
    ) -> Project:
        """
        Move a project from ``pledging`` to ``active``.

        The creator may activate once confirmed pledges reach the activation
        threshold with no pledge still pending. An administrator may pass
        ``force`` to skip the readiness check.
        """
        access = await self.access.require_approved(principal)
        async with project_transaction(self.session, project_id) as project:
            ensure_creator_or_admin(access, project)
            ensure_not_archived(project)
            validate_project_transition(project.status, "active")

            if force and not access.is_admin:
                raise AccessDeniedError("Only an administrator may force activation")
            readiness = await self._readiness(project)
            if not force and not readiness["ready"]:
                raise InvalidStateError(
                    f"Project {project_id} is not ready to activate: "
                    f"{readiness['confirmed_hh']:g}/{readiness['threshold_hh']:g} HH confirmed, "
                    f"{readiness['pending_pledges']} pledge(s) pending"
                )

            project.status = "active"
            project.activated_at = utcnow()
            await log_activity(
                self.session, project.id, "project_activated",
                f"Project '{project.title}' is now active",
                actor=principal,
                metadata={"forced": force, "confirmed_hh": readiness["confirmed_hh"]},
            )

        logger.info("project_activated", project_id=project_id, principal=principal, forced=force)
        return project

    # ==========================================
    # COMPLETION & PAYOUT
    # ==========================================

    async def complete_project(
        self,
        principal: str,
        project_id: int,
        final_monetary_value: float | None = None,
    ) -> Project:
        """Complete an active project and persist its payout snapshot."""
        access = await self.access.require_approved(principal)
        async with project_transaction(self.session, project_id) as project:
            ensure_creator_or_admin(access, project)
            ensure_not_archived(project)
            validate_project_transition(project.status, "completed")
            if final_monetary_value is not None:
                if final_monetary_value < 0:
                    raise InputValidationError("final_monetary_value must not be negative")
                project.final_monetary_value = final_monetary_value

            result = await self.session.execute(
                select(Pledge.user, Pledge.amount).where(
                    Pledge.project_id == project.id,
                    Pledge.status.in_(COMMITTED_PLEDGE_STATUSES),
                )
            )
            lines = compute_payouts(result.all(), project.final_monetary_value)

            await self.session.execute(
                delete(ProjectPayout).where(ProjectPayout.project_id == project.id)
            )
            for line in lines:
                self.session.add(
                    ProjectPayout(
                        project_id=project.id,
                        principal=line.principal,
                        confirmed_hh=line.confirmed_hh,
                        share=line.share,
                        amount=line.amount,
                    )
                )

            project.status = "completed"
            project.completion_time = utcnow()
            await log_activity(
                self.session, project.id, "project_completed",
                f"Project '{project.title}' completed; "
                f"{project.final_monetary_value:g} distributed to {len(lines)} participant(s)",
                actor=principal,
                metadata={"payout_count": len(lines)},
            )

        logger.info(
            "project_completed",
            project_id=project_id,
            prize_pool=project.final_monetary_value,
            payout_count=len(lines),
        )
        return project

    async def get_payouts(self, project_id: int) -> list[ProjectPayout]:
        await get_project(self.session, project_id)
        result = await self.session.execute(
            select(ProjectPayout)
            .where(ProjectPayout.project_id == project_id)
            .order_by(ProjectPayout.principal)
        )
        return list(result.scalars().all())

    # ==========================================
    # ARCHIVAL
    # ==========================================

    async def archive_project(self, principal: str, project_id: int) -> Project:
        """Administrators archive from any state; creators only once completed."""
        access = await self.access.require_approved(principal)
        async with project_transaction(self.session, project_id) as project:
            ensure_creator_or_admin(access, project)
            ensure_not_archived(project)
            if not access.is_admin and project.status != "completed":
                raise InvalidStateError("Only completed projects may be archived by their creator")

            previous = project.status
            project.status = "archived"
            project.archived_at = utcnow()
            await log_activity(
                self.session, project.id, "project_archived",
                f"Project '{project.title}' archived",
                actor=principal,
                metadata={"previous_status": previous},
            )

        logger.info("project_archived", project_id=project_id, principal=principal)
        return project
