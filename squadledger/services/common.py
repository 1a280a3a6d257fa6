"""Shared lookups and the per-project write transaction."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from squadledger.exceptions import InvalidStateError, NotFoundError
from squadledger.locks import project_locks
from squadledger.models import Pledge, Project, ProjectParticipant, Task


async def lock_project(session: AsyncSession, project_id: int) -> Project:
    """Load the project row for update, refreshing any stale identity-map copy."""
    result = await session.execute(
        select(Project)
        .where(Project.id == project_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    project = result.scalar_one_or_none()
    if project is None:
        raise NotFoundError("Project", project_id)
    return project


@asynccontextmanager
async def project_transaction(
    session: AsyncSession, project_id: int
) -> AsyncIterator[Project]:
    """
    Run one check-then-act sequence against a project as its single writer.

    The project lock is held until the transaction is committed or rolled
    back, so the next writer always starts from committed state.
    """
    async with project_locks.hold(project_id):
        try:
            project = await lock_project(session, project_id)
            yield project
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def ensure_not_archived(project: Project) -> None:
    if project.status == "archived":
        raise InvalidStateError(f"Project {project.id} is archived")


def ensure_project_status(project: Project, *allowed: str) -> None:
    ensure_not_archived(project)
    if project.status not in allowed:
        raise InvalidStateError(
            f"Project {project.id} is '{project.status}', expected one of {list(allowed)}"
        )


async def get_project(session: AsyncSession, project_id: int) -> Project:
    project = await session.get(Project, project_id, populate_existing=True)
    if project is None:
        raise NotFoundError("Project", project_id)
    return project


async def get_task(session: AsyncSession, task_id: int, for_update: bool = False) -> Task:
    query = select(Task).where(Task.id == task_id).execution_options(populate_existing=True)
    if for_update:
        query = query.with_for_update()
    task = (await session.execute(query)).scalar_one_or_none()
    if task is None:
        raise NotFoundError("Task", task_id)
    return task


async def get_pledge(session: AsyncSession, pledge_id: int, for_update: bool = False) -> Pledge:
    query = select(Pledge).where(Pledge.id == pledge_id).execution_options(populate_existing=True)
    if for_update:
        query = query.with_for_update()
    pledge = (await session.execute(query)).scalar_one_or_none()
    if pledge is None:
        raise NotFoundError("Pledge", pledge_id)
    return pledge


async def get_pool_task(session: AsyncSession, project_id: int) -> Task:
    result = await session.execute(
        select(Task).where(Task.project_id == project_id, Task.is_pool.is_(True))
    )
    task = result.scalar_one_or_none()
    if task is None:
        raise NotFoundError("Pool task for project", project_id)
    return task


async def is_participant(session: AsyncSession, project_id: int, principal: str) -> bool:
    result = await session.execute(
        select(ProjectParticipant.id).where(
            ProjectParticipant.project_id == project_id,
            ProjectParticipant.principal == principal,
        )
    )
    return result.scalar_one_or_none() is not None


async def add_participant(session: AsyncSession, project_id: int, principal: str) -> bool:
    """Add a principal to the participant set. Returns True if newly added."""
    if await is_participant(session, project_id, principal):
        return False
    session.add(ProjectParticipant(project_id=project_id, principal=principal))
    await session.flush()
    return True


async def list_participants(session: AsyncSession, project_id: int) -> list[str]:
    result = await session.execute(
        select(ProjectParticipant.principal)
        .where(ProjectParticipant.project_id == project_id)
        .order_by(ProjectParticipant.joined_at, ProjectParticipant.id)
    )
    return list(result.scalars().all())
