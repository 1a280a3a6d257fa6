"""Task lifecycle endpoints: propose, confirm, accept, complete, review, challenge."""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from squadledger.auth import get_caller
from squadledger.database import get_db
from squadledger.exceptions import LedgerError, raise_http_exception
from squadledger.schemas import ChallengeCreate, ChallengeResponse, TaskCreate, TaskResponse
from squadledger.services.access_service import AccessService
from squadledger.services.task_service import TaskService

router = APIRouter(prefix="/api/tasks", tags=["tasks"])


@router.post("", response_model=TaskResponse, status_code=201)
async def create_task(
    body: TaskCreate,
    db: AsyncSession = Depends(get_db),
    caller: str = Depends(get_caller),
):
    """Propose a task; its budget must fit the project's unallocated capacity."""
    try:
        return await TaskService(db).create_task(
            caller,
            body.project_id,
            title=body.title,
            description=body.description,
            hh_budget=body.hh_budget,
            dependencies=body.dependencies,
        )
    except LedgerError as e:
        raise_http_exception(e)


@router.get("", response_model=list[TaskResponse])
async def list_tasks(
    project_id: int = Query(...),
    status: str | None = Query(default=None),
    include_pool: bool = Query(default=True),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await TaskService(db).list_tasks(project_id, status=status, include_pool=include_pool)
    except LedgerError as e:
        raise_http_exception(e)


@router.post("/sweeps/audit-close")
async def close_elapsed_audits(
    db: AsyncSession = Depends(get_db),
    caller: str = Depends(get_caller),
) -> dict[str, int]:
    """Run the audit-close sweep now (administrators only)."""
    try:
        await AccessService(db).require_admin(caller)
        return await TaskService(db).close_elapsed_audits()
    except LedgerError as e:
        raise_http_exception(e)


@router.get("/{task_id}", response_model=TaskResponse)
async def get_task(task_id: int, db: AsyncSession = Depends(get_db)):
    try:
        return await TaskService(db).get_task(task_id)
    except LedgerError as e:
        raise_http_exception(e)


@router.post("/{task_id}/confirm", response_model=TaskResponse)
async def confirm_task(
    task_id: int,
    db: AsyncSession = Depends(get_db),
    caller: str = Depends(get_caller),
):
    try:
        return await TaskService(db).confirm_task(caller, task_id)
    except LedgerError as e:
        raise_http_exception(e)


@router.post("/{task_id}/accept", response_model=TaskResponse)
async def accept_task(
    task_id: int,
    db: AsyncSession = Depends(get_db),
    caller: str = Depends(get_caller),
):
    """Self-assign. A task that already has an assignee answers 409."""
    try:
        return await TaskService(db).accept_task(caller, task_id)
    except LedgerError as e:
        raise_http_exception(e)


@router.post("/{task_id}/complete", response_model=TaskResponse)
async def complete_task(
    task_id: int,
    db: AsyncSession = Depends(get_db),
    caller: str = Depends(get_caller),
):
    try:
        return await TaskService(db).complete_task(caller, task_id)
    except LedgerError as e:
        raise_http_exception(e)


@router.post("/{task_id}/approve", response_model=TaskResponse)
async def approve_task(
    task_id: int,
    db: AsyncSession = Depends(get_db),
    caller: str = Depends(get_caller),
):
    try:
        return await TaskService(db).approve_task(caller, task_id)
    except LedgerError as e:
        raise_http_exception(e)


@router.post("/{task_id}/reject", response_model=TaskResponse)
async def reject_task(
    task_id: int,
    db: AsyncSession = Depends(get_db),
    caller: str = Depends(get_caller),
):
    try:
        return await TaskService(db).reject_task(caller, task_id)
    except LedgerError as e:
        raise_http_exception(e)


@router.post("/{task_id}/challenges", response_model=ChallengeResponse, status_code=201)
async def challenge_task(
    task_id: int,
    body: ChallengeCreate,
    db: AsyncSession = Depends(get_db),
    caller: str = Depends(get_caller),
):
    try:
        return await TaskService(db).challenge_task(caller, task_id, body.stake_hh)
    except LedgerError as e:
        raise_http_exception(e)


@router.get("/{task_id}/challenges", response_model=list[ChallengeResponse])
async def list_challenges(task_id: int, db: AsyncSession = Depends(get_db)):
    try:
        return await TaskService(db).list_challenges(task_id)
    except LedgerError as e:
        raise_http_exception(e)
