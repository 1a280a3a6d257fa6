"""Project endpoints: lifecycle transitions, ledger and payout views."""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from squadledger.auth import get_caller
from squadledger.database import get_db
from squadledger.exceptions import LedgerError, raise_http_exception
from squadledger.schemas import (
    ActivateRequest,
    ActivityLogResponse,
    CompleteRequest,
    LedgerResponse,
    PayoutResponse,
    ProjectCreate,
    ProjectResponse,
    ProjectUpdate,
    ReadinessResponse,
)
from squadledger.services.project_service import ProjectService

router = APIRouter(prefix="/api/projects", tags=["projects"])


@router.post("", response_model=ProjectResponse, status_code=201)
async def create_project(
    body: ProjectCreate,
    db: AsyncSession = Depends(get_db),
    caller: str = Depends(get_caller),
):
    """Create a project in pledging with its general pool task."""
    try:
        return await ProjectService(db).create_project(
            caller,
            title=body.title,
            description=body.description,
            estimated_total_hh=body.estimated_total_hh,
            pool_hh=body.pool_hh,
            final_monetary_value=body.final_monetary_value,
            shared_resource_link=body.shared_resource_link,
        )
    except LedgerError as e:
        raise_http_exception(e)


@router.get("", response_model=list[ProjectResponse])
async def list_projects(
    status: str | None = Query(default=None, pattern=r"^(pledging|active|completed|archived)$"),
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
):
    return await ProjectService(db).list_projects(status=status, offset=offset, limit=limit)


@router.get("/{project_id}", response_model=ProjectResponse)
async def get_project(project_id: int, db: AsyncSession = Depends(get_db)):
    try:
        return await ProjectService(db).get_project(project_id)
    except LedgerError as e:
        raise_http_exception(e)


@router.patch("/{project_id}", response_model=ProjectResponse)
async def update_project(
    project_id: int,
    body: ProjectUpdate,
    db: AsyncSession = Depends(get_db),
    caller: str = Depends(get_caller),
):
    try:
        return await ProjectService(db).update_project(
            caller,
            project_id,
            description=body.description,
            shared_resource_link=body.shared_resource_link,
            final_monetary_value=body.final_monetary_value,
        )
    except LedgerError as e:
        raise_http_exception(e)


@router.get("/{project_id}/participants", response_model=list[str])
async def list_participants(project_id: int, db: AsyncSession = Depends(get_db)):
    try:
        return await ProjectService(db).list_participants(project_id)
    except LedgerError as e:
        raise_http_exception(e)


@router.get("/{project_id}/ledger", response_model=LedgerResponse)
async def get_ledger(project_id: int, db: AsyncSession = Depends(get_db)):
    """Capacity, allocation and commitment figures for one project."""
    try:
        return await ProjectService(db).get_ledger(project_id)
    except LedgerError as e:
        raise_http_exception(e)


@router.get("/{project_id}/readiness", response_model=ReadinessResponse)
async def activation_readiness(project_id: int, db: AsyncSession = Depends(get_db)):
    try:
        return await ProjectService(db).activation_readiness(project_id)
    except LedgerError as e:
        raise_http_exception(e)


@router.post("/{project_id}/activate", response_model=ProjectResponse)
async def activate_project(
    project_id: int,
    body: ActivateRequest | None = None,
    db: AsyncSession = Depends(get_db),
    caller: str = Depends(get_caller),
):
    try:
        return await ProjectService(db).activate_project(
            caller, project_id, force=body.force if body else False
        )
    except LedgerError as e:
        raise_http_exception(e)


@router.post("/{project_id}/complete", response_model=ProjectResponse)
async def complete_project(
    project_id: int,
    body: CompleteRequest | None = None,
    db: AsyncSession = Depends(get_db),
    caller: str = Depends(get_caller),
):
    """Complete the project, freezing the ledger and writing payouts."""
    try:
        return await ProjectService(db).complete_project(
            caller,
            project_id,
            final_monetary_value=body.final_monetary_value if body else None,
        )
    except LedgerError as e:
        raise_http_exception(e)


@router.post("/{project_id}/archive", response_model=ProjectResponse)
async def archive_project(
    project_id: int,
    db: AsyncSession = Depends(get_db),
    caller: str = Depends(get_caller),
):
    try:
        return await ProjectService(db).archive_project(caller, project_id)
    except LedgerError as e:
        raise_http_exception(e)


@router.get("/{project_id}/payouts", response_model=list[PayoutResponse])
async def get_payouts(project_id: int, db: AsyncSession = Depends(get_db)):
    try:
        return await ProjectService(db).get_payouts(project_id)
    except LedgerError as e:
        raise_http_exception(e)


@router.get("/{project_id}/activity", response_model=list[ActivityLogResponse])
async def get_activity(
    project_id: int,
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=100, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await ProjectService(db).get_activity(project_id, limit=limit, offset=offset)
    except LedgerError as e:
        raise_http_exception(e)
