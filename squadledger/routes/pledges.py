"""Pledge endpoints: create, confirm, reassign and the expiry sweep."""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from squadledger.auth import get_caller
from squadledger.database import get_db
from squadledger.exceptions import LedgerError, raise_http_exception
from squadledger.schemas import PledgeCreate, PledgeResponse, ReassignRequest
from squadledger.services.access_service import AccessService
from squadledger.services.pledge_service import PledgeService

router = APIRouter(prefix="/api/pledges", tags=["pledges"])


@router.post("", response_model=PledgeResponse, status_code=201)
async def pledge_to_task(
    body: PledgeCreate,
    db: AsyncSession = Depends(get_db),
    caller: str = Depends(get_caller),
):
    """Pledge hours to a task, or to the general pool when task_id is omitted."""
    try:
        return await PledgeService(db).pledge_to_task(
            caller, body.project_id, body.amount, task_id=body.task_id
        )
    except LedgerError as e:
        raise_http_exception(e)


@router.get("", response_model=list[PledgeResponse])
async def list_pledges(
    project_id: int = Query(...),
    status: str | None = Query(
        default=None, pattern=r"^(pending|confirmed|approved|expired|reassigned)$"
    ),
    user: str | None = Query(default=None),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await PledgeService(db).list_pledges(project_id, status=status, user=user)
    except LedgerError as e:
        raise_http_exception(e)


@router.post("/sweeps/expire")
async def expire_stale_pledges(
    db: AsyncSession = Depends(get_db),
    caller: str = Depends(get_caller),
) -> dict[str, int]:
    """Run the pledge-expiry sweep now (administrators only)."""
    try:
        await AccessService(db).require_admin(caller)
        return await PledgeService(db).expire_stale_pledges()
    except LedgerError as e:
        raise_http_exception(e)


@router.get("/{pledge_id}", response_model=PledgeResponse)
async def get_pledge(pledge_id: int, db: AsyncSession = Depends(get_db)):
    try:
        return await PledgeService(db).get_pledge(pledge_id)
    except LedgerError as e:
        raise_http_exception(e)


@router.post("/{pledge_id}/confirm", response_model=PledgeResponse)
async def confirm_pledge(
    pledge_id: int,
    db: AsyncSession = Depends(get_db),
    caller: str = Depends(get_caller),
):
    try:
        return await PledgeService(db).confirm_pledge(caller, pledge_id)
    except LedgerError as e:
        raise_http_exception(e)


@router.post("/{pledge_id}/reassign", response_model=PledgeResponse)
async def reassign_pledge(
    pledge_id: int,
    body: ReassignRequest,
    db: AsyncSession = Depends(get_db),
    caller: str = Depends(get_caller),
):
    """Move a confirmed pool pledge onto a regular task (creator only)."""
    try:
        return await PledgeService(db).reassign_pledge(caller, pledge_id, body.task_id)
    except LedgerError as e:
        raise_http_exception(e)
