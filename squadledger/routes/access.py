"""Access endpoints: role bootstrap, approval requests and admin decisions."""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from squadledger.auth import get_caller
from squadledger.database import get_db
from squadledger.exceptions import LedgerError, raise_http_exception
from squadledger.schemas import (
    AccessResponse,
    ApprovalRequestResponse,
    ApprovalResponse,
    AssignRoleRequest,
    FlagResponse,
    RoleResponse,
    SetApprovalRequest,
    UserStatusResponse,
)
from squadledger.services.access_service import AccessService

router = APIRouter(prefix="/api/access", tags=["access"])


@router.post("/initialize", response_model=AccessResponse)
async def initialize_access(
    db: AsyncSession = Depends(get_db),
    caller: str = Depends(get_caller),
):
    """Record the caller's role; the very first caller becomes administrator."""
    try:
        access = await AccessService(db).initialize_access(caller)
        return AccessResponse.model_validate(access)
    except LedgerError as e:
        raise_http_exception(e)


@router.get("/me", response_model=AccessResponse)
async def get_caller_access(
    db: AsyncSession = Depends(get_db),
    caller: str = Depends(get_caller),
):
    access = await AccessService(db).resolve_access(caller)
    return AccessResponse.model_validate(access)


@router.get("/me/status", response_model=UserStatusResponse)
async def get_current_user_status(
    db: AsyncSession = Depends(get_db),
    caller: str = Depends(get_caller),
):
    """admin, approved, pending or unapproved."""
    return UserStatusResponse(status=await AccessService(db).get_current_user_status(caller))


@router.get("/me/is-admin", response_model=FlagResponse)
async def is_caller_admin(
    db: AsyncSession = Depends(get_db),
    caller: str = Depends(get_caller),
):
    return FlagResponse(value=await AccessService(db).is_caller_admin(caller))


@router.get("/me/is-approved", response_model=FlagResponse)
async def is_caller_approved(
    db: AsyncSession = Depends(get_db),
    caller: str = Depends(get_caller),
):
    return FlagResponse(value=await AccessService(db).is_caller_approved(caller))


@router.post("/approval-requests", response_model=ApprovalRequestResponse)
async def request_approval(
    db: AsyncSession = Depends(get_db),
    caller: str = Depends(get_caller),
):
    """Ask an administrator for approval. Repeating the request is harmless."""
    try:
        return await AccessService(db).request_approval(caller)
    except LedgerError as e:
        raise_http_exception(e)


@router.get("/approvals", response_model=list[ApprovalResponse])
async def list_approvals(
    status: str | None = Query(default=None, pattern=r"^(pending|approved|rejected)$"),
    db: AsyncSession = Depends(get_db),
    caller: str = Depends(get_caller),
):
    try:
        return await AccessService(db).list_approvals(caller, status=status)
    except LedgerError as e:
        raise_http_exception(e)


@router.put("/approvals/{principal}", response_model=ApprovalResponse)
async def set_approval(
    principal: str,
    body: SetApprovalRequest,
    db: AsyncSession = Depends(get_db),
    caller: str = Depends(get_caller),
):
    """Administrator decision on a user's approval."""
    try:
        return await AccessService(db).set_approval(caller, principal, body.status)
    except LedgerError as e:
        raise_http_exception(e)


@router.put("/roles/{principal}", response_model=RoleResponse)
async def assign_role(
    principal: str,
    body: AssignRoleRequest,
    db: AsyncSession = Depends(get_db),
    caller: str = Depends(get_caller),
):
    try:
        return await AccessService(db).assign_role(caller, principal, body.role)
    except LedgerError as e:
        raise_http_exception(e)
