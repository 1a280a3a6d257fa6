"""Identity and role gate.

Two independent axes decide what a caller may do: the coarse role
(admin / user / guest) and the admin-managed approval status
(pending / approved / rejected). Unknown principals and the anonymous
principal are guests.
"""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from squadledger.datetime_utils import utcnow
from squadledger.exceptions import (
    AccessDeniedError,
    InputValidationError,
    InvalidStateError,
    NotFoundError,
)
from squadledger.locks import access_locks
from squadledger.logging_config import get_logger
from squadledger.models import UserApproval, UserProfile, UserRole

logger = get_logger(__name__)

ANONYMOUS_PRINCIPAL = "anonymous"

ROLES = ("admin", "user", "guest")
APPROVAL_STATUSES = ("pending", "approved", "rejected")

_BOOTSTRAP_KEY = "__bootstrap__"


@dataclass(frozen=True)
class AccessInfo:
    principal: str
    role: str
    approval_status: str | None

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    @property
    def is_approved(self) -> bool:
        return self.is_admin or (self.role == "user" and self.approval_status == "approved")

    @property
    def user_status(self) -> str:
        if self.is_admin:
            return "admin"
        if self.approval_status in ("approved", "pending"):
            return self.approval_status
        return "unapproved"


class AccessService:
    """Resolves callers to access tiers and manages roles and approvals."""

    def __init__(self, session: AsyncSession):
        self.session = session

    # ==========================================
    # RESOLUTION
    # ==========================================

    async def resolve_access(self, principal: str) -> AccessInfo:
        if principal == ANONYMOUS_PRINCIPAL:
            return AccessInfo(principal=principal, role="guest", approval_status=None)

        role_row = await self.session.get(UserRole, principal, populate_existing=True)
        approval_row = await self.session.get(UserApproval, principal, populate_existing=True)
        return AccessInfo(
            principal=principal,
            role=role_row.role if role_row else "guest",
            approval_status=approval_row.status if approval_row else None,
        )

    async def require_not_guest(self, principal: str) -> AccessInfo:
        access = await self.resolve_access(principal)
        if access.role == "guest":
            raise AccessDeniedError("Guests cannot perform this operation")
        return access

    async def require_approved(self, principal: str) -> AccessInfo:
        access = await self.require_not_guest(principal)
        if not access.is_approved:
            raise AccessDeniedError("Caller is not approved")
        return access

    async def require_admin(self, principal: str) -> AccessInfo:
        access = await self.resolve_access(principal)
        if not access.is_admin:
            raise AccessDeniedError("Administrator role required")
        return access

    async def is_caller_admin(self, principal: str) -> bool:
        return (await self.resolve_access(principal)).is_admin

    async def is_caller_approved(self, principal: str) -> bool:
        return (await self.resolve_access(principal)).is_approved

    async def get_current_user_status(self, principal: str) -> str:
        return (await self.resolve_access(principal)).user_status

    # ==========================================
    # ROLES
    # ==========================================

    async def initialize_access(self, principal: str) -> AccessInfo:
        """Record a caller's role. The first caller ever becomes administrator."""
        if principal == ANONYMOUS_PRINCIPAL:
            return await self.resolve_access(principal)

        async with access_locks.hold(_BOOTSTRAP_KEY):
            try:
                existing = await self.session.get(UserRole, principal, populate_existing=True)
                if existing is None:
                    admin_count = await self.session.scalar(
                        select(func.count()).select_from(UserRole).where(UserRole.role == "admin")
                    )
                    role = "user" if admin_count else "admin"
                    self.session.add(UserRole(principal=principal, role=role))
                    await self.session.commit()
                    logger.info("access_initialized", principal=principal, role=role)
            except Exception:
                await self.session.rollback()
                raise

        return await self.resolve_access(principal)

    async def assign_role(self, caller: str, principal: str, role: str) -> UserRole:
        await self.require_admin(caller)
        if role not in ROLES:
            raise InputValidationError(f"Unknown role '{role}'")
        if principal == ANONYMOUS_PRINCIPAL:
            raise InputValidationError("The anonymous principal is always a guest")

        async with access_locks.hold(_BOOTSTRAP_KEY):
            try:
                row = await self.session.get(UserRole, principal, populate_existing=True)
                if row is None:
                    row = UserRole(principal=principal, role=role)
                    self.session.add(row)
                else:
                    row.role = role
                    row.updated_at = utcnow()
                await self.session.commit()
            except Exception:
                await self.session.rollback()
                raise

        logger.info("role_assigned", principal=principal, role=role, assigned_by=caller)
        return row

    # ==========================================
    # APPROVALS
    # ==========================================

    async def request_approval(self, principal: str) -> dict[str, str]:
        """Move a registered user into ``pending``. Repeated requests are no-ops."""
        await self.require_not_guest(principal)
        if await self.session.get(UserProfile, principal) is None:
            raise InvalidStateError("Register a profile before requesting approval")

        async with access_locks.hold(principal):
            try:
                row = await self.session.get(UserApproval, principal, populate_existing=True)
                if row is not None:
                    if row.status == "pending":
                        return {"status": "pending", "message": "already requested"}
                    if row.status == "approved":
                        return {"status": "approved", "message": "already approved"}
                    raise InvalidStateError("Approval was rejected; only an administrator can change it")

                self.session.add(UserApproval(principal=principal, status="pending"))
                await self.session.commit()
            except Exception:
                await self.session.rollback()
                raise

        logger.info("approval_requested", principal=principal)
        return {"status": "pending", "message": "requested"}

    async def set_approval(self, caller: str, principal: str, status: str) -> UserApproval:
        await self.require_admin(caller)
        if status not in APPROVAL_STATUSES:
            raise InputValidationError(f"Unknown approval status '{status}'")

        async with access_locks.hold(principal):
            try:
                row = await self.session.get(UserApproval, principal, populate_existing=True)
                if row is None:
                    if await self.session.get(UserProfile, principal) is None:
                        raise NotFoundError("UserProfile", principal)
                    row = UserApproval(principal=principal, status=status)
                    self.session.add(row)
                else:
                    row.status = status
                row.decided_at = utcnow()
                row.decided_by = caller
                await self.session.commit()
            except Exception:
                await self.session.rollback()
                raise

        logger.info("approval_set", principal=principal, status=status, decided_by=caller)
        return row

    async def list_approvals(self, caller: str, status: str | None = None) -> list[UserApproval]:
        await self.require_admin(caller)
        query = select(UserApproval).order_by(UserApproval.requested_at)
        if status is not None:
            query = query.where(UserApproval.status == status)
        result = await self.session.execute(query)
        return list(result.scalars().all())
