"""Profile endpoints: registration, self-service edits and admin level changes."""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from squadledger.auth import get_caller
from squadledger.database import get_db
from squadledger.exceptions import LedgerError, raise_http_exception
from squadledger.schemas import (
    ParticipationLevelRequest,
    ProfileResponse,
    ProfileUpdateRequest,
    RegisterRequest,
    ReputationResponse,
)
from squadledger.services.profile_service import ProfileService
from squadledger.services.rating_service import RatingService

router = APIRouter(prefix="/api/profiles", tags=["profiles"])


@router.post("", response_model=ProfileResponse, status_code=201)
async def register_user(
    body: RegisterRequest,
    db: AsyncSession = Depends(get_db),
    caller: str = Depends(get_caller),
):
    """Register the caller. A principal can register only once."""
    try:
        return await ProfileService(db).register_user(
            caller,
            display_name=body.display_name,
            squad_role=body.squad_role,
            participation_level=body.participation_level,
        )
    except LedgerError as e:
        raise_http_exception(e)


@router.get("", response_model=list[ProfileResponse])
async def list_profiles(
    db: AsyncSession = Depends(get_db),
    caller: str = Depends(get_caller),
):
    try:
        return await ProfileService(db).list_profiles(caller)
    except LedgerError as e:
        raise_http_exception(e)


@router.get("/me", response_model=ProfileResponse | None)
async def get_caller_profile(
    db: AsyncSession = Depends(get_db),
    caller: str = Depends(get_caller),
):
    return await ProfileService(db).get_caller_profile(caller)


@router.patch("/me", response_model=ProfileResponse)
async def update_profile(
    body: ProfileUpdateRequest,
    db: AsyncSession = Depends(get_db),
    caller: str = Depends(get_caller),
):
    try:
        return await ProfileService(db).update_profile(
            caller,
            display_name=body.display_name,
            profile_picture=body.profile_picture,
        )
    except LedgerError as e:
        raise_http_exception(e)


@router.get("/{principal}", response_model=ProfileResponse)
async def get_profile(principal: str, db: AsyncSession = Depends(get_db)):
    try:
        return await ProfileService(db).get_profile(principal)
    except LedgerError as e:
        raise_http_exception(e)


@router.get("/{principal}/reputation", response_model=ReputationResponse)
async def get_reputation(principal: str, db: AsyncSession = Depends(get_db)):
    """Mentor-weighted mean of in-window ratings received."""
    try:
        score = await RatingService(db).get_reputation(principal)
        return ReputationResponse(principal=principal, reputation_score=score)
    except LedgerError as e:
        raise_http_exception(e)


@router.put("/{principal}/participation-level", response_model=ProfileResponse)
async def update_participation_level(
    principal: str,
    body: ParticipationLevelRequest,
    db: AsyncSession = Depends(get_db),
    caller: str = Depends(get_caller),
):
    """Administrator override of a locked participation level."""
    try:
        return await ProfileService(db).update_participation_level(
            caller, principal, body.participation_level
        )
    except LedgerError as e:
        raise_http_exception(e)
