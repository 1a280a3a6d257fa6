"""Peer rating endpoints."""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from squadledger.auth import get_caller
from squadledger.database import get_db
from squadledger.exceptions import LedgerError, raise_http_exception
from squadledger.schemas import RatingCreate, RatingResponse
from squadledger.services.rating_service import RatingService

router = APIRouter(prefix="/api/ratings", tags=["ratings"])


@router.post("", response_model=RatingResponse, status_code=201)
async def submit_rating(
    body: RatingCreate,
    db: AsyncSession = Depends(get_db),
    caller: str = Depends(get_caller),
):
    """Rate a fellow participant within the post-completion window."""
    try:
        return await RatingService(db).submit_rating(
            caller, body.project_id, body.ratee, body.rating
        )
    except LedgerError as e:
        raise_http_exception(e)


@router.get("", response_model=list[RatingResponse])
async def list_ratings(
    project_id: int = Query(...),
    ratee: str | None = Query(default=None),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await RatingService(db).list_ratings(project_id, ratee=ratee)
    except LedgerError as e:
        raise_http_exception(e)
