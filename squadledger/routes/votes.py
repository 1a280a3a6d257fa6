"""Voting endpoints: cast weighted votes and view tallies."""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from squadledger.auth import get_caller
from squadledger.database import get_db
from squadledger.exceptions import LedgerError, raise_http_exception
from squadledger.schemas import VoteCreate, VoteResponse, VoteTallyResponse
from squadledger.services.voting_service import VotingService

router = APIRouter(prefix="/api/votes", tags=["votes"])

VOTE_TYPE_PATTERN = r"^(finalPrize|challenge|taskProposal)$"


@router.post("", response_model=VoteResponse, status_code=201)
async def cast_vote(
    body: VoteCreate,
    db: AsyncSession = Depends(get_db),
    caller: str = Depends(get_caller),
):
    """Cast a vote. One vote per voter, target and kind."""
    try:
        return await VotingService(db).cast_vote(caller, body.target_id, body.vote_type)
    except LedgerError as e:
        raise_http_exception(e)


@router.get("", response_model=list[VoteResponse])
async def list_votes(
    target_id: int = Query(...),
    vote_type: str | None = Query(default=None, pattern=VOTE_TYPE_PATTERN),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await VotingService(db).list_votes(target_id, vote_type=vote_type)
    except LedgerError as e:
        raise_http_exception(e)


@router.get("/tally", response_model=VoteTallyResponse)
async def get_tally(
    target_id: int = Query(...),
    vote_type: str = Query(..., pattern=VOTE_TYPE_PATTERN),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await VotingService(db).get_tally(target_id, vote_type)
    except LedgerError as e:
        raise_http_exception(e)
