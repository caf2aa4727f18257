from __future__ import annotations
import asyncio
from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession
from uuid import UUID

from app.config import settings
from app.db import get_session
from app.auth_deps import get_current_user
from app.models.vote import SuperVoteBalance, VoteQueueEntry
from app.models.submission import Submission
from app.schemas.vote import (
    VoteCreate, VoteRecord, VoteStats, QueueItem, QueuePage, SuperVoteBalanceOut, AdRewardOut,
)
from app.services import boosts, super_votes
from app.services.context import VotingContext
from app.services.retry import with_retry
from app.services.vote_queue import next_batch, next_entry
from app.services.voting import cast_vote, vote_stats
import structlog

log = structlog.get_logger()

router = APIRouter(prefix="/voting", tags=["voting"])

def voting_context(request: Request, user) -> VotingContext:
    if user.is_banned:
        raise HTTPException(status_code=403, detail="Account is suspended")
    return VotingContext(voter_id=user.id, request_id=getattr(request.state, "request_id", None))

def _item(entry: VoteQueueEntry, s: Submission, live: dict) -> QueueItem:
    return QueueItem(
        submission_id=s.id,
        position=entry.position,
        user_id=s.user_id,
        vote_count=s.vote_count,
        is_boosted=live.get(s.id, 0.0) > 0,
    )

def _balance(b: SuperVoteBalance) -> SuperVoteBalanceOut:
    return SuperVoteBalanceOut(
        day=b.day,
        daily_allowance=b.daily_allowance,
        bonus_earned=b.bonus_earned,
        used=b.used,
        remaining=b.remaining,
    )

@router.get("/queue", response_model=QueuePage)
async def get_queue(
    request: Request,
    challenge_id: UUID = Query(...),
    limit: int = Query(default=settings.queue_default_size, ge=1, le=settings.queue_max_size),
    session: AsyncSession = Depends(get_session),
    user=Depends(get_current_user),
):
    ctx = voting_context(request, user)
    rows = await with_retry(lambda: next_batch(session, ctx, challenge_id, limit), op="vote_queue")
    live = await boosts.live_boosts(session, [s.id for _, s in rows], ctx.now())
    return QueuePage(challenge_id=challenge_id, items=[_item(e, s, live) for e, s in rows], exhausted=not rows)

@router.get("/queue/next", response_model=QueueItem)
async def get_next(
    request: Request,
    challenge_id: UUID = Query(...),
    session: AsyncSession = Depends(get_session),
    user=Depends(get_current_user),
):
    ctx = voting_context(request, user)
    entry, s = await with_retry(lambda: next_entry(session, ctx, challenge_id), op="vote_queue_next")
    return _item(entry, s, await boosts.live_boosts(session, [s.id], ctx.now()))

@router.post("", response_model=VoteRecord, status_code=status.HTTP_201_CREATED)
async def post_vote(
    payload: VoteCreate,
    request: Request,
    session: AsyncSession = Depends(get_session),
    user=Depends(get_current_user),
):
    ctx = voting_context(request, user)
    try:
        return await asyncio.wait_for(
            with_retry(
                lambda: cast_vote(
                    session, ctx, payload.submission_id, payload.value,
                    is_super=payload.is_super, source=payload.source,
                ),
                op="cast_vote",
            ),
            timeout=settings.vote_timeout_seconds,
        )
    except asyncio.TimeoutError:
        log.warning("vote_timeout", submission_id=str(payload.submission_id), **ctx.log_fields())
        raise HTTPException(status_code=503, detail="Vote could not be recorded in time, please retry")

@router.get("/stats/{submission_id}", response_model=VoteStats)
async def get_stats(
    submission_id: UUID,
    session: AsyncSession = Depends(get_session),
    user=Depends(get_current_user),
):
    stats = await vote_stats(session, submission_id)
    if stats is None:
        raise HTTPException(status_code=404, detail="Submission not found")
    return stats

@router.get("/super-votes/balance", response_model=SuperVoteBalanceOut)
async def get_super_vote_balance(
    request: Request,
    session: AsyncSession = Depends(get_session),
    user=Depends(get_current_user),
):
    ctx = voting_context(request, user)
    return _balance(await super_votes.get_balance(session, user.id, ctx.now()))

@router.post("/super-votes/ad-reward", response_model=AdRewardOut)
async def post_ad_reward(
    request: Request,
    session: AsyncSession = Depends(get_session),
    user=Depends(get_current_user),
):
    """Called after the client reports a completed rewarded ad."""
    ctx = voting_context(request, user)
    bal, granted = await super_votes.grant_ad_reward(session, user.id, ctx.now())
    return AdRewardOut(granted=granted, balance=_balance(bal))
