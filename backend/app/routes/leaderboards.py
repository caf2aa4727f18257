from __future__ import annotations
from datetime import date
from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
from uuid import UUID
from rq import Queue
from redis import Redis
from redis.exceptions import RedisError
import structlog

from app.config import settings
from app.db import get_session
from app.auth_deps import get_current_user
from app.jobs.leaderboard import snapshot_leaderboards, default_snapshot_date
from app.models.challenge import Challenge
from app.models.leaderboard import PERIODS
from app.schemas.leaderboard import (
    Period, RankedSubmission, LiveLeaderboard, SubmissionRank, SnapshotRow, SnapshotPage,
    SnapshotRequest, SnapshotResultOut, SnapshotEnqueued, CreatorRow, TopCreators,
)
from app.services.leaderboard import (
    snapshot, snapshot_page, current_rankings, current_rank, latest_snapshot_date, top_creators,
)

log = structlog.get_logger()

router = APIRouter(prefix="/leaderboards", tags=["leaderboards"])

# RQ queue (lazy single instance)
_redis = Redis.from_url(settings.redis_url)
q = Queue("default", connection=_redis)

async def _challenge_or_404(session: AsyncSession, challenge_id: UUID) -> Challenge:
    ch = await session.get(Challenge, challenge_id)
    if not ch:
        raise HTTPException(status_code=404, detail="Challenge not found")
    return ch

# registered before /{challenge_id} so "creators" is not parsed as an id
@router.get("/creators", response_model=TopCreators)
async def get_top_creators(
    period: Period = Query(default="all_time"),
    limit: int = Query(default=20, ge=1, le=100),
    session: AsyncSession = Depends(get_session),
    user=Depends(get_current_user),
):
    rows = await top_creators(session, period, limit)
    return TopCreators(
        period=period,
        items=[
            CreatorRow(
                rank=r.rank,
                user_id=r.user_id,
                username=r.username,
                aggregate_score=r.aggregate_score,
                submission_count=r.submission_count,
            )
            for r in rows
        ],
    )

@router.get("/{challenge_id}", response_model=LiveLeaderboard)
async def live_leaderboard(
    challenge_id: UUID,
    session: AsyncSession = Depends(get_session),
    user=Depends(get_current_user),
    limit: int = Query(default=50, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
):
    await _challenge_or_404(session, challenge_id)
    rows = await current_rankings(session, challenge_id, limit=limit, offset=offset)
    items = [
        RankedSubmission(
            rank=rank,
            submission_id=s.id,
            user_id=s.user_id,
            wilson_score=s.wilson_score,
            vote_count=s.vote_count,
            super_vote_count=s.super_vote_count,
            created_at=s.created_at,
        )
        for rank, s in rows
    ]
    return LiveLeaderboard(challenge_id=challenge_id, items=items, limit=limit, offset=offset)

@router.get("/{challenge_id}/rank/{submission_id}", response_model=SubmissionRank)
async def submission_rank(
    challenge_id: UUID,
    submission_id: UUID,
    session: AsyncSession = Depends(get_session),
    user=Depends(get_current_user),
):
    found = await current_rank(session, submission_id)
    if found is None or found[1].challenge_id != challenge_id:
        raise HTTPException(status_code=404, detail="Submission is not ranked in this challenge")
    rank, s, total = found
    return SubmissionRank(challenge_id=challenge_id, submission_id=s.id, rank=rank, wilson_score=s.wilson_score, total=total)

@router.get("/{challenge_id}/snapshots", response_model=SnapshotPage)
async def get_snapshot(
    challenge_id: UUID,
    period: Period = Query(default="daily"),
    snapshot_date: date | None = Query(default=None, alias="date"),
    after_rank: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=200),
    session: AsyncSession = Depends(get_session),
    user=Depends(get_current_user),
):
    await _challenge_or_404(session, challenge_id)
    day = snapshot_date or await latest_snapshot_date(session, challenge_id, period)
    if day is None:
        raise HTTPException(status_code=404, detail="No snapshot for this period yet")
    rows = await snapshot_page(session, challenge_id, period, day, after_rank=after_rank, limit=limit)
    items = [
        SnapshotRow(
            rank=r.rank,
            submission_id=r.submission_id,
            user_id=r.user_id,
            score=r.score,
            vote_count=r.vote_count,
            super_vote_count=r.super_vote_count,
        )
        for r in rows
    ]
    nxt = items[-1].rank if len(items) == limit else None
    return SnapshotPage(challenge_id=challenge_id, period=period, snapshot_date=day, items=items, next_after_rank=nxt)

@router.post("/{challenge_id}/snapshots", status_code=status.HTTP_202_ACCEPTED)
async def trigger_snapshot(
    challenge_id: UUID,
    payload: SnapshotRequest | None = None,
    inline: int = Query(default=0, ge=0, le=1),
    session: AsyncSession = Depends(get_session),
    user=Depends(get_current_user),
):
    """Admin: freeze rankings now. Runs in-request with ?inline=1, otherwise on the rq worker."""
    if not user.is_admin:
        raise HTTPException(status_code=403, detail="Admin only")
    await _challenge_or_404(session, challenge_id)
    payload = payload or SnapshotRequest()
    as_of = payload.as_of or default_snapshot_date()
    periods = [payload.period] if payload.period else list(PERIODS)

    if inline:
        out = []
        for period in periods:
            res = await snapshot(session, challenge_id, period, as_of)
            out.append(SnapshotResultOut(
                challenge_id=res.challenge_id,
                period=res.period,
                snapshot_date=res.snapshot_date,
                row_count=res.row_count,
                run_token=res.run_token,
            ))
        return out

    try:
        job = q.enqueue(snapshot_leaderboards, str(challenge_id), periods, as_of.isoformat(), job_timeout=600)
    except RedisError as e:
        log.error("snapshot_enqueue_failed", challenge_id=str(challenge_id), error=str(e))
        raise HTTPException(status_code=503, detail="Job queue unavailable")
    return SnapshotEnqueued(job_id=job.id, periods=periods, as_of=as_of)
