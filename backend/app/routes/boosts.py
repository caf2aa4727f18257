from __future__ import annotations
from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession
from uuid import UUID

from app.config import settings
from app.db import get_session
from app.auth_deps import get_current_user
from app.models.boost import SubmissionBoost
from app.models.submission import Submission
from app.routes.voting import voting_context
from app.schemas.boost import BoostCreate, BoostPublic, BoostTiers, BoostTierPublic, SubmissionBoosts, BoostHistory
from app.services import boosts
from app.services.retry import with_retry

router = APIRouter(prefix="/boosts", tags=["boosts"])

def _pub(b: SubmissionBoost) -> BoostPublic:
    return BoostPublic(
        id=b.id,
        submission_id=b.submission_id,
        user_id=b.user_id,
        tier=b.tier,
        coin_amount=b.coin_amount,
        boost_value=b.boost_value,
        started_at=b.started_at,
        expires_at=b.expires_at,
    )

@router.get("/tiers", response_model=BoostTiers)
async def get_tiers(
    session: AsyncSession = Depends(get_session),
    user=Depends(get_current_user),
):
    return BoostTiers(
        tiers=[BoostTierPublic(**t.model_dump()) for t in boosts.list_tiers()],
        first_boost_free=await boosts.is_first_boost(session, user.id),
        max_boost_score=settings.max_boost_score,
    )

@router.post("", response_model=BoostPublic, status_code=status.HTTP_201_CREATED)
async def post_boost(
    payload: BoostCreate,
    request: Request,
    session: AsyncSession = Depends(get_session),
    user=Depends(get_current_user),
):
    ctx = voting_context(request, user)
    b = await with_retry(
        lambda: boosts.purchase_boost(session, ctx, payload.submission_id, payload.tier),
        op="purchase_boost",
    )
    return _pub(b)

@router.get("/submission/{submission_id}", response_model=SubmissionBoosts)
async def get_submission_boosts(
    submission_id: UUID,
    request: Request,
    session: AsyncSession = Depends(get_session),
    user=Depends(get_current_user),
):
    s = await session.get(Submission, submission_id)
    if not s:
        raise HTTPException(status_code=404, detail="Submission not found")
    now = voting_context(request, user).now()
    rows = await boosts.active_boosts(session, submission_id, now)
    score = min(await boosts.effective_boost(session, submission_id, now), settings.max_boost_score)
    return SubmissionBoosts(submission_id=submission_id, boost_score=score, boosts=[_pub(b) for b in rows])

@router.get("/history", response_model=BoostHistory)
async def get_history(
    session: AsyncSession = Depends(get_session),
    user=Depends(get_current_user),
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
):
    rows, total = await boosts.boost_history(session, user.id, limit=limit, offset=offset)
    return BoostHistory(items=[_pub(b) for b in rows], total=total, limit=limit, offset=offset)
