from __future__ import annotations
import uuid
from datetime import datetime, timedelta
from uuid import UUID
from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from app.config import settings, BoostTierConfig
from app.db import advisory_xact_lock
from app.errors import InvalidBoostTier, SubmissionNotVotable, BoostLimitReached
from app.models.boost import SubmissionBoost
from app.models.challenge import Challenge
from app.models.submission import Submission
from app.services.coins import CoinLedger, default_coin_ledger
from app.services.context import VotingContext

log = structlog.get_logger()


def list_tiers() -> list[BoostTierConfig]:
    return sorted(settings.boost_tiers.values(), key=lambda t: t.cost)


async def is_first_boost(session: AsyncSession, user_id: UUID) -> bool:
    n = await session.scalar(select(func.count(SubmissionBoost.id)).where(SubmissionBoost.user_id == user_id))
    return (n or 0) == 0


async def effective_boost(session: AsyncSession, submission_id: UUID, now: datetime) -> float:
    """Raw sum of live boosts; anything at or past expires_at contributes nothing."""
    total = await session.scalar(
        select(func.coalesce(func.sum(SubmissionBoost.boost_value), 0.0)).where(
            SubmissionBoost.submission_id == submission_id,
            SubmissionBoost.started_at <= now,
            SubmissionBoost.expires_at > now,
        )
    )
    return float(total or 0.0)


def live_boost_total(now: datetime):
    """Correlated sum of live boosts for the enclosing Submission query (uncapped)."""
    return (
        select(func.coalesce(func.sum(SubmissionBoost.boost_value), 0.0))
        .where(
            SubmissionBoost.submission_id == Submission.id,
            SubmissionBoost.started_at <= now,
            SubmissionBoost.expires_at > now,
        )
        .correlate(Submission)
        .scalar_subquery()
    )


async def live_boosts(session: AsyncSession, submission_ids: list[UUID], now: datetime) -> dict[UUID, float]:
    """Capped live boost per submission; ids without a live boost are absent."""
    if not submission_ids:
        return {}
    rows = (await session.execute(
        select(SubmissionBoost.submission_id, func.sum(SubmissionBoost.boost_value))
        .where(
            SubmissionBoost.submission_id.in_(submission_ids),
            SubmissionBoost.started_at <= now,
            SubmissionBoost.expires_at > now,
        )
        .group_by(SubmissionBoost.submission_id)
    )).all()
    return {sid: min(float(total), settings.max_boost_score) for sid, total in rows if total}


async def refresh_boost_score(session: AsyncSession, submission_id: UUID, now: datetime) -> float:
    """Store min(effective boost, cap) on the submission. Caller commits."""
    score = min(await effective_boost(session, submission_id, now), settings.max_boost_score)
    await session.execute(
        update(Submission)
        .where(Submission.id == submission_id)
        .values(boost_score=score, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    return score


async def purchase_boost(
    session: AsyncSession,
    ctx: VotingContext,
    submission_id: UUID,
    tier: str,
    coins: CoinLedger = default_coin_ledger,
) -> SubmissionBoost:
    """
    Buy a time-limited visibility boost.

    The coin debit, boost row and recomputed boost_score commit together.
    A user's very first boost is free when it is the small tier.
    """
    cfg = settings.boost_tiers.get(tier)
    if cfg is None:
        raise InvalidBoostTier(f"Unknown boost tier: {tier}")

    now = ctx.now()
    try:
        sub = await session.get(Submission, submission_id)
        if not sub or not sub.is_visible:
            raise SubmissionNotVotable("Submission cannot be boosted")
        ch = await session.get(Challenge, sub.challenge_id)
        if not ch or ch.is_frozen:
            raise SubmissionNotVotable("Challenge is closed")

        # Serialize purchases per submission so the cap check holds
        await advisory_xact_lock(session, f"boost:{sub.id}")
        current = min(await effective_boost(session, sub.id, now), settings.max_boost_score)
        if current >= settings.max_boost_score:
            raise BoostLimitReached(f"Submission already has the maximum boost of {settings.max_boost_score}")

        free = tier == "small" and await is_first_boost(session, ctx.voter_id)
        boost_id = uuid.uuid4()
        if not free:
            await coins.debit(
                session,
                user_id=ctx.voter_id,
                coins=cfg.cost,
                external_id=f"boost:{boost_id}",
                note=f"{tier} boost on submission {sub.id}",
            )

        boost = SubmissionBoost(
            id=boost_id,
            submission_id=sub.id,
            user_id=ctx.voter_id,
            tier=tier,
            coin_amount=0 if free else cfg.cost,
            boost_value=cfg.boost_value,
            started_at=now,
            expires_at=now + timedelta(hours=cfg.duration_hours),
        )
        session.add(boost)
        await session.flush()
        score = await refresh_boost_score(session, sub.id, now)
        await session.commit()
    except Exception:
        await session.rollback()
        raise

    log.info(
        "boost_purchased",
        submission_id=str(submission_id),
        tier=tier,
        cost=boost.coin_amount,
        boost_value=cfg.boost_value,
        boost_score=score,
        first_boost_free=free,
        **ctx.log_fields(),
    )
    return boost


async def active_boosts(session: AsyncSession, submission_id: UUID, now: datetime) -> list[SubmissionBoost]:
    return (await session.execute(
        select(SubmissionBoost)
        .where(SubmissionBoost.submission_id == submission_id, SubmissionBoost.expires_at > now)
        .order_by(SubmissionBoost.started_at.desc())
    )).scalars().all()


async def boost_history(session: AsyncSession, user_id: UUID, *, limit: int = 20, offset: int = 0) -> tuple[list[SubmissionBoost], int]:
    total = await session.scalar(select(func.count(SubmissionBoost.id)).where(SubmissionBoost.user_id == user_id))
    rows = (await session.execute(
        select(SubmissionBoost)
        .where(SubmissionBoost.user_id == user_id)
        .order_by(SubmissionBoost.started_at.desc(), SubmissionBoost.id)
        .offset(offset)
        .limit(limit)
    )).scalars().all()
    return rows, int(total or 0)


async def expire_boosts(session: AsyncSession, now: datetime) -> int:
    """
    Recompute stored boost_score for submissions that still carry one.
    Covers every lapsed boost; returns how many submissions changed.
    """
    ids = (await session.execute(
        select(Submission.id, Submission.boost_score).where(Submission.boost_score > 0)
    )).all()
    changed = 0
    for sid, old in ids:
        new = await refresh_boost_score(session, sid, now)
        if new != old:
            changed += 1
    await session.commit()
    if changed:
        log.info("boosts_expired", submissions=changed)
    return changed
