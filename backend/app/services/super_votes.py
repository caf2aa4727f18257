from __future__ import annotations
import uuid
from datetime import datetime
from uuid import UUID
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from app.config import settings
from app.db import dialect_insert
from app.errors import InsufficientSuperVotes
from app.models.user import User
from app.models.vote import SuperVoteBalance
from app.services.time_windows import utc_day

log = structlog.get_logger()

# ---------- helpers (run inside the caller's transaction) ----------

def daily_allowance_for(tier: str) -> int:
    """Pro: free daily super votes. Free: none, only ad-earned ones."""
    return settings.pro_daily_super_votes if tier == "pro" else 0


async def ensure_today_row(session: AsyncSession, user_id: UUID, now: datetime) -> SuperVoteBalance:
    """Create today's allowance row if missing (insert-or-ignore) and return it fresh."""
    day = utc_day(now)
    tier = await session.scalar(select(User.subscription_tier).where(User.id == user_id)) or "free"
    stmt = dialect_insert(session, SuperVoteBalance.__table__).values(
        id=uuid.uuid4(),
        user_id=user_id,
        day=day,
        daily_allowance=daily_allowance_for(tier),
        bonus_earned=0,
        used=0,
    ).on_conflict_do_nothing(index_elements=["user_id", "day"])
    await session.execute(stmt)
    return await session.scalar(
        select(SuperVoteBalance)
        .where(SuperVoteBalance.user_id == user_id, SuperVoteBalance.day == day)
        .execution_options(populate_existing=True)
    )


async def consume(session: AsyncSession, user_id: UUID, now: datetime) -> None:
    """
    Use one super vote. Conditional decrement, so two concurrent super votes
    can never both spend the last unit. Raises InsufficientSuperVotes.
    """
    await ensure_today_row(session, user_id, now)
    res = await session.execute(
        update(SuperVoteBalance)
        .where(
            SuperVoteBalance.user_id == user_id,
            SuperVoteBalance.day == utc_day(now),
            SuperVoteBalance.used < SuperVoteBalance.daily_allowance + SuperVoteBalance.bonus_earned,
        )
        .values(used=SuperVoteBalance.used + 1)
        .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
        raise InsufficientSuperVotes("No super votes remaining today")

# ---------- public operations ----------

async def get_balance(session: AsyncSession, user_id: UUID, now: datetime) -> SuperVoteBalance:
    row = await ensure_today_row(session, user_id, now)
    await session.commit()
    return row


async def grant_ad_reward(session: AsyncSession, user_id: UUID, now: datetime) -> tuple[SuperVoteBalance, bool]:
    """
    Credit one super vote for a completed rewarded ad.
    Free users are capped at `free_max_ad_super_votes` ad rewards per day.
    Returns (balance, granted).
    """
    tier = await session.scalar(select(User.subscription_tier).where(User.id == user_id)) or "free"
    await ensure_today_row(session, user_id, now)
    cond = [SuperVoteBalance.user_id == user_id, SuperVoteBalance.day == utc_day(now)]
    if tier != "pro":
        cond.append(SuperVoteBalance.bonus_earned < settings.free_max_ad_super_votes)
    res = await session.execute(
        update(SuperVoteBalance)
        .where(*cond)
        .values(bonus_earned=SuperVoteBalance.bonus_earned + 1)
        .execution_options(synchronize_session=False)
    )
    granted = res.rowcount == 1
    row = await ensure_today_row(session, user_id, now)
    await session.commit()
    log.info("super_vote_ad_reward", user_id=str(user_id), granted=granted, remaining=row.remaining)
    return row, granted
