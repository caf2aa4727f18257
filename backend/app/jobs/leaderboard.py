from __future__ import annotations
import asyncio
from datetime import date, timedelta
from uuid import UUID
import structlog

from app.db import SessionLocal, utcnow
from app.models.leaderboard import PERIODS
from app.services.boosts import expire_boosts
from app.services.leaderboard import snapshot, snapshot_all

log = structlog.get_logger()


def default_snapshot_date() -> date:
    """Scheduled runs freeze the day that just ended."""
    return utcnow().date() - timedelta(days=1)


async def _snapshot(challenge_id: str | None, periods: list[str], as_of: date) -> int:
    if challenge_id is None:
        return len(await snapshot_all(SessionLocal, as_of, periods))
    done = 0
    for period in periods:
        async with SessionLocal() as session:
            await snapshot(session, UUID(challenge_id), period, as_of)
            done += 1
    return done


async def _expire() -> int:
    async with SessionLocal() as session:
        return await expire_boosts(session, utcnow())


def snapshot_leaderboards(challenge_id: str | None = None, periods: list[str] | None = None, as_of: str | None = None) -> int:
    # RQ entry point (sync); run the async coroutine
    day = date.fromisoformat(as_of) if as_of else default_snapshot_date()
    n = asyncio.run(_snapshot(challenge_id, list(periods or PERIODS), day))
    log.info("snapshot_job_done", challenge_id=challenge_id, snapshot_date=day.isoformat(), snapshots=n)
    return n


def expire_boosts_job() -> int:
    # RQ entry point (sync)
    return asyncio.run(_expire())
