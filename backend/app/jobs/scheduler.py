from __future__ import annotations
import asyncio
from typing import Awaitable, Callable
import structlog

from app.config import settings
from app.db import SessionLocal, utcnow
from app.jobs.leaderboard import default_snapshot_date
from app.services.boosts import expire_boosts
from app.services.leaderboard import snapshot_all

log = structlog.get_logger()


class PeriodicScheduler:
    """
    In-process timers for deployments without an rq worker.
    Each task runs its job, then sleeps `interval` seconds; a failing run is
    logged and the timer keeps going. stop() cancels and awaits every task.
    """

    def __init__(self):
        self._jobs: list[tuple[str, float, Callable[[], Awaitable]]] = []
        self._tasks: list[asyncio.Task] = []

    def add(self, name: str, interval: float, fn: Callable[[], Awaitable]) -> None:
        self._jobs.append((name, interval, fn))

    async def _loop(self, name: str, interval: float, fn: Callable[[], Awaitable]) -> None:
        while True:
            try:
                await fn()
            except asyncio.CancelledError:
                raise
            except Exception:
                log.exception("scheduled_job_failed", job=name)
            await asyncio.sleep(interval)

    def start(self) -> None:
        for name, interval, fn in self._jobs:
            self._tasks.append(asyncio.create_task(self._loop(name, interval, fn), name=f"scheduler:{name}"))
        log.info("scheduler_started", jobs=[j[0] for j in self._jobs])

    async def stop(self) -> None:
        for t in self._tasks:
            t.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        log.info("scheduler_stopped")

    @property
    def running(self) -> bool:
        return any(not t.done() for t in self._tasks)


async def _snapshot_yesterday():
    await snapshot_all(SessionLocal, default_snapshot_date())


async def _expire_boosts():
    async with SessionLocal() as session:
        await expire_boosts(session, utcnow())


def default_scheduler() -> PeriodicScheduler:
    s = PeriodicScheduler()
    s.add("leaderboard_snapshots", settings.snapshot_interval_seconds, _snapshot_yesterday)
    s.add("boost_expiry", settings.boost_expiry_interval_seconds, _expire_boosts)
    return s
