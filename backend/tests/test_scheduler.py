from __future__ import annotations
import asyncio
from datetime import datetime, timedelta, timezone
import pytest

from app.jobs.leaderboard import default_snapshot_date
from app.jobs.scheduler import PeriodicScheduler, default_scheduler


@pytest.mark.asyncio
async def test_failing_job_keeps_its_timer():
    calls = []

    async def flaky():
        calls.append(1)
        if len(calls) == 1:
            raise RuntimeError("first run fails")

    s = PeriodicScheduler()
    s.add("flaky", 0.01, flaky)
    s.start()
    assert s.running
    for _ in range(200):
        if len(calls) >= 3:
            break
        await asyncio.sleep(0.01)
    await s.stop()
    assert len(calls) >= 3
    assert not s.running


def test_default_scheduler_jobs():
    s = default_scheduler()
    assert [name for name, _, _ in s._jobs] == ["leaderboard_snapshots", "boost_expiry"]
    assert not s.running


def test_default_snapshot_date_is_yesterday_utc():
    assert default_snapshot_date() == (datetime.now(timezone.utc) - timedelta(days=1)).date()
