from __future__ import annotations
from datetime import date, datetime, timedelta, timezone
from app.services.time_windows import (
    local_midnight_utc, period_window, utc_day_bounds, utc_day, voting_window_open,
)
import pytest


def test_local_midnight_est_and_pst_differ_in_utc():
    """Same wall-clock midnight maps to different UTC instants per timezone"""
    d = date(2025, 1, 10)  # Standard time
    ny = local_midnight_utc(d, "America/New_York")
    la = local_midnight_utc(d, "America/Los_Angeles")
    assert ny == datetime(2025, 1, 10, 5, 0, tzinfo=timezone.utc)
    assert la == datetime(2025, 1, 10, 8, 0, tzinfo=timezone.utc)
    assert ny.tzinfo == timezone.utc


def test_local_midnight_during_dst():
    # EDT = UTC-4
    assert local_midnight_utc(date(2025, 7, 4), "America/New_York").hour == 4


def test_daily_window_is_trailing_24h_ending_next_midnight():
    start, end = period_window("daily", date(2025, 3, 14), "UTC")
    assert end == datetime(2025, 3, 15, tzinfo=timezone.utc)
    assert end - start == timedelta(hours=24)


def test_weekly_window_is_trailing_7_days():
    start, end = period_window("weekly", date(2025, 3, 14), "UTC")
    assert end == datetime(2025, 3, 15, tzinfo=timezone.utc)
    assert start == datetime(2025, 3, 8, tzinfo=timezone.utc)


def test_all_time_window_is_open_ended():
    start, end = period_window("all_time", date(2025, 3, 14), "UTC")
    assert start is None
    assert end == datetime(2025, 3, 15, tzinfo=timezone.utc)


def test_window_follows_leaderboard_timezone():
    _, end = period_window("daily", date(2025, 1, 10), "America/New_York")
    assert end == datetime(2025, 1, 11, 5, 0, tzinfo=timezone.utc)


def test_unknown_period_rejected():
    with pytest.raises(ValueError):
        period_window("monthly", date(2025, 1, 1))


def test_utc_day_bounds_normalises_offsets():
    late_ny = datetime(2025, 1, 10, 22, 0, tzinfo=timezone(timedelta(hours=-5)))  # 03:00Z on the 11th
    start, end = utc_day_bounds(late_ny)
    assert start == datetime(2025, 1, 11, tzinfo=timezone.utc)
    assert end - start == timedelta(days=1)
    assert utc_day(late_ny) == date(2025, 1, 11)


def test_voting_window():
    now = datetime(2025, 6, 1, 12, tzinfo=timezone.utc)
    starts, ends = now - timedelta(days=1), now + timedelta(days=1)
    assert voting_window_open("active", starts, ends, None, now)
    assert voting_window_open("voting", starts, now - timedelta(hours=1), now + timedelta(hours=1), now)
    assert not voting_window_open("completed", starts, ends, None, now)
    assert not voting_window_open("draft", starts, ends, None, now)
    assert not voting_window_open("active", now + timedelta(hours=1), ends, None, now)
    # end is exclusive
    assert not voting_window_open("active", starts, now, None, now)
