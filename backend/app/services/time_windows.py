from __future__ import annotations
from datetime import date, datetime, time, timedelta, timezone as dt_tz
from zoneinfo import ZoneInfo

from app.config import settings

PERIOD_SPANS: dict[str, timedelta | None] = {
    "daily": timedelta(hours=24),
    "weekly": timedelta(days=7),
    "all_time": None,
}


def local_midnight_utc(d: date, tz_name: str) -> datetime:
    """
    UTC instant of 00:00 local time on `d` in `tz_name`.

    Midnight never falls inside a DST gap in the zones we serve; if it did,
    zoneinfo resolves the nominal wall time with fold=0.

    Examples:
        >>> local_midnight_utc(date(2025, 1, 10), "America/New_York").isoformat()
        '2025-01-10T05:00:00+00:00'
    """
    local = datetime.combine(d, time(0, 0), tzinfo=ZoneInfo(tz_name))
    return local.astimezone(dt_tz.utc)


def period_window(period: str, as_of: date, tz_name: str | None = None) -> tuple[datetime | None, datetime]:
    """
    Vote-timestamp window feeding a leaderboard snapshot for `as_of`.

    The window ends at the start of the day after `as_of` (leaderboard timezone)
    and reaches back 24h for daily, 7 days for weekly, and to the beginning of
    time for all_time (start is None).

    Args:
        period: "daily" | "weekly" | "all_time"
        as_of: snapshot date
        tz_name: IANA timezone; defaults to settings.leaderboard_timezone

    Returns:
        (start_utc or None, end_utc), half-open [start, end)
    """
    if period not in PERIOD_SPANS:
        raise ValueError(f"unknown leaderboard period: {period}")
    end = local_midnight_utc(as_of + timedelta(days=1), tz_name or settings.leaderboard_timezone)
    span = PERIOD_SPANS[period]
    return (end - span if span is not None else None), end


def utc_day_bounds(now: datetime) -> tuple[datetime, datetime]:
    now_utc = now.astimezone(dt_tz.utc) if now.tzinfo else now.replace(tzinfo=dt_tz.utc)
    start = datetime(now_utc.year, now_utc.month, now_utc.day, tzinfo=dt_tz.utc)
    return start, start + timedelta(days=1)


def utc_day(now: datetime) -> date:
    return utc_day_bounds(now)[0].date()


def voting_window_open(status: str, starts_at: datetime, ends_at: datetime, voting_ends_at: datetime | None, now: datetime) -> bool:
    """Votes are accepted while the challenge is active/voting and inside [starts_at, voting end)."""
    if status not in ("active", "voting"):
        return False
    closes = voting_ends_at or ends_at
    return starts_at <= now < closes
