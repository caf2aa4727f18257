from __future__ import annotations
import asyncio
import uuid
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Iterable
from uuid import UUID
from zoneinfo import ZoneInfo
from sqlalchemy import select, update, delete, func, case, or_, and_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
import structlog

from app.config import settings
from app.db import begin_snapshot_read, utcnow
from app.errors import SnapshotConflict
from app.models.challenge import Challenge, VOTABLE_STATUSES
from app.models.leaderboard import LeaderboardSnapshot, SnapshotRun, PERIODS
from app.models.submission import Submission
from app.models.user import User
from app.models.vote import Vote
from app.services.scoring import wilson_score, rank_key, assign_ranks
from app.services.time_windows import period_window

log = structlog.get_logger()


@dataclass(frozen=True)
class SnapshotResult:
    challenge_id: UUID
    period: str
    snapshot_date: date
    row_count: int
    run_token: UUID


@dataclass(frozen=True)
class Candidate:
    id: UUID
    user_id: UUID
    created_at: datetime
    upvotes: int
    downvotes: int
    super_votes: int

    @property
    def vote_count(self) -> int:
        return self.upvotes + self.downvotes

    @property
    def score(self) -> float:
        return wilson_score(self.upvotes, self.downvotes, self.super_votes)


_ROW_NAMESPACE = uuid.UUID("5b0e4c9a-3f1d-4e8a-9c2b-7d6f1a0e8b34")


def snapshot_row_id(challenge_id: UUID, period: str, as_of: date, submission_id: UUID) -> UUID:
    return uuid.uuid5(_ROW_NAMESPACE, f"{challenge_id}:{period}:{as_of.isoformat()}:{submission_id}")


def _visible():
    return and_(
        Submission.moderation_status == "approved",
        Submission.is_hidden.is_(False),
        Submission.deleted_at.is_(None),
    )


def _run_key(challenge_id: UUID, period: str, as_of: date):
    return and_(
        SnapshotRun.challenge_id == challenge_id,
        SnapshotRun.period == period,
        SnapshotRun.snapshot_date == as_of,
    )

# ---------- claim ----------

async def _claim(session: AsyncSession, challenge_id: UUID, period: str, as_of: date, now: datetime) -> UUID:
    """Take the run slot for this key or raise SnapshotConflict if a live run holds it."""
    token = uuid.uuid4()
    stale_before = now - timedelta(seconds=settings.snapshot_stale_after_seconds)
    try:
        run = await session.scalar(
            select(SnapshotRun).where(_run_key(challenge_id, period, as_of)).execution_options(populate_existing=True)
        )
        if run is None:
            session.add(SnapshotRun(
                challenge_id=challenge_id,
                period=period,
                snapshot_date=as_of,
                status="running",
                run_token=token,
                started_at=now,
                row_count=0,
            ))
            await session.flush()
        else:
            res = await session.execute(
                update(SnapshotRun)
                .where(
                    _run_key(challenge_id, period, as_of),
                    or_(SnapshotRun.status != "running", SnapshotRun.started_at < stale_before),
                )
                .values(status="running", run_token=token, started_at=now, finished_at=None, row_count=0)
                .execution_options(synchronize_session=False)
            )
            if res.rowcount != 1:
                raise SnapshotConflict(f"A {period} snapshot for {as_of} is already running")
        await session.commit()
    except IntegrityError as e:
        await session.rollback()
        raise SnapshotConflict(f"A {period} snapshot for {as_of} is already running") from e
    except Exception:
        await session.rollback()
        raise
    return token


async def _mark_failed(session: AsyncSession, challenge_id: UUID, period: str, as_of: date, token: UUID) -> None:
    try:
        await session.execute(
            update(SnapshotRun)
            .where(_run_key(challenge_id, period, as_of), SnapshotRun.run_token == token)
            .values(status="failed", finished_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        await session.commit()
    except Exception:
        await session.rollback()
        log.exception("snapshot_mark_failed_error", challenge_id=str(challenge_id), period=period, snapshot_date=as_of.isoformat())

# ---------- tallies ----------

async def windowed_candidates(
    session: AsyncSession, challenge_id: UUID, start: datetime | None, end: datetime
) -> list[Candidate]:
    """Visible submissions created before `end` with vote tallies over [start, end)."""
    window = [Vote.challenge_id == challenge_id, Vote.created_at < end]
    if start is not None:
        window.append(Vote.created_at >= start)
    tallies = (
        select(
            Vote.submission_id.label("sid"),
            func.sum(case((Vote.value == 1, 1), else_=0)).label("up"),
            func.sum(case((Vote.value == -1, 1), else_=0)).label("down"),
            func.sum(case((Vote.is_super.is_(True), 1), else_=0)).label("sup"),
        )
        .where(*window)
        .group_by(Vote.submission_id)
        .subquery()
    )
    rows = (await session.execute(
        select(
            Submission.id,
            Submission.user_id,
            Submission.created_at,
            func.coalesce(tallies.c.up, 0),
            func.coalesce(tallies.c.down, 0),
            func.coalesce(tallies.c.sup, 0),
        )
        .outerjoin(tallies, tallies.c.sid == Submission.id)
        .where(Submission.challenge_id == challenge_id, _visible(), Submission.created_at < end)
    )).all()
    return [Candidate(r[0], r[1], r[2], int(r[3]), int(r[4]), int(r[5])) for r in rows]


def rank_candidates(cands: Iterable[Candidate]) -> list[tuple[int, Candidate]]:
    ordered = sorted(cands, key=lambda c: rank_key(c.score, c.vote_count, c.created_at, c.id))
    return assign_ranks(ordered)

# ---------- snapshot ----------

async def snapshot(
    session: AsyncSession,
    challenge_id: UUID,
    period: str,
    as_of: date,
    now: datetime | None = None,
) -> SnapshotResult:
    """
    Freeze the ranking of one challenge for (period, as_of).

    The previous generation for the key is replaced in the same transaction,
    so readers never see a partial set. Row ids and created_at derive from the
    key and the window, so a re-run over the same votes stores identical rows.
    """
    start, end = period_window(period, as_of)
    now = now or utcnow()
    token = await _claim(session, challenge_id, period, as_of, now)
    log.info("snapshot_started", challenge_id=str(challenge_id), period=period, snapshot_date=as_of.isoformat())

    try:
        await begin_snapshot_read(session)
        ranked = rank_candidates(await windowed_candidates(session, challenge_id, start, end))

        await session.execute(
            delete(LeaderboardSnapshot).where(
                LeaderboardSnapshot.challenge_id == challenge_id,
                LeaderboardSnapshot.period == period,
                LeaderboardSnapshot.snapshot_date == as_of,
            )
        )
        session.add_all([
            LeaderboardSnapshot(
                id=snapshot_row_id(challenge_id, period, as_of, c.id),
                challenge_id=challenge_id,
                period=period,
                snapshot_date=as_of,
                submission_id=c.id,
                user_id=c.user_id,
                rank=rank,
                score=c.score,
                vote_count=c.vote_count,
                super_vote_count=c.super_votes,
                created_at=end,
            )
            for rank, c in ranked
        ])
        res = await session.execute(
            update(SnapshotRun)
            .where(_run_key(challenge_id, period, as_of), SnapshotRun.run_token == token)
            .values(status="completed", finished_at=utcnow(), row_count=len(ranked))
            .execution_options(synchronize_session=False)
        )
        if res.rowcount != 1:
            # our claim went stale and another run took over
            raise SnapshotConflict(f"Lost the {period} snapshot claim for {as_of}")
        await session.commit()
    except (Exception, asyncio.CancelledError):
        await session.rollback()
        await _mark_failed(session, challenge_id, period, as_of, token)
        log.error("snapshot_failed", challenge_id=str(challenge_id), period=period, snapshot_date=as_of.isoformat())
        raise

    log.info(
        "snapshot_completed",
        challenge_id=str(challenge_id),
        period=period,
        snapshot_date=as_of.isoformat(),
        rows=len(ranked),
    )
    return SnapshotResult(challenge_id, period, as_of, len(ranked), token)


async def snapshot_all(
    session_factory: async_sessionmaker,
    as_of: date,
    periods: Iterable[str] = PERIODS,
) -> list[SnapshotResult]:
    """Snapshot every open challenge; one challenge failing does not stop the rest."""
    async with session_factory() as session:
        ids = (await session.execute(
            select(Challenge.id).where(Challenge.status.in_(VOTABLE_STATUSES))
        )).scalars().all()

    results: list[SnapshotResult] = []
    for cid in ids:
        for period in periods:
            async with session_factory() as session:
                try:
                    results.append(await snapshot(session, cid, period, as_of))
                except SnapshotConflict:
                    log.warning("snapshot_skipped_conflict", challenge_id=str(cid), period=period)
                except Exception:
                    log.exception("snapshot_challenge_failed", challenge_id=str(cid), period=period)
    log.info("snapshot_all_done", snapshot_date=as_of.isoformat(), challenges=len(ids), completed=len(results))
    return results

# ---------- reads ----------

async def snapshot_page(
    session: AsyncSession,
    challenge_id: UUID,
    period: str,
    snapshot_date: date,
    after_rank: int = 0,
    limit: int = 50,
) -> list[LeaderboardSnapshot]:
    return (await session.execute(
        select(LeaderboardSnapshot)
        .where(
            LeaderboardSnapshot.challenge_id == challenge_id,
            LeaderboardSnapshot.period == period,
            LeaderboardSnapshot.snapshot_date == snapshot_date,
            LeaderboardSnapshot.rank > after_rank,
        )
        .order_by(LeaderboardSnapshot.rank)
        .limit(limit)
    )).scalars().all()


async def current_rankings(session: AsyncSession, challenge_id: UUID, limit: int = 50, offset: int = 0) -> list[tuple[int, Submission]]:
    rows = (await session.execute(
        select(Submission)
        .where(Submission.challenge_id == challenge_id, _visible())
        .order_by(
            Submission.wilson_score.desc(),
            Submission.vote_count.desc(),
            Submission.created_at.asc(),
            Submission.id.asc(),
        )
        .offset(offset)
        .limit(limit)
    )).scalars().all()
    return [(offset + i + 1, s) for i, s in enumerate(rows)]


async def current_rank(session: AsyncSession, submission_id: UUID) -> tuple[int, Submission, int] | None:
    """(rank, submission, total visible) on live scores, or None if not ranked."""
    sub = await session.get(Submission, submission_id)
    if not sub or not sub.is_visible:
        return None
    ahead = or_(
        Submission.wilson_score > sub.wilson_score,
        and_(Submission.wilson_score == sub.wilson_score, Submission.vote_count > sub.vote_count),
        and_(
            Submission.wilson_score == sub.wilson_score,
            Submission.vote_count == sub.vote_count,
            Submission.created_at < sub.created_at,
        ),
        and_(
            Submission.wilson_score == sub.wilson_score,
            Submission.vote_count == sub.vote_count,
            Submission.created_at == sub.created_at,
            Submission.id < sub.id,
        ),
    )
    base = [Submission.challenge_id == sub.challenge_id, _visible()]
    n_ahead = await session.scalar(select(func.count(Submission.id)).where(*base, ahead))
    total = await session.scalar(select(func.count(Submission.id)).where(*base))
    return int(n_ahead or 0) + 1, sub, int(total or 0)


async def latest_snapshot_date(session: AsyncSession, challenge_id: UUID, period: str) -> date | None:
    return await session.scalar(
        select(func.max(SnapshotRun.snapshot_date)).where(
            SnapshotRun.challenge_id == challenge_id,
            SnapshotRun.period == period,
            SnapshotRun.status == "completed",
        )
    )


@dataclass(frozen=True)
class CreatorRank:
    rank: int
    user_id: UUID
    username: str
    aggregate_score: float
    submission_count: int


async def top_creators(
    session: AsyncSession,
    period: str = "all_time",
    limit: int = 20,
    now: datetime | None = None,
) -> list[CreatorRank]:
    """
    Creators across every challenge, ranked by the summed Wilson score of
    their visible submissions created inside the period window ending today
    (leaderboard timezone). Banned creators are left out.
    """
    now = now or utcnow()
    today = now.astimezone(ZoneInfo(settings.leaderboard_timezone)).date()
    start, end = period_window(period, today)

    aggregate = func.sum(Submission.wilson_score).label("aggregate")
    n = func.count(Submission.id).label("n")
    q = (
        select(Submission.user_id, User.username, aggregate, n)
        .join(User, User.id == Submission.user_id)
        .where(_visible(), User.is_banned.is_(False), Submission.created_at < end)
        .group_by(Submission.user_id, User.username)
        .order_by(aggregate.desc(), n.desc(), Submission.user_id.asc())
        .limit(limit)
    )
    if start is not None:
        q = q.where(Submission.created_at >= start)
    rows = (await session.execute(q)).all()
    return [
        CreatorRank(i, r.user_id, r.username, float(r.aggregate or 0.0), int(r.n))
        for i, r in enumerate(rows, start=1)
    ]
