from __future__ import annotations
import random
from datetime import datetime
from uuid import UUID
from sqlalchemy import select, update, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from app.config import settings
from app.db import advisory_xact_lock
from app.errors import QueueExhausted
from app.models.challenge import Challenge
from app.models.submission import Submission
from app.models.user import User, BlockedUser
from app.models.vote import Vote, VoteQueueEntry
from app.services.boosts import live_boost_total
from app.services.context import VotingContext
from app.services.time_windows import voting_window_open

log = structlog.get_logger()


def _visible(q):
    return q.where(
        Submission.moderation_status == "approved",
        Submission.is_hidden.is_(False),
        Submission.deleted_at.is_(None),
    )


async def _candidates(session: AsyncSession, voter_id: UUID, challenge_id: UUID, now: datetime):
    """Every submission the voter may still be shown, with its live (uncapped) boost."""
    blocked_by_me = select(BlockedUser.blocked_id).where(BlockedUser.blocker_id == voter_id)
    blocking_me = select(BlockedUser.blocker_id).where(BlockedUser.blocked_id == voter_id)
    queued = select(VoteQueueEntry.submission_id).where(
        VoteQueueEntry.user_id == voter_id, VoteQueueEntry.challenge_id == challenge_id
    )
    voted = select(Vote.submission_id).where(Vote.user_id == voter_id, Vote.challenge_id == challenge_id)

    q = _visible(
        select(Submission.id, Submission.vote_count, live_boost_total(now).label("boost_score"))
        .join(User, User.id == Submission.user_id)
        .where(
            Submission.challenge_id == challenge_id,
            Submission.user_id != voter_id,
            User.is_banned.is_(False),
            Submission.user_id.not_in(blocked_by_me),
            Submission.user_id.not_in(blocking_me),
            Submission.id.not_in(queued),
            Submission.id.not_in(voted),
        )
    )
    return (await session.execute(q)).all()


def boosted_slots(size: int, n_boosted: int) -> set[int]:
    """
    Page indexes reserved for boosted submissions, spread evenly.

        >>> sorted(boosted_slots(10, 3))
        [2, 5, 7]
    """
    if n_boosted <= 0 or size <= 0:
        return set()
    cap = int(size * settings.queue_boost_share)
    if size >= 2:
        cap = max(1, cap)
    cap = min(cap, settings.queue_max_boosted, n_boosted)
    return {((k + 1) * size) // (cap + 1) for k in range(cap)}


def compose_page(organic: list, boosted: list, size: int) -> list:
    """Interleave boosted items into organic order; boosted fill in once organic runs dry."""
    slots = boosted_slots(size, len(boosted))
    page, oi, bi = [], 0, 0
    for i in range(size):
        take_boost = (i in slots and bi < len(boosted)) or oi >= len(organic)
        if take_boost:
            if bi >= len(boosted):
                break
            page.append(boosted[bi])
            bi += 1
        else:
            page.append(organic[oi])
            oi += 1
    return page


def stratify(rows, rng: random.Random) -> list:
    """Least-exposed stratum first; order within a stratum is shuffled."""
    width = max(1, settings.queue_stratum_width)
    strata: dict[int, list] = {}
    for r in sorted(rows, key=lambda r: str(r.id)):
        strata.setdefault(r.vote_count // width, []).append(r)
    out = []
    for key in sorted(strata):
        group = strata[key]
        rng.shuffle(group)
        out.extend(group)
    return out


async def _append_page(session: AsyncSession, ctx: VotingContext, challenge_id: UUID, size: int) -> list[UUID]:
    voter_id = ctx.voter_id
    await advisory_xact_lock(session, f"queue:{voter_id}:{challenge_id}")

    now = ctx.now()
    rows = await _candidates(session, voter_id, challenge_id, now)
    if not rows:
        return []

    last = await session.scalar(
        select(func.coalesce(func.max(VoteQueueEntry.position), 0)).where(
            VoteQueueEntry.user_id == voter_id, VoteQueueEntry.challenge_id == challenge_id
        )
    )
    rng = random.Random(f"{voter_id}:{challenge_id}:{last}")
    boosted = sorted((r for r in rows if r.boost_score > 0), key=lambda r: (-min(r.boost_score, settings.max_boost_score), str(r.id)))
    organic = stratify([r for r in rows if r.boost_score <= 0], rng)
    page = compose_page(organic, boosted, size)

    session.add_all([
        VoteQueueEntry(
            user_id=voter_id,
            challenge_id=challenge_id,
            submission_id=r.id,
            position=last + i,
            is_voted=False,
            created_at=now,
        )
        for i, r in enumerate(page, start=1)
    ])
    await session.flush()
    return [r.id for r in page]


async def build_queue(session: AsyncSession, ctx: VotingContext, challenge_id: UUID, size: int | None = None) -> list[UUID]:
    """
    Append up to `size` fresh submissions to the voter's queue and return their ids
    in position order. Already issued rows are never reordered; an empty list
    means the voter has seen everything.
    """
    size = max(1, min(size or settings.queue_default_size, settings.queue_max_size))

    ch = await session.get(Challenge, challenge_id)
    if not ch or not voting_window_open(ch.status, ch.starts_at, ch.ends_at, ch.voting_ends_at, ctx.now()):
        return []

    for attempt in (1, 2):
        try:
            ids = await _append_page(session, ctx, challenge_id, size)
            await session.commit()
            break
        except IntegrityError:
            # A concurrent build for the same voter won the positions; rebuild on top of it
            await session.rollback()
            if attempt == 2:
                raise
            log.warning("queue_build_conflict", challenge_id=str(challenge_id), **ctx.log_fields())

    ctx.remember_issued(challenge_id, ids)
    log.info("queue_built", challenge_id=str(challenge_id), appended=len(ids), requested=size, **ctx.log_fields())
    return ids


async def pending_entries(session: AsyncSession, voter_id: UUID, challenge_id: UUID, limit: int, after_position: int = 0):
    """Unvoted queue rows past `after_position` whose submission is still visible, as (entry, submission) pairs."""
    q = _visible(
        select(VoteQueueEntry, Submission)
        .join(Submission, Submission.id == VoteQueueEntry.submission_id)
        .where(
            VoteQueueEntry.user_id == voter_id,
            VoteQueueEntry.challenge_id == challenge_id,
            VoteQueueEntry.is_voted.is_(False),
            VoteQueueEntry.position > after_position,
        )
    ).order_by(VoteQueueEntry.position).limit(limit).execution_options(populate_existing=True)
    return (await session.execute(q)).all()


async def next_batch(
    session: AsyncSession,
    ctx: VotingContext,
    challenge_id: UUID,
    limit: int | None = None,
    after_position: int = 0,
):
    """
    Pending entries in position order, appending a fresh page when none are left.

    Skipped entries stay unvoted and are served again from position 0; a caller
    walking the queue passes the last position it has shown as `after_position`
    so skips are not repeated within that walk.
    """
    limit = max(1, min(limit or settings.queue_default_size, settings.queue_max_size))
    rows = await pending_entries(session, ctx.voter_id, challenge_id, limit, after_position)
    if not rows:
        await build_queue(session, ctx, challenge_id, limit)
        rows = await pending_entries(session, ctx.voter_id, challenge_id, limit, after_position)
    return rows


async def next_entry(session: AsyncSession, ctx: VotingContext, challenge_id: UUID):
    rows = await next_batch(session, ctx, challenge_id, 1)
    if not rows:
        raise QueueExhausted("Nothing left to vote on in this challenge")
    return rows[0]


async def mark_voted(session: AsyncSession, voter_id: UUID, challenge_id: UUID, submission_id: UUID) -> bool:
    """Flip is_voted false -> true; never the other way. Runs in the caller's transaction."""
    res = await session.execute(
        update(VoteQueueEntry)
        .where(
            VoteQueueEntry.user_id == voter_id,
            VoteQueueEntry.challenge_id == challenge_id,
            VoteQueueEntry.submission_id == submission_id,
            VoteQueueEntry.is_voted.is_(False),
        )
        .values(is_voted=True)
        .execution_options(synchronize_session=False)
    )
    return res.rowcount == 1
