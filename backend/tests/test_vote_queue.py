from __future__ import annotations
import random
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
import uuid
import pytest
from sqlalchemy import select

from app.errors import QueueExhausted
from app.models.vote import VoteQueueEntry
from app.services.vote_queue import (
    build_queue, next_batch, next_entry, mark_voted, boosted_slots, compose_page, stratify,
)
from app.services.voting import cast_vote, vote_stats


async def _queue_rows(session_factory, user_id, challenge_id):
    async with session_factory() as s:
        return (await s.execute(
            select(VoteQueueEntry)
            .where(VoteQueueEntry.user_id == user_id, VoteQueueEntry.challenge_id == challenge_id)
            .order_by(VoteQueueEntry.position)
        )).scalars().all()


@pytest.mark.asyncio
async def test_queue_excludes_own_blocked_banned_and_invisible(session, make, ctx_for):
    ch = await make.challenge()
    voter = await make.user()
    blocked = await make.user()
    blocker = await make.user()
    banned = await make.user(is_banned=True)
    await make.block(voter, blocked)
    await make.block(blocker, voter)

    ok = await make.submission(ch)
    await make.submission(ch, voter)               # own
    await make.submission(ch, blocked)             # voter blocked them
    await make.submission(ch, blocker)             # they blocked voter
    await make.submission(ch, banned)              # banned owner
    await make.submission(ch, moderation_status="pending")
    await make.submission(ch, is_hidden=True)
    other_ch = await make.challenge()
    await make.submission(other_ch)

    ids = await build_queue(session, ctx_for(voter), ch.id, 10)
    assert ids == [ok.id]


@pytest.mark.asyncio
async def test_already_voted_submissions_are_not_queued(session, make, ctx_for):
    ch = await make.challenge()
    voter = await make.user()
    a = await make.submission(ch)
    b = await make.submission(ch)
    await cast_vote(session, ctx_for(voter), a.id, 1)
    assert await build_queue(session, ctx_for(voter), ch.id, 10) == [b.id]


@pytest.mark.asyncio
async def test_short_pool_gives_short_page_then_empty(session, session_factory, make, ctx_for):
    ch = await make.challenge()
    voter = await make.user()
    subs = [await make.submission(ch) for _ in range(3)]
    ctx = ctx_for(voter)

    first = await build_queue(session, ctx, ch.id, 10)
    assert sorted(first) == sorted(s.id for s in subs)
    assert await build_queue(session, ctx, ch.id, 10) == []

    rows = await _queue_rows(session_factory, voter.id, ch.id)
    assert [r.position for r in rows] == [1, 2, 3]
    assert all(r.is_voted is False for r in rows)


@pytest.mark.asyncio
async def test_refetch_only_appends(session, session_factory, make, ctx_for):
    ch = await make.challenge()
    voter = await make.user()
    ctx = ctx_for(voter)
    for _ in range(5):
        await make.submission(ch)

    page1 = await build_queue(session, ctx, ch.id, 3)
    before = [(r.submission_id, r.position) for r in await _queue_rows(session_factory, voter.id, ch.id)]
    page2 = await build_queue(session, ctx, ch.id, 3)
    after = [(r.submission_id, r.position) for r in await _queue_rows(session_factory, voter.id, ch.id)]

    assert len(page1) == 3 and len(page2) == 2
    assert not set(page1) & set(page2)
    assert after[:3] == before
    assert [p for _, p in after] == [1, 2, 3, 4, 5]
    assert ctx.issued[ch.id] == page1 + page2


@pytest.mark.asyncio
async def test_least_exposed_submissions_come_first(session, make, ctx_for):
    ch = await make.challenge()
    voter = await make.user()
    seen = [await make.submission(ch, vote_count=40, upvote_count=40) for _ in range(3)]
    fresh = [await make.submission(ch) for _ in range(3)]

    ids = await build_queue(session, ctx_for(voter), ch.id, 6)
    assert set(ids[:3]) == {s.id for s in fresh}
    assert set(ids[3:]) == {s.id for s in seen}


@pytest.mark.asyncio
async def test_boosted_submissions_are_interleaved(session, make, ctx_for):
    ch = await make.challenge()
    voter = await make.user()
    boosted = await make.submission(ch)
    await make.boost(boosted)
    for _ in range(9):
        await make.submission(ch)

    ids = await build_queue(session, ctx_for(voter), ch.id, 10)
    assert len(ids) == 10
    assert ids[5] == boosted.id


@pytest.mark.asyncio
async def test_lapsed_boost_is_not_treated_as_boosted(session, make, ctx_for):
    ch = await make.challenge()
    voter = await make.user()
    now = datetime.now(timezone.utc)
    # column still carries the old value; the expiry job has not run yet
    lapsed = await make.submission(ch, vote_count=50, upvote_count=50, boost_score=0.1)
    await make.boost(lapsed, started_at=now - timedelta(hours=20), hours=12, value=0.1)
    for _ in range(9):
        await make.submission(ch)

    ids = await build_queue(session, ctx_for(voter), ch.id, 3)
    assert len(ids) == 3
    assert lapsed.id not in ids

    stats = await vote_stats(session, lapsed.id)
    assert stats.boost_score == 0.0
    assert stats.visibility_score == pytest.approx(stats.wilson_score)


@pytest.mark.asyncio
async def test_live_boost_counts_in_stats(session, make):
    ch = await make.challenge()
    sub = await make.submission(ch)
    await make.boost(sub, value=0.3)
    await make.boost(sub, value=0.3)

    stats = await vote_stats(session, sub.id)
    assert stats.boost_score == pytest.approx(0.6)
    assert stats.visibility_score == pytest.approx(stats.wilson_score + 0.6)


@pytest.mark.asyncio
async def test_closed_challenge_has_empty_queue(session, make, ctx_for):
    ch = await make.challenge(status="completed")
    await make.submission(ch)
    voter = await make.user()
    assert await build_queue(session, ctx_for(voter), ch.id, 10) == []


@pytest.mark.asyncio
async def test_next_batch_builds_then_reuses_pending(session, make, ctx_for):
    ch = await make.challenge()
    voter = await make.user()
    ctx = ctx_for(voter)
    for _ in range(4):
        await make.submission(ch)

    rows = await next_batch(session, ctx, ch.id, 2)
    assert [e.position for e, _ in rows] == [1, 2]
    again = await next_batch(session, ctx, ch.id, 2)
    assert [e.submission_id for e, _ in again] == [e.submission_id for e, _ in rows]

    await cast_vote(session, ctx, rows[0][0].submission_id, 1)
    remaining = await next_batch(session, ctx, ch.id, 2)
    assert [e.position for e, _ in remaining] == [2]


@pytest.mark.asyncio
async def test_next_batch_reads_past_a_position(session, make, ctx_for):
    ch = await make.challenge()
    voter = await make.user()
    ctx = ctx_for(voter)
    for _ in range(3):
        await make.submission(ch)

    first = await next_batch(session, ctx, ch.id, 2)
    assert [e.position for e, _ in first] == [1, 2]
    # nothing voted; a walker continuing after position 2 sees the rest
    rest = await next_batch(session, ctx, ch.id, 2, after_position=2)
    assert [e.position for e, _ in rest] == [3]
    assert await next_batch(session, ctx, ch.id, 2, after_position=3) == []
    # without a position the skipped entries are served again
    assert [e.position for e, _ in await next_batch(session, ctx, ch.id, 2)] == [1, 2]


@pytest.mark.asyncio
async def test_next_entry_raises_when_exhausted(session, make, ctx_for):
    ch = await make.challenge()
    voter = await make.user()
    ctx = ctx_for(voter)
    only = await make.submission(ch)

    entry, sub = await next_entry(session, ctx, ch.id)
    assert sub.id == only.id
    await cast_vote(session, ctx, only.id, -1)
    with pytest.raises(QueueExhausted):
        await next_entry(session, ctx, ch.id)


@pytest.mark.asyncio
async def test_mark_voted_is_forward_only(session, make, ctx_for):
    ch = await make.challenge()
    voter = await make.user()
    sub = await make.submission(ch)
    await build_queue(session, ctx_for(voter), ch.id, 1)

    assert await mark_voted(session, voter.id, ch.id, sub.id) is True
    assert await mark_voted(session, voter.id, ch.id, sub.id) is False
    await session.commit()


def test_boosted_slots_share_and_caps():
    assert sorted(boosted_slots(10, 3)) == [2, 5, 7]
    assert len(boosted_slots(2, 4)) == 1          # at least one when any boosted exist
    assert len(boosted_slots(50, 40)) == 5        # hard cap
    assert boosted_slots(1, 3) == set()
    assert boosted_slots(10, 0) == set()


def test_compose_page_fills_with_boosted_when_organic_runs_out():
    organic = ["o1", "o2"]
    boosted = ["b1", "b2", "b3", "b4"]
    page = compose_page(organic, boosted, 6)
    assert page.count("o1") == 1 and page.count("o2") == 1
    assert len(page) == 6
    assert compose_page([], [], 5) == []


def test_stratify_is_deterministic_per_seed():
    rows = [SimpleNamespace(id=uuid.UUID(int=i), vote_count=i % 12) for i in range(30)]
    a = stratify(list(rows), random.Random("voter:challenge:0"))
    b = stratify(list(rows), random.Random("voter:challenge:0"))
    assert [r.id for r in a] == [r.id for r in b]
    strata = [r.vote_count // 5 for r in a]
    assert strata == sorted(strata)
