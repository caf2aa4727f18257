from __future__ import annotations
import asyncio
from datetime import datetime, timedelta, timezone
import pytest
from sqlalchemy import select, func

from app.errors import (
    DuplicateVote, SelfVote, InsufficientSuperVotes, InvalidVote, SubmissionNotVotable,
)
from app.models.submission import Submission
from app.models.vote import Vote, VoteQueueEntry, SuperVoteBalance
from app.services import super_votes
from app.services.scoring import wilson_score
from app.services.vote_queue import build_queue
from app.services.voting import cast_vote, vote_stats, user_votes_for_challenge


async def _fresh(session_factory, model, ident):
    async with session_factory() as s:
        return await s.get(model, ident)


async def _vote_rows(session_factory, submission_id) -> int:
    async with session_factory() as s:
        return await s.scalar(select(func.count(Vote.id)).where(Vote.submission_id == submission_id))


@pytest.mark.asyncio
async def test_upvote_updates_counters_and_score(session, session_factory, make, ctx_for):
    ch = await make.challenge()
    sub = await make.submission(ch)
    voter = await make.user()

    rec = await cast_vote(session, ctx_for(voter), sub.id, 1)
    assert rec.upvote_count == 1 and rec.downvote_count == 0 and rec.vote_count == 1
    assert rec.wilson_score == pytest.approx(wilson_score(1, 0))
    assert rec.super_votes_remaining is None

    row = await _fresh(session_factory, Submission, sub.id)
    assert (row.upvote_count, row.downvote_count, row.vote_count) == (1, 0, 1)
    assert row.wilson_score == pytest.approx(wilson_score(1, 0))
    assert row.vote_count == row.upvote_count + row.downvote_count


@pytest.mark.asyncio
async def test_mixed_votes_rescore_from_fresh_counters(session, session_factory, make, ctx_for):
    ch = await make.challenge()
    sub = await make.submission(ch)
    for value in (1, 1, -1, 1):
        voter = await make.user()
        await cast_vote(session, ctx_for(voter), sub.id, value)
    row = await _fresh(session_factory, Submission, sub.id)
    assert (row.upvote_count, row.downvote_count, row.vote_count) == (3, 1, 4)
    assert row.wilson_score == pytest.approx(wilson_score(3, 1))


@pytest.mark.asyncio
async def test_duplicate_vote_rejected_without_partial_writes(session, session_factory, make, ctx_for):
    ch = await make.challenge()
    sub = await make.submission(ch)
    voter = await make.user()
    ctx = ctx_for(voter)

    await cast_vote(session, ctx, sub.id, 1)
    with pytest.raises(DuplicateVote):
        await cast_vote(session, ctx, sub.id, -1)

    row = await _fresh(session_factory, Submission, sub.id)
    assert (row.upvote_count, row.downvote_count, row.vote_count) == (1, 0, 1)
    assert await _vote_rows(session_factory, sub.id) == 1


@pytest.mark.asyncio
async def test_failure_after_counter_update_leaves_nothing_behind(session, session_factory, make, ctx_for, monkeypatch):
    ch = await make.challenge()
    sub = await make.submission(ch)
    voter = await make.user(tier="pro")

    async def boom(*args, **kwargs):
        raise RuntimeError("queue write failed")

    monkeypatch.setattr("app.services.voting.mark_voted", boom)
    with pytest.raises(RuntimeError):
        await cast_vote(session, ctx_for(voter), sub.id, 1, is_super=True)

    assert await _vote_rows(session_factory, sub.id) == 0
    row = await _fresh(session_factory, Submission, sub.id)
    assert (row.upvote_count, row.vote_count, row.super_vote_count) == (0, 0, 0)
    assert row.wilson_score == 0
    async with session_factory() as s:
        used = (await s.execute(
            select(SuperVoteBalance.used).where(SuperVoteBalance.user_id == voter.id)
        )).scalars().all()
    assert used in ([], [0])


@pytest.mark.asyncio
async def test_concurrent_duplicate_votes_count_once(session_factory, make, ctx_for):
    ch = await make.challenge()
    sub = await make.submission(ch)
    voter = await make.user()
    ctx = ctx_for(voter)

    async with session_factory() as s1, session_factory() as s2:
        results = await asyncio.gather(
            cast_vote(s1, ctx, sub.id, 1),
            cast_vote(s2, ctx, sub.id, 1),
            return_exceptions=True,
        )

    assert sum(isinstance(r, DuplicateVote) for r in results) == 1
    assert sum(not isinstance(r, BaseException) for r in results) == 1
    assert await _vote_rows(session_factory, sub.id) == 1
    row = await _fresh(session_factory, Submission, sub.id)
    assert (row.upvote_count, row.vote_count) == (1, 1)


@pytest.mark.asyncio
async def test_self_vote_rejected(session, session_factory, make, ctx_for):
    ch = await make.challenge()
    owner = await make.user()
    sub = await make.submission(ch, owner)
    with pytest.raises(SelfVote):
        await cast_vote(session, ctx_for(owner), sub.id, 1)
    assert await _vote_rows(session_factory, sub.id) == 0


@pytest.mark.asyncio
async def test_not_votable_is_checked_before_ownership(session, make, ctx_for):
    ch = await make.challenge()
    owner = await make.user()
    sub = await make.submission(ch, owner, moderation_status="pending")
    with pytest.raises(SubmissionNotVotable):
        await cast_vote(session, ctx_for(owner), sub.id, 1)


@pytest.mark.asyncio
@pytest.mark.parametrize("moderation_status,hidden,deleted", [
    ("pending", False, False),
    ("rejected", False, False),
    ("approved", True, False),
    ("approved", False, True),
])
async def test_invisible_submissions_not_votable(session, make, ctx_for, moderation_status, hidden, deleted):
    ch = await make.challenge()
    sub = await make.submission(
        ch,
        moderation_status=moderation_status,
        is_hidden=hidden,
        deleted_at=datetime.now(timezone.utc) if deleted else None,
    )
    voter = await make.user()
    with pytest.raises(SubmissionNotVotable):
        await cast_vote(session, ctx_for(voter), sub.id, 1)


@pytest.mark.asyncio
async def test_closed_or_frozen_challenge_not_votable(session, make, ctx_for):
    now = datetime.now(timezone.utc)
    frozen = await make.challenge(status="completed")
    ended = await make.challenge(starts_at=now - timedelta(days=10), ends_at=now - timedelta(days=1))
    voter = await make.user()
    for ch in (frozen, ended):
        sub = await make.submission(ch)
        with pytest.raises(SubmissionNotVotable):
            await cast_vote(session, ctx_for(voter), sub.id, 1)


@pytest.mark.asyncio
async def test_free_user_without_super_votes_is_refused(session, session_factory, make, ctx_for):
    ch = await make.challenge()
    sub = await make.submission(ch)
    voter = await make.user(tier="free")

    with pytest.raises(InsufficientSuperVotes):
        await cast_vote(session, ctx_for(voter), sub.id, 1, is_super=True)

    row = await _fresh(session_factory, Submission, sub.id)
    assert (row.vote_count, row.super_vote_count) == (0, 0)
    assert await _vote_rows(session_factory, sub.id) == 0


@pytest.mark.asyncio
async def test_pro_super_vote_spends_allowance(session, session_factory, make, ctx_for):
    ch = await make.challenge()
    sub = await make.submission(ch)
    voter = await make.user(tier="pro")

    rec = await cast_vote(session, ctx_for(voter), sub.id, 1, is_super=True)
    assert rec.is_super
    assert rec.super_votes_remaining == 2
    assert rec.super_vote_count == 1 and rec.upvote_count == 1 and rec.vote_count == 1
    assert rec.wilson_score == pytest.approx(wilson_score(1, 0, 1))
    assert rec.wilson_score > wilson_score(1, 0)


@pytest.mark.asyncio
async def test_super_votes_run_out_after_daily_allowance(session, session_factory, make, ctx_for):
    ch = await make.challenge()
    voter = await make.user(tier="pro")
    ctx = ctx_for(voter)
    subs = [await make.submission(ch) for _ in range(4)]

    for s in subs[:3]:
        await cast_vote(session, ctx, s.id, 1, is_super=True)
    with pytest.raises(InsufficientSuperVotes):
        await cast_vote(session, ctx, subs[3].id, 1, is_super=True)

    # the failed super vote left nothing behind; a plain vote still works
    assert await _vote_rows(session_factory, subs[3].id) == 0
    rec = await cast_vote(session, ctx, subs[3].id, 1)
    assert rec.vote_count == 1


@pytest.mark.asyncio
async def test_super_downvote_is_invalid(session, session_factory, make, ctx_for):
    ch = await make.challenge()
    sub = await make.submission(ch)
    voter = await make.user(tier="pro")
    with pytest.raises(InvalidVote):
        await cast_vote(session, ctx_for(voter), sub.id, -1, is_super=True)
    async with session_factory() as s:
        bal = await s.scalar(select(SuperVoteBalance).where(SuperVoteBalance.user_id == voter.id))
    assert bal is None or bal.used == 0


@pytest.mark.asyncio
async def test_invalid_value_and_source(session, make, ctx_for):
    ch = await make.challenge()
    sub = await make.submission(ch)
    voter = await make.user()
    with pytest.raises(InvalidVote):
        await cast_vote(session, ctx_for(voter), sub.id, 2)
    with pytest.raises(InvalidVote):
        await cast_vote(session, ctx_for(voter), sub.id, 1, source="bot")


@pytest.mark.asyncio
async def test_vote_marks_queue_entry(session, session_factory, make, ctx_for):
    ch = await make.challenge()
    sub = await make.submission(ch)
    voter = await make.user()
    ctx = ctx_for(voter)

    assert await build_queue(session, ctx, ch.id, 5) == [sub.id]
    await cast_vote(session, ctx, sub.id, 1)

    async with session_factory() as s:
        entry = await s.scalar(select(VoteQueueEntry).where(VoteQueueEntry.user_id == voter.id))
    assert entry.is_voted is True


@pytest.mark.asyncio
async def test_ad_rewards_capped_for_free_tier(session, make):
    user = await make.user(tier="free")
    now = datetime.now(timezone.utc)
    grants = []
    for _ in range(6):
        _bal, granted = await super_votes.grant_ad_reward(session, user.id, now)
        grants.append(granted)
    assert grants == [True] * 5 + [False]
    bal = await super_votes.get_balance(session, user.id, now)
    assert (bal.daily_allowance, bal.bonus_earned, bal.remaining) == (0, 5, 5)


@pytest.mark.asyncio
async def test_ad_reward_enables_super_vote(session, make, ctx_for):
    ch = await make.challenge()
    sub = await make.submission(ch)
    voter = await make.user(tier="free")
    ctx = ctx_for(voter)
    await super_votes.grant_ad_reward(session, voter.id, ctx.now())
    rec = await cast_vote(session, ctx, sub.id, 1, is_super=True, source="rewarded_ad")
    assert rec.super_votes_remaining == 0
    assert rec.source == "rewarded_ad"


@pytest.mark.asyncio
async def test_allowance_resets_each_utc_day(session, make):
    user = await make.user(tier="pro")
    day1 = datetime(2025, 6, 1, 23, 30, tzinfo=timezone.utc)
    for _ in range(3):
        await super_votes.consume(session, user.id, day1)
    await session.commit()
    assert (await super_votes.get_balance(session, user.id, day1)).remaining == 0
    assert (await super_votes.get_balance(session, user.id, day1 + timedelta(hours=1))).remaining == 3


@pytest.mark.asyncio
async def test_stats_and_user_votes(session, make, ctx_for):
    ch = await make.challenge()
    sub = await make.submission(ch)
    voter = await make.user()
    await cast_vote(session, ctx_for(voter), sub.id, -1)

    stats = await vote_stats(session, sub.id)
    assert stats.downvote_count == 1 and stats.vote_count == 1
    assert stats.visibility_score == pytest.approx(stats.wilson_score + stats.boost_score)

    votes = await user_votes_for_challenge(session, voter.id, ch.id)
    assert [v.submission_id for v in votes] == [sub.id]
