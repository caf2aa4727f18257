from __future__ import annotations
from datetime import datetime
from uuid import UUID
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from app.config import settings
from app.db import utcnow
from app.errors import InvalidVote, SelfVote, SubmissionNotVotable, translate_integrity_error
from app.models.challenge import Challenge
from app.models.submission import Submission
from app.models.vote import Vote, VOTE_SOURCES, SuperVoteBalance
from app.schemas.vote import VoteRecord, VoteStats
from app.services import super_votes
from app.services.boosts import effective_boost
from app.services.context import VotingContext
from app.services.scoring import wilson_score, visibility_score
from app.services.time_windows import voting_window_open, utc_day
from app.services.vote_queue import mark_voted

log = structlog.get_logger()


async def _load_votable(session: AsyncSession, submission_id: UUID, now) -> Submission:
    sub = await session.get(Submission, submission_id)
    if not sub or not sub.is_visible:
        raise SubmissionNotVotable("Submission is not open for voting")
    ch = await session.get(Challenge, sub.challenge_id)
    if not ch or ch.is_frozen or not voting_window_open(ch.status, ch.starts_at, ch.ends_at, ch.voting_ends_at, now):
        raise SubmissionNotVotable("Challenge is not accepting votes")
    return sub


async def cast_vote(
    session: AsyncSession,
    ctx: VotingContext,
    submission_id: UUID,
    value: int,
    is_super: bool = False,
    source: str = "organic",
) -> VoteRecord:
    """
    Record one vote and rescore the submission.

    Validation (first failing check wins): votable submission, not your own,
    super votes are upvotes. The super-vote spend, vote row, counters, score
    and queue flag are committed together or not at all.
    """
    now = ctx.now()
    try:
        sub = await _load_votable(session, submission_id, now)
        if sub.user_id == ctx.voter_id:
            raise SelfVote("You cannot vote on your own submission")
        if value not in (1, -1):
            raise InvalidVote("Vote value must be +1 or -1")
        if is_super and value != 1:
            raise InvalidVote("Super votes must be upvotes")
        if source not in VOTE_SOURCES:
            raise InvalidVote(f"Unknown vote source: {source}")

        if is_super:
            await super_votes.consume(session, ctx.voter_id, now)

        vote = Vote(
            user_id=ctx.voter_id,
            submission_id=sub.id,
            challenge_id=sub.challenge_id,
            value=value,
            is_super=is_super,
            source=source,
            created_at=now,
        )
        session.add(vote)
        try:
            await session.flush()
        except IntegrityError as e:
            err = translate_integrity_error(e)
            if err is None:
                raise
            raise err from e

        # Increment in SQL so concurrent voters never lose an update
        up = 1 if value == 1 else 0
        await session.execute(
            update(Submission)
            .where(Submission.id == sub.id)
            .values(
                upvote_count=Submission.upvote_count + up,
                downvote_count=Submission.downvote_count + (1 - up),
                vote_count=Submission.vote_count + 1,
                super_vote_count=Submission.super_vote_count + (1 if is_super else 0),
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        # Fresh counters (row is locked by our update until commit)
        await session.refresh(sub, ["upvote_count", "downvote_count", "vote_count", "super_vote_count"])
        sub.wilson_score = wilson_score(sub.upvote_count, sub.downvote_count, sub.super_vote_count)

        await mark_voted(session, ctx.voter_id, sub.challenge_id, sub.id)

        remaining = None
        if is_super:
            bal = await session.scalar(
                select(SuperVoteBalance).where(
                    SuperVoteBalance.user_id == ctx.voter_id, SuperVoteBalance.day == utc_day(now)
                )
            )
            remaining = bal.remaining if bal else 0
            ctx.super_votes_remaining = remaining

        await session.commit()
    except Exception:
        await session.rollback()
        raise

    log.info(
        "vote_cast",
        submission_id=str(sub.id),
        challenge_id=str(sub.challenge_id),
        value=value,
        is_super=is_super,
        source=source,
        wilson_score=round(sub.wilson_score, 6),
        **ctx.log_fields(),
    )
    return VoteRecord(
        vote_id=vote.id,
        submission_id=sub.id,
        challenge_id=sub.challenge_id,
        value=value,
        is_super=is_super,
        source=source,
        created_at=vote.created_at,
        upvote_count=sub.upvote_count,
        downvote_count=sub.downvote_count,
        vote_count=sub.vote_count,
        super_vote_count=sub.super_vote_count,
        wilson_score=sub.wilson_score,
        super_votes_remaining=remaining,
    )


async def vote_stats(session: AsyncSession, submission_id: UUID, now: datetime | None = None) -> VoteStats | None:
    row = (await session.execute(
        select(
            Submission.upvote_count,
            Submission.downvote_count,
            Submission.vote_count,
            Submission.super_vote_count,
            Submission.wilson_score,
        ).where(Submission.id == submission_id)
    )).one_or_none()
    if row is None:
        return None
    # lapsed boosts count as zero even before the expiry job rewrites the column
    boost = min(await effective_boost(session, submission_id, now or utcnow()), settings.max_boost_score)
    return VoteStats(
        submission_id=submission_id,
        upvote_count=row.upvote_count,
        downvote_count=row.downvote_count,
        vote_count=row.vote_count,
        super_vote_count=row.super_vote_count,
        wilson_score=row.wilson_score,
        boost_score=boost,
        visibility_score=visibility_score(row.wilson_score, boost),
    )


async def user_votes_for_challenge(session: AsyncSession, user_id: UUID, challenge_id: UUID) -> list[Vote]:
    return (await session.execute(
        select(Vote)
        .where(Vote.user_id == user_id, Vote.challenge_id == challenge_id)
        .order_by(Vote.created_at.desc())
    )).scalars().all()
