from __future__ import annotations
import uuid
from datetime import date, datetime
from sqlalchemy.orm import Mapped, mapped_column, validates
from sqlalchemy import String, Integer, Boolean, Date, ForeignKey, UniqueConstraint, CheckConstraint, Index, Uuid
from app.db import Base, UTCDateTime, utcnow

VOTE_SOURCES = ("organic", "rewarded_ad")

class Vote(Base):
    __tablename__ = "votes"
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False)
    submission_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("submissions.id", ondelete="CASCADE"), index=True, nullable=False)
    challenge_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("challenges.id", ondelete="CASCADE"), index=True, nullable=False)
    value: Mapped[int] = mapped_column(Integer, nullable=False)  # +1 | -1
    is_super: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    source: Mapped[str] = mapped_column(String(16), nullable=False, default="organic")
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "submission_id", name="uq_votes_user_submission"),
        CheckConstraint("value IN (1, -1)", name="ck_votes_value"),
        CheckConstraint("is_super = false OR value = 1", name="ck_votes_super_is_upvote"),
        CheckConstraint("source IN ('organic', 'rewarded_ad')", name="ck_votes_source"),
        Index("ix_votes_submission_created", "submission_id", "created_at"),
    )

    @validates("value")
    def _check_value(self, _key, value: int) -> int:
        if value not in (1, -1):
            raise ValueError("vote value must be +1 or -1")
        return value

    @validates("source")
    def _check_source(self, _key, source: str) -> str:
        if source not in VOTE_SOURCES:
            raise ValueError(f"unknown vote source: {source}")
        return source


class VoteQueueEntry(Base):
    """One issued slot of a voter's queue. Positions only grow; is_voted only goes false -> true."""
    __tablename__ = "vote_queue"
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    challenge_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("challenges.id", ondelete="CASCADE"), index=True, nullable=False)
    submission_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("submissions.id", ondelete="CASCADE"), index=True, nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    is_voted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "challenge_id", "submission_id", name="uq_vote_queue_user_challenge_submission"),
        UniqueConstraint("user_id", "challenge_id", "position", name="uq_vote_queue_user_challenge_position"),
        CheckConstraint("position > 0", name="ck_vote_queue_position"),
        Index("ix_vote_queue_next_item", "user_id", "challenge_id", "is_voted", "position"),
    )


class SuperVoteBalance(Base):
    """
    Per-user, per-UTC-day super-vote allowance.
    remaining = daily_allowance + bonus_earned - used; a new day starts a new row.
    """
    __tablename__ = "super_vote_balances"
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    day: Mapped[date] = mapped_column(Date, nullable=False)
    daily_allowance: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    bonus_earned: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint("user_id", "day", name="uq_super_vote_balances_user_day"),
        CheckConstraint("used <= daily_allowance + bonus_earned", name="ck_super_vote_balances_not_overdrawn"),
    )

    @property
    def remaining(self) -> int:
        return max(0, self.daily_allowance + self.bonus_earned - self.used)
