from __future__ import annotations
import uuid
from datetime import datetime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Integer, Float, Boolean, ForeignKey, Index, CheckConstraint, Uuid
from app.db import Base, UTCDateTime, utcnow


class Submission(Base):
    """
    A 30-second clip entered into a challenge.

    Derived columns (counters, wilson_score, boost_score) are written only by
    the vote ledger and the boost engine, never from client payloads.
    """
    __tablename__ = "submissions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False
    )
    challenge_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("challenges.id", ondelete="CASCADE"), index=True, nullable=False
    )

    moderation_status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")  # 'pending'|'approved'|'rejected'|'manual_review'
    is_hidden: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    deleted_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    upvote_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    downvote_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    vote_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)  # raw: up + down
    super_vote_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    wilson_score: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    boost_score: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint(
            "moderation_status IN ('pending', 'approved', 'rejected', 'manual_review')",
            name="ck_submissions_moderation_status",
        ),
        CheckConstraint("vote_count = upvote_count + downvote_count", name="ck_submissions_vote_count"),
        Index("ix_submissions_challenge_ranking", "challenge_id", "moderation_status", "wilson_score"),
    )

    @property
    def is_visible(self) -> bool:
        return self.moderation_status == "approved" and not self.is_hidden and self.deleted_at is None
