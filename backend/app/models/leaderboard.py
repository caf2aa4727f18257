from __future__ import annotations
import uuid
from datetime import date, datetime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Integer, Float, Date, ForeignKey, UniqueConstraint, CheckConstraint, Index, Uuid
from app.db import Base, UTCDateTime, utcnow

PERIODS = ("daily", "weekly", "all_time")

class LeaderboardSnapshot(Base):
    """
    Frozen ranking row. Written only by the snapshot job; a (challenge, period,
    snapshot_date) key is one generation and is replaced as a whole on re-run.
    """
    __tablename__ = "leaderboard_snapshots"
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    challenge_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("challenges.id", ondelete="CASCADE"), index=True, nullable=False)
    period: Mapped[str] = mapped_column(String(16), nullable=False)
    snapshot_date: Mapped[date] = mapped_column(Date, nullable=False)
    submission_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("submissions.id", ondelete="CASCADE"), index=True, nullable=False)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    rank: Mapped[int] = mapped_column(Integer, nullable=False)
    score: Mapped[float] = mapped_column(Float, nullable=False)
    vote_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    super_vote_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("challenge_id", "period", "snapshot_date", "submission_id", name="uq_leaderboard_snapshots_key_submission"),
        CheckConstraint("period IN ('daily', 'weekly', 'all_time')", name="ck_leaderboard_snapshots_period"),
        Index("ix_leaderboard_snapshots_page", "challenge_id", "period", "snapshot_date", "rank"),
        Index("ix_leaderboard_snapshots_user_period", "user_id", "period"),
    )


class SnapshotRun(Base):
    """Claim record for one snapshot key; a live 'running' claim blocks a second run."""
    __tablename__ = "leaderboard_snapshot_runs"
    challenge_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("challenges.id", ondelete="CASCADE"), primary_key=True)
    period: Mapped[str] = mapped_column(String(16), primary_key=True)
    snapshot_date: Mapped[date] = mapped_column(Date, primary_key=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="running")  # running|completed|failed
    run_token: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    started_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    finished_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    row_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (
        CheckConstraint("status IN ('running', 'completed', 'failed')", name="ck_leaderboard_snapshot_runs_status"),
    )
