from __future__ import annotations
import uuid
from datetime import datetime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Integer, Float, ForeignKey, Index, CheckConstraint, Uuid
from app.db import Base, UTCDateTime, utcnow

class SubmissionBoost(Base):
    """Paid visibility weight; contributes boost_value while started_at <= now < expires_at."""
    __tablename__ = "submission_boosts"
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    submission_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("submissions.id", ondelete="CASCADE"), index=True, nullable=False)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False)
    tier: Mapped[str] = mapped_column(String(20), nullable=False)
    coin_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    boost_value: Mapped[float] = mapped_column(Float, nullable=False)
    started_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime, index=True, nullable=False)

    __table_args__ = (
        CheckConstraint("boost_value > 0", name="ck_submission_boosts_value"),
        CheckConstraint("expires_at > started_at", name="ck_submission_boosts_window"),
        Index("ix_submission_boosts_sub_expires", "submission_id", "expires_at"),
    )
