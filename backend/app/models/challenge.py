from __future__ import annotations
import uuid
from datetime import datetime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, CheckConstraint, Uuid
from app.db import Base, UTCDateTime, utcnow

CHALLENGE_STATUSES = ("draft", "scheduled", "active", "voting", "completed", "cancelled")
VOTABLE_STATUSES = ("active", "voting")

class Challenge(Base):
    """Lifecycle is driven by the challenge scheduler; the engine only reads status and dates."""
    __tablename__ = "challenges"
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    title: Mapped[str] = mapped_column(String(120), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="active", index=True)
    starts_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    ends_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    voting_ends_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint(
            "status IN ('draft', 'scheduled', 'active', 'voting', 'completed', 'cancelled')",
            name="ck_challenges_status",
        ),
    )

    @property
    def is_frozen(self) -> bool:
        return self.status in ("completed", "cancelled")
