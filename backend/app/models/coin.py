from __future__ import annotations
import uuid
from datetime import datetime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Integer, ForeignKey, UniqueConstraint, CheckConstraint, Uuid
from app.db import Base, UTCDateTime, utcnow

class CoinEntry(Base):
    """
    Per-user coin ledger.
    Sign convention:
      - PURCHASE    => +amount (store purchase, credited by the payments service)
      - REWARD      => +amount (daily login, ads)
      - BOOST_SPENT => -amount (submission boost)
      - ADJUST      => +/- (admin fix)
    Idempotency: external_id is unique.
    """
    __tablename__ = "coin_entries"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False)

    type: Mapped[str] = mapped_column(String(16), nullable=False)   # PURCHASE | REWARD | BOOST_SPENT | ADJUST
    amount: Mapped[int] = mapped_column(Integer, nullable=False)

    external_id: Mapped[str | None] = mapped_column(String(96), nullable=True)
    note: Mapped[str | None] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("external_id", name="uq_coin_entries_external_id"),
        CheckConstraint("type IN ('PURCHASE', 'REWARD', 'BOOST_SPENT', 'ADJUST')", name="ck_coin_entries_type"),
    )
