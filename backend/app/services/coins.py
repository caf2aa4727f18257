from __future__ import annotations
from typing import Protocol
from uuid import UUID
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.db import advisory_xact_lock
from app.errors import InsufficientCoins
from app.models.coin import CoinEntry


class CoinLedger(Protocol):
    """
    Coin balance collaborator used by the boost engine.
    Implementations must debit inside the caller's transaction so that a
    failed purchase leaves no debit behind.
    """

    async def balance(self, session: AsyncSession, user_id: UUID) -> int: ...

    async def debit(self, session: AsyncSession, *, user_id: UUID, coins: int, external_id: str, note: str) -> CoinEntry: ...

    async def credit(self, session: AsyncSession, *, user_id: UUID, coins: int, external_id: str, note: str, entry_type: str = "ADJUST") -> CoinEntry: ...


class WalletCoinLedger:
    """Coin ledger backed by the coin_entries table (balance = sum of signed entries)."""

    async def balance(self, session: AsyncSession, user_id: UUID) -> int:
        total = await session.scalar(
            select(func.coalesce(func.sum(CoinEntry.amount), 0)).where(CoinEntry.user_id == user_id)
        )
        return int(total or 0)

    async def entries(self, session: AsyncSession, user_id: UUID) -> list[CoinEntry]:
        return (await session.execute(
            select(CoinEntry).where(CoinEntry.user_id == user_id).order_by(CoinEntry.created_at.desc())
        )).scalars().all()

    async def debit(self, session: AsyncSession, *, user_id: UUID, coins: int, external_id: str, note: str) -> CoinEntry:
        """
        Debit coins for a purchase. Idempotent by external_id.
        Raises InsufficientCoins if the balance is too low.
        """
        if coins <= 0:
            raise ValueError("coins must be > 0")

        # Prevent double-spend races across concurrent requests
        await advisory_xact_lock(session, f"coins:{user_id}")

        exists = await session.scalar(select(CoinEntry).where(CoinEntry.external_id == external_id))
        if exists:
            return exists

        bal = await self.balance(session, user_id)
        if bal < coins:
            raise InsufficientCoins(f"need {coins} coins, have {bal}")

        entry = CoinEntry(user_id=user_id, type="BOOST_SPENT", amount=-int(coins), external_id=external_id, note=note)
        session.add(entry)
        await session.flush()
        return entry

    async def credit(self, session: AsyncSession, *, user_id: UUID, coins: int, external_id: str, note: str, entry_type: str = "ADJUST") -> CoinEntry:
        """Credit coins (purchases, rewards, refunds). Idempotent by external_id."""
        if coins <= 0:
            raise ValueError("coins must be > 0")

        exists = await session.scalar(select(CoinEntry).where(CoinEntry.external_id == external_id))
        if exists:
            return exists

        entry = CoinEntry(user_id=user_id, type=entry_type, amount=int(coins), external_id=external_id, note=note)
        session.add(entry)
        await session.flush()
        return entry


default_coin_ledger = WalletCoinLedger()
