from __future__ import annotations
import uuid
from datetime import datetime, timedelta, timezone
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker

from app.db import Base
from app.models.user import User, BlockedUser
from app.models.challenge import Challenge
from app.models.submission import Submission
from app.models.vote import Vote, VoteQueueEntry, SuperVoteBalance  # noqa: F401  (register tables)
from app.models.boost import SubmissionBoost
from app.models.coin import CoinEntry
from app.models.leaderboard import LeaderboardSnapshot, SnapshotRun  # noqa: F401
from app.services.context import VotingContext


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


@pytest_asyncio.fixture
async def engine(tmp_path):
    eng = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", future=True)
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as s:
        yield s


class Factory:
    """Seeds rows through its own session so service rollbacks never expire them."""

    def __init__(self, session):
        self.session = session

    async def _save(self, obj):
        self.session.add(obj)
        await self.session.commit()
        return obj

    async def user(self, tier: str = "free", **kw) -> User:
        kw.setdefault("username", f"user_{uuid.uuid4().hex[:10]}")
        return await self._save(User(subscription_tier=tier, **kw))

    async def challenge(self, status: str = "active", starts_at=None, ends_at=None, **kw) -> Challenge:
        now = datetime.now(timezone.utc)
        return await self._save(Challenge(
            title=kw.pop("title", "Best trick shot"),
            status=status,
            starts_at=starts_at or now - timedelta(days=30),
            ends_at=ends_at or now + timedelta(days=30),
            **kw,
        ))

    async def submission(self, challenge: Challenge, user: User | None = None, moderation_status: str = "approved", **kw) -> Submission:
        owner = user or await self.user()
        return await self._save(Submission(
            user_id=owner.id,
            challenge_id=challenge.id,
            moderation_status=moderation_status,
            **kw,
        ))

    async def block(self, blocker: User, blocked: User) -> BlockedUser:
        return await self._save(BlockedUser(blocker_id=blocker.id, blocked_id=blocked.id))

    async def coins(self, user: User, amount: int) -> CoinEntry:
        return await self._save(CoinEntry(
            user_id=user.id, type="PURCHASE", amount=amount, external_id=f"test:{uuid.uuid4()}",
        ))

    async def boost(self, submission: Submission, buyer: User | None = None, tier: str = "medium",
                    started_at: datetime | None = None, hours: int = 24, value: float = 0.3) -> SubmissionBoost:
        owner = buyer or await self.user()
        start = started_at or datetime.now(timezone.utc)
        return await self._save(SubmissionBoost(
            submission_id=submission.id, user_id=owner.id, tier=tier, coin_amount=0,
            boost_value=value, started_at=start, expires_at=start + timedelta(hours=hours),
        ))


@pytest_asyncio.fixture
async def make(session_factory):
    async with session_factory() as s:
        yield Factory(s)


@pytest.fixture
def ctx_for():
    def _ctx(user, clock=None) -> VotingContext:
        if clock is None:
            return VotingContext(voter_id=user.id)
        return VotingContext(voter_id=user.id, clock=clock)
    return _ctx
