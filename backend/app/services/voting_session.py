from __future__ import annotations
import asyncio
from dataclasses import dataclass, replace
from typing import Any, Awaitable, Callable, Union
from uuid import UUID
from sqlalchemy.ext.asyncio import async_sessionmaker
import structlog

from app.errors import EngineError
from app.services import super_votes, vote_queue, voting
from app.services.context import VotingContext

log = structlog.get_logger()

AD_EVERY = 5
# rejections after which the current item can never be voted again
_SKIP_ON = {"duplicate_vote", "submission_not_votable", "self_vote"}

# ---------- states ----------

@dataclass(frozen=True)
class Loading:
    votes_cast: int = 0


@dataclass(frozen=True)
class Ready:
    items: tuple
    index: int
    super_votes_remaining: int
    votes_cast: int = 0
    is_voting: bool = False
    show_ad_card: bool = False
    last_error: str | None = None

    @property
    def current(self):
        return self.items[self.index] if self.index < len(self.items) else None

    @property
    def remaining_count(self) -> int:
        return max(0, len(self.items) - self.index)


@dataclass(frozen=True)
class Exhausted:
    total_votes_cast: int


@dataclass(frozen=True)
class Error:
    message: str
    votes_cast: int = 0


VotingState = Union[Loading, Ready, Exhausted, Error]

# ---------- events ----------

@dataclass(frozen=True)
class QueueLoaded:
    items: tuple
    super_votes_remaining: int


@dataclass(frozen=True)
class LoadFailed:
    message: str


@dataclass(frozen=True)
class VoteStarted:
    value: int
    is_super: bool = False


@dataclass(frozen=True)
class VoteSucceeded:
    is_super: bool = False
    super_votes_remaining: int | None = None


@dataclass(frozen=True)
class VoteRejected:
    code: str
    message: str = ""


@dataclass(frozen=True)
class Skipped:
    pass


@dataclass(frozen=True)
class AdDismissed:
    pass


@dataclass(frozen=True)
class Reload:
    pass


Event = Union[QueueLoaded, LoadFailed, VoteStarted, VoteSucceeded, VoteRejected, Skipped, AdDismissed, Reload]


def _votes_cast(state: VotingState) -> int:
    if isinstance(state, Exhausted):
        return state.total_votes_cast
    return state.votes_cast


def _advance(state: Ready) -> VotingState:
    nxt = state.index + 1
    if nxt >= len(state.items):
        # page used up; fetch more (an empty page ends the session)
        return Loading(votes_cast=state.votes_cast)
    return replace(state, index=nxt, is_voting=False, show_ad_card=False, last_error=None)


def transition(state: VotingState, event: Event) -> VotingState:
    """
    Pure reducer for one voting session. Unknown (state, event) pairs leave
    the state unchanged.

        >>> transition(Loading(), QueueLoaded(items=(), super_votes_remaining=0))
        Exhausted(total_votes_cast=0)
    """
    if isinstance(event, Reload):
        return Loading(votes_cast=_votes_cast(state))

    if isinstance(state, Loading):
        if isinstance(event, QueueLoaded):
            if not event.items:
                return Exhausted(total_votes_cast=state.votes_cast)
            return Ready(
                items=tuple(event.items),
                index=0,
                super_votes_remaining=event.super_votes_remaining,
                votes_cast=state.votes_cast,
            )
        if isinstance(event, LoadFailed):
            return Error(message=event.message, votes_cast=state.votes_cast)
        return state

    if isinstance(state, Ready):
        if isinstance(event, VoteStarted):
            if state.is_voting or state.show_ad_card or state.current is None:
                return state
            if event.is_super and state.super_votes_remaining <= 0:
                return replace(state, last_error="insufficient_super_votes")
            return replace(state, is_voting=True, last_error=None)
        if isinstance(event, VoteSucceeded):
            if not state.is_voting:
                return state
            remaining = state.super_votes_remaining
            if event.super_votes_remaining is not None:
                remaining = event.super_votes_remaining
            elif event.is_super:
                remaining = max(0, remaining - 1)
            cast = state.votes_cast + 1
            updated = replace(state, votes_cast=cast, super_votes_remaining=remaining, is_voting=False)
            if cast % AD_EVERY == 0:
                return replace(updated, show_ad_card=True)
            return _advance(updated)
        if isinstance(event, VoteRejected):
            if event.code == "queue_exhausted":
                return Exhausted(total_votes_cast=state.votes_cast)
            rejected = replace(state, is_voting=False, last_error=event.code)
            if event.code in _SKIP_ON:
                return _advance(rejected)
            return rejected
        if isinstance(event, Skipped):
            if state.is_voting:
                return state
            return _advance(state)
        if isinstance(event, AdDismissed):
            if not state.show_ad_card:
                return state
            return _advance(state)
        return state

    # Exhausted and Error only leave via Reload
    return state

# ---------- driver ----------

Loader = Callable[[], Awaitable[tuple[list, int]]]
Voter = Callable[[Any, int, bool], Awaitable[int | None]]


class VotingSessionLoop:
    """
    Explicit asyncio event loop around `transition`.

    Commands are posted as events; the loop applies each one and runs its
    side effects (loading a page on entering Loading, calling the voter on
    VoteStarted), feeding the outcome back as further events.
    """

    def __init__(self, load: Loader, vote: Voter):
        self._load = load
        self._vote = vote
        self._events: asyncio.Queue = asyncio.Queue()
        self.state: VotingState = Loading()
        self.history: list[VotingState] = [self.state]

    def post(self, event: Event | None) -> None:
        """Queue an event; None stops the loop after pending events."""
        self._events.put_nowait(event)

    def stop(self) -> None:
        self.post(None)

    def _apply(self, event: Event) -> VotingState:
        prev = self.state
        self.state = transition(prev, event)
        if self.state != prev:
            self.history.append(self.state)
            log.debug("voting_session_transition", event=type(event).__name__, state=type(self.state).__name__)
        return prev

    async def _run_load(self) -> None:
        try:
            items, remaining = await self._load()
        except EngineError as e:
            self._apply(LoadFailed(message=e.detail))
            return
        except Exception as e:
            log.warning("voting_session_load_failed", error=str(e))
            self._apply(LoadFailed(message=str(e)))
            return
        self._apply(QueueLoaded(items=tuple(items), super_votes_remaining=remaining))

    async def _run_vote(self, item, event: VoteStarted) -> None:
        try:
            remaining = await self._vote(item, event.value, event.is_super)
        except EngineError as e:
            self._apply(VoteRejected(code=e.code, message=e.detail))
            return
        except Exception as e:
            log.warning("voting_session_vote_failed", error=str(e))
            self._apply(VoteRejected(code="error", message=str(e)))
            return
        self._apply(VoteSucceeded(is_super=event.is_super, super_votes_remaining=remaining))

    async def _effects(self, prev: VotingState, event: Event) -> None:
        # every load leaves Loading (Ready, Exhausted or Error)
        while isinstance(self.state, Loading):
            await self._run_load()
        if isinstance(event, VoteStarted) and isinstance(self.state, Ready) and self.state.is_voting and not (
            isinstance(prev, Ready) and prev.is_voting
        ):
            await self._run_vote(self.state.current, event)
            while isinstance(self.state, Loading):
                await self._run_load()

    async def run(self) -> VotingState:
        """Process events until stopped or the queue is exhausted; returns the final state."""
        await self._effects(self.state, Reload())
        while not isinstance(self.state, Exhausted):
            event = await self._events.get()
            if event is None:
                break
            prev = self._apply(event)
            await self._effects(prev, event)
        return self.state


def service_loop(session_factory: async_sessionmaker, ctx: VotingContext, challenge_id: UUID, page_size: int | None = None) -> VotingSessionLoop:
    """
    Wire a session loop to the queue builder, super-vote balance and vote ledger.

    Pages are read past the last position already shown, so a skipped item
    does not come back within this session (it stays pending for the next one).
    """
    seen = {"position": 0}

    async def load():
        async with session_factory() as session:
            rows = await vote_queue.next_batch(session, ctx, challenge_id, page_size, after_position=seen["position"])
            if rows:
                seen["position"] = rows[-1][0].position
            bal = await super_votes.get_balance(session, ctx.voter_id, ctx.now())
            return [entry.submission_id for entry, _sub in rows], bal.remaining

    async def vote(submission_id, value, is_super):
        async with session_factory() as session:
            rec = await voting.cast_vote(session, ctx, submission_id, value, is_super=is_super)
            return rec.super_votes_remaining

    return VotingSessionLoop(load, vote)
