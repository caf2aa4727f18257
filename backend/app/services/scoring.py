from __future__ import annotations
from datetime import datetime
from math import sqrt
from typing import Iterable, Protocol, Sequence, TypeVar
from uuid import UUID

from app.config import settings

# Super votes are stored as ordinary +1 rows flagged is_super. Each one is worth
# SUPER_VOTE_WEIGHT up-vote equivalents: it adds (weight - 1) extra positives to
# both the positive tally and the sample size, so the proportion stays in [0, 1].
Z = settings.wilson_z
SUPER_VOTE_WEIGHT = settings.super_vote_weight


def weighted_tally(upvotes: int, downvotes: int, super_votes: int = 0) -> tuple[float, float]:
    """Return (weighted_up, weighted_n) after folding super votes into the tally."""
    if upvotes < 0 or downvotes < 0 or super_votes < 0:
        raise ValueError("vote counts must be non-negative")
    if super_votes > upvotes:
        raise ValueError("super votes are a subset of upvotes")
    extra = super_votes * (SUPER_VOTE_WEIGHT - 1)
    return float(upvotes + extra), float(upvotes + downvotes + extra)


def wilson_score(upvotes: int, downvotes: int, super_votes: int = 0, z: float = Z) -> float:
    """
    Lower bound of the Wilson score interval for the positive-vote proportion.

    Small samples get wide intervals and therefore low bounds, so 18 up / 2 down
    (~0.70) outranks 4 up / 0 down (~0.51) even though 4/4 is a perfect ratio.

    Returns 0.0 with no votes; the result is clamped to [0, 1].

        >>> round(wilson_score(18, 2), 4)
        0.699
        >>> round(wilson_score(4, 0), 4)
        0.5101
    """
    up, n = weighted_tally(upvotes, downvotes, super_votes)
    if n == 0:
        return 0.0
    phat = up / n
    z2 = z * z
    numerator = phat + z2 / (2 * n) - z * sqrt(phat * (1 - phat) / n + z2 / (4 * n * n))
    score = numerator / (1 + z2 / n)
    return max(0.0, min(1.0, score))


class Rankable(Protocol):
    id: UUID
    wilson_score: float
    vote_count: int
    created_at: datetime


R = TypeVar("R")


def rank_key(score: float, vote_count: int, created_at: datetime, ident: UUID | str) -> tuple:
    """score desc -> vote_count desc -> created_at asc -> id asc."""
    return (-score, -vote_count, created_at, str(ident))


def rank_submissions(items: Iterable[R], *, score=lambda s: s.wilson_score) -> list[R]:
    """Sort submissions (or snapshot candidates) by the display tie-break order."""
    return sorted(items, key=lambda s: rank_key(score(s), s.vote_count, s.created_at, s.id))


def assign_ranks(ordered: Sequence[R]) -> list[tuple[int, R]]:
    return [(idx + 1, item) for idx, item in enumerate(ordered)]


def visibility_score(wilson: float, boost: float) -> float:
    """Feed ordering weight. Boosts only ever add, and never touch wilson_score itself."""
    return wilson + max(0.0, boost)
