from __future__ import annotations
from sqlalchemy.exc import IntegrityError


class EngineError(Exception):
    """
    Recoverable, user-facing failure of the voting engine.
    Rendered by the API as {"code": ..., "detail": ...} with `status_code`.
    """
    code = "engine_error"
    status_code = 400

    def __init__(self, detail: str | None = None):
        super().__init__(detail or self.default_detail())
        self.detail = detail or self.default_detail()

    @classmethod
    def default_detail(cls) -> str:
        return cls.code.replace("_", " ")


class SelfVote(EngineError):
    code = "self_vote"
    status_code = 403


class DuplicateVote(EngineError):
    code = "duplicate_vote"
    status_code = 409


class InsufficientSuperVotes(EngineError):
    code = "insufficient_super_votes"
    status_code = 402


class SubmissionNotVotable(EngineError):
    code = "submission_not_votable"
    status_code = 422


class InvalidVote(EngineError):
    code = "invalid_vote"
    status_code = 422


class QueueExhausted(EngineError):
    code = "queue_exhausted"
    status_code = 409


class SnapshotConflict(EngineError):
    code = "snapshot_conflict"
    status_code = 409


class InvalidBoostTier(EngineError):
    code = "invalid_boost_tier"
    status_code = 422


class BoostLimitReached(EngineError):
    code = "boost_limit_reached"
    status_code = 409


class InsufficientCoins(EngineError):
    code = "insufficient_coins"
    status_code = 402


# constraint name -> error raised in its place
_CONSTRAINT_ERRORS: dict[str, type[EngineError]] = {
    "uq_votes_user_submission": DuplicateVote,
    "ck_votes_value": InvalidVote,
    "ck_votes_super_is_upvote": InvalidVote,
    "ck_super_vote_balances_not_overdrawn": InsufficientSuperVotes,
    "uq_leaderboard_snapshot_runs_key": SnapshotConflict,
    "leaderboard_snapshot_runs_pkey": SnapshotConflict,
}

# sqlite reports columns instead of constraint names
_SQLITE_MESSAGES: dict[str, type[EngineError]] = {
    "votes.user_id, votes.submission_id": DuplicateVote,
    "leaderboard_snapshot_runs.challenge_id": SnapshotConflict,
}


def translate_integrity_error(exc: IntegrityError) -> EngineError | None:
    """Map a storage constraint violation onto the engine taxonomy, or None if unknown."""
    orig = exc.orig
    name = getattr(orig, "constraint_name", None) or getattr(getattr(orig, "diag", None), "constraint_name", None)
    if name and name in _CONSTRAINT_ERRORS:
        return _CONSTRAINT_ERRORS[name]()
    msg = str(orig)
    for key, err in _CONSTRAINT_ERRORS.items():
        if key in msg:
            return err()
    for key, err in _SQLITE_MESSAGES.items():
        if key in msg:
            return err()
    return None
