from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable
from uuid import UUID

from app.db import utcnow


@dataclass
class VotingContext:
    """
    Request-scoped state shared by the queue builder and the vote ledger.

    Built once per request (or per voting session) and passed explicitly;
    `clock` is injectable so tests can pin time.
    """
    voter_id: UUID
    request_id: str | None = None
    clock: Callable[[], datetime] = utcnow
    super_votes_remaining: int | None = None
    issued: dict[UUID, list[UUID]] = field(default_factory=dict)  # challenge_id -> ids issued this request

    def now(self) -> datetime:
        return self.clock()

    def remember_issued(self, challenge_id: UUID, submission_ids: list[UUID]) -> None:
        self.issued.setdefault(challenge_id, []).extend(submission_ids)

    def log_fields(self) -> dict:
        out = {"voter_id": str(self.voter_id)}
        if self.request_id:
            out["request_id"] = self.request_id
        return out
