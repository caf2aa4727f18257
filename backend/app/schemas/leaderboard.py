from __future__ import annotations
from pydantic import BaseModel
from typing import Literal
from uuid import UUID
from datetime import date, datetime

Period = Literal["daily", "weekly", "all_time"]

class RankedSubmission(BaseModel):
    rank: int
    submission_id: UUID
    user_id: UUID
    wilson_score: float
    vote_count: int
    super_vote_count: int
    created_at: datetime

class LiveLeaderboard(BaseModel):
    challenge_id: UUID
    items: list[RankedSubmission]
    limit: int
    offset: int

class SubmissionRank(BaseModel):
    challenge_id: UUID
    submission_id: UUID
    rank: int
    wilson_score: float
    total: int

class SnapshotRow(BaseModel):
    rank: int
    submission_id: UUID
    user_id: UUID
    score: float
    vote_count: int
    super_vote_count: int

class SnapshotPage(BaseModel):
    challenge_id: UUID
    period: Period
    snapshot_date: date
    items: list[SnapshotRow]
    next_after_rank: int | None = None

class SnapshotRequest(BaseModel):
    period: Period | None = None
    as_of: date | None = None

class SnapshotResultOut(BaseModel):
    challenge_id: UUID
    period: Period
    snapshot_date: date
    row_count: int
    run_token: UUID

class SnapshotEnqueued(BaseModel):
    job_id: str
    periods: list[Period]
    as_of: date

class CreatorRow(BaseModel):
    rank: int
    user_id: UUID
    username: str
    aggregate_score: float
    submission_count: int

class TopCreators(BaseModel):
    period: Period
    items: list[CreatorRow]
