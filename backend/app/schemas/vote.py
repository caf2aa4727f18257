from __future__ import annotations
from pydantic import BaseModel, Field
from typing import Literal
from uuid import UUID
from datetime import date, datetime

class VoteCreate(BaseModel):
    submission_id: UUID
    value: Literal[1, -1]
    is_super: bool = False
    source: Literal["organic", "rewarded_ad"] = "organic"

class VoteRecord(BaseModel):
    vote_id: UUID
    submission_id: UUID
    challenge_id: UUID
    value: int
    is_super: bool
    source: str
    created_at: datetime
    upvote_count: int
    downvote_count: int
    vote_count: int
    super_vote_count: int
    wilson_score: float
    super_votes_remaining: int | None = None

class VoteStats(BaseModel):
    submission_id: UUID
    upvote_count: int
    downvote_count: int
    vote_count: int
    super_vote_count: int
    wilson_score: float
    boost_score: float
    visibility_score: float

class QueueItem(BaseModel):
    submission_id: UUID
    position: int
    user_id: UUID
    vote_count: int
    is_boosted: bool

class QueuePage(BaseModel):
    challenge_id: UUID
    items: list[QueueItem]
    exhausted: bool

class SuperVoteBalanceOut(BaseModel):
    day: date
    daily_allowance: int
    bonus_earned: int
    used: int
    remaining: int

class AdRewardOut(BaseModel):
    granted: bool
    balance: SuperVoteBalanceOut

class QueueParams(BaseModel):
    challenge_id: UUID
    limit: int = Field(default=10, ge=1, le=50)
