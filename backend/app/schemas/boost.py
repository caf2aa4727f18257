from __future__ import annotations
from pydantic import BaseModel, Field
from uuid import UUID
from datetime import datetime

class BoostTierPublic(BaseModel):
    tier: str
    cost: int
    boost_value: float
    duration_hours: int

class BoostTiers(BaseModel):
    tiers: list[BoostTierPublic]
    first_boost_free: bool
    max_boost_score: float

class BoostCreate(BaseModel):
    submission_id: UUID
    tier: str = Field(min_length=1, max_length=20)

class BoostPublic(BaseModel):
    id: UUID
    submission_id: UUID
    user_id: UUID
    tier: str
    coin_amount: int
    boost_value: float
    started_at: datetime
    expires_at: datetime

class SubmissionBoosts(BaseModel):
    submission_id: UUID
    boost_score: float
    boosts: list[BoostPublic]

class BoostHistory(BaseModel):
    items: list[BoostPublic]
    total: int
    limit: int
    offset: int
