from __future__ import annotations
import os
from pydantic import BaseModel


class BoostTierConfig(BaseModel):
    tier: str
    cost: int
    boost_value: float
    duration_hours: int


DEFAULT_BOOST_TIERS = {
    "small": BoostTierConfig(tier="small", cost=50, boost_value=0.1, duration_hours=12),
    "medium": BoostTierConfig(tier="medium", cost=200, boost_value=0.3, duration_hours=24),
    "large": BoostTierConfig(tier="large", cost=500, boost_value=0.5, duration_hours=48),
}


class Settings(BaseModel):
    environment: str = os.getenv("ENVIRONMENT", "dev")
    app_name: str = os.getenv("APP_NAME", "clipvote-ranking")
    app_display_name: str = os.getenv("APP_DISPLAY_NAME", "ClipVote")
    app_version: str = os.getenv("APP_VERSION", "0.1.0")
    git_sha: str = os.getenv("GIT_SHA", "dev")
    api_host: str = os.getenv("API_HOST", "0.0.0.0")
    api_port: int = int(os.getenv("API_PORT", "8000"))
    cors_origins: list[str] = os.getenv("CORS_ORIGINS", "*").split(",")
    database_url: str = os.getenv("DATABASE_URL", "postgresql+asyncpg://postgres:postgres@db:5432/clipvote_dev")
    redis_url: str = os.getenv("REDIS_URL", "redis://redis:6379/0")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    # Scoring
    wilson_z: float = float(os.getenv("WILSON_Z", "1.96"))
    super_vote_weight: int = int(os.getenv("SUPER_VOTE_WEIGHT", "3"))

    # Super-vote allowance
    pro_daily_super_votes: int = int(os.getenv("PRO_DAILY_SUPER_VOTES", "3"))
    free_max_ad_super_votes: int = int(os.getenv("FREE_MAX_AD_SUPER_VOTES", "5"))

    # Boosts
    boost_tiers: dict[str, BoostTierConfig] = DEFAULT_BOOST_TIERS
    max_boost_score: float = float(os.getenv("MAX_BOOST_SCORE", "2.0"))

    # Vote queue
    queue_default_size: int = int(os.getenv("QUEUE_DEFAULT_SIZE", "10"))
    queue_max_size: int = int(os.getenv("QUEUE_MAX_SIZE", "50"))
    queue_boost_share: float = float(os.getenv("QUEUE_BOOST_SHARE", "0.3"))
    queue_max_boosted: int = int(os.getenv("QUEUE_MAX_BOOSTED", "5"))
    queue_stratum_width: int = int(os.getenv("QUEUE_STRATUM_WIDTH", "5"))

    # Leaderboards
    leaderboard_timezone: str = os.getenv("LEADERBOARD_TIMEZONE", "UTC")
    snapshot_stale_after_seconds: int = int(os.getenv("SNAPSHOT_STALE_AFTER_SECONDS", "900"))

    # Request bounds / retries
    vote_timeout_seconds: float = float(os.getenv("VOTE_TIMEOUT_SECONDS", "0.5"))
    retry_attempts: int = int(os.getenv("RETRY_ATTEMPTS", "3"))
    retry_base_delay_seconds: float = float(os.getenv("RETRY_BASE_DELAY_SECONDS", "0.05"))

    # In-process scheduler
    scheduler_enabled: bool = os.getenv("SCHEDULER_ENABLED", "0") == "1"
    snapshot_interval_seconds: int = int(os.getenv("SNAPSHOT_INTERVAL_SECONDS", "3600"))
    boost_expiry_interval_seconds: int = int(os.getenv("BOOST_EXPIRY_INTERVAL_SECONDS", "300"))

settings = Settings()
