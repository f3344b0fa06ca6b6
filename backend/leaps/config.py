from __future__ import annotations
import os
from pydantic import BaseModel

DEFAULT_LEARN_TAGS = "elevate-ai-1-completed,elevate-ai-2-completed"

class Settings(BaseModel):
    environment: str = os.getenv("ENVIRONMENT", "dev")
    app_name: str = os.getenv("APP_NAME", "leaps-api")
    app_version: str = os.getenv("APP_VERSION", "0.1.0")
    git_sha: str = os.getenv("GIT_SHA", "dev")
    api_host: str = os.getenv("API_HOST", "0.0.0.0")
    api_port: int = int(os.getenv("API_PORT", "8000"))
    cors_origins: list[str] = os.getenv("CORS_ORIGINS", "*").split(",")
    database_url: str = os.getenv("DATABASE_URL", "postgresql+asyncpg://postgres:postgres@db:5432/leaps_dev")

    # Derived aggregates
    aggregate_staleness_minutes: int = int(os.getenv("AGGREGATE_STALENESS_MINUTES", "15"))
    leaderboard_window_days: int = int(os.getenv("LEADERBOARD_WINDOW_DAYS", "30"))
    time_series_days: int = int(os.getenv("TIME_SERIES_DAYS", "90"))

    # Review policy
    point_adjustment_band_pct: int = int(os.getenv("POINT_ADJUSTMENT_BAND_PCT", "20"))
    max_manual_adjustment: int = int(os.getenv("MAX_MANUAL_ADJUSTMENT", "1000"))
    bulk_review_max: int = int(os.getenv("BULK_REVIEW_MAX", "50"))

    # Kajabi webhook
    kajabi_webhook_secret: str = os.getenv("KAJABI_WEBHOOK_SECRET", "")
    allow_unsigned_webhooks: bool = os.getenv("ALLOW_UNSIGNED_WEBHOOKS", "0") == "1"
    webhook_max_skew_minutes: int = int(os.getenv("WEBHOOK_MAX_SKEW_MINUTES", "5"))
    kajabi_learn_tags: list[str] = [
        t.strip().lower() for t in os.getenv("KAJABI_LEARN_TAGS", DEFAULT_LEARN_TAGS).split(",") if t.strip()
    ]

settings = Settings()
