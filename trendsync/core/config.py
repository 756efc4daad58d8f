"""
Application configuration settings.
"""

from __future__ import annotations

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    # Environment
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str | None = None

    # API Configuration
    API_PREFIX: str = "/api/v1"
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    ALLOWED_HOSTS: str | list[str] = Field(default=["*"])

    # Local cache (Redis)
    REDIS_URL: str = "redis://localhost:6379/0"
    CACHE_KEY_PREFIX: str = "trends"

    # Remote store; no URL means no credentials
    REMOTE_DATABASE_URL: str | None = None

    # Synchronization
    SYNC_BATCH_SIZE: int = Field(default=100, ge=1)
    SYNC_MAX_ATTEMPTS: int = Field(default=3, ge=1)
    SYNC_RETRY_BASE_DELAY_SECONDS: float = 1.0
    SYNC_BATCH_PAUSE_SECONDS: float = 0.5
    AUTO_SYNC_INTERVAL_SECONDS: int = 60  # 0 disables the timer

    # Freshness classification
    FRESHNESS_NOISE_FLOOR_RATIO: float = 0.1
    FRESHNESS_GROWTH_RATIO: float = 2.0

    # Volume estimation
    REFERENCE_DAILY_VOLUME: int = 5000

    @field_validator("ALLOWED_HOSTS", mode="before")
    @classmethod
    def parse_allowed_hosts(cls, v):
        if isinstance(v, str):
            return [host.strip() for host in v.split(",")]
        if isinstance(v, list):
            return v
        return ["*"]  # fallback

    model_config = SettingsConfigDict(case_sensitive=True, env_parse_none_str="None")


settings = Settings()
