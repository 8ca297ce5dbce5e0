"""Application configuration via environment variables.

Uses pydantic-settings to load from .env file and environment variables.
All config is centralized here: modules should import `get_settings()`.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ─── App ───
    environment: str = "development"
    log_level: str = "INFO"

    # ─── Admission (free tier) ───
    free_burst_limit: int = 10  # requests per burst window
    free_burst_window_seconds: int = 60
    free_daily_cap: int = 100  # requests per rolling day
    free_daily_window_seconds: int = 24 * 60 * 60
    admission_sweep_interval_seconds: int = 300  # 0 disables the sweep task

    # ─── Response Cache ───
    cache_backend: Literal["memory", "redis"] = "memory"
    cache_ttl_seconds: int = 300
    cache_max_entries: int = 1000
    redis_url: str = "redis://localhost:6379/0"

    # ─── Market Data (CoinGecko) ───
    market_api_url: str = "https://api.coingecko.com/api/v3"
    market_rate_limit_per_second: float = 5.0
    market_lookback_days: int = 30

    # ─── News (CryptoPanic) ───
    news_api_url: str = "https://cryptopanic.com/api/v1/posts/"
    news_api_token: str | None = None
    news_rate_limit_per_second: float = 2.0
    news_item_limit: int = 10

    # ─── Fetch / Ensemble timeouts ───
    fetch_timeout_seconds: float = 5.0
    ensemble_member_timeout_seconds: float = 2.0


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings singleton.

    Uses lru_cache so Settings is only instantiated once.
    In tests, call `get_settings.cache_clear()` to reset.
    """
    return Settings()
