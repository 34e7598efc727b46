"""Application configuration via pydantic-settings.

Reads from .env file or environment variables. All settings are validated
at startup, so a malformed value fails fast with a clear error message.

Usage:
    from marketplace_exchange.config import get_settings
    settings = get_settings()
    print(settings.offer_ttl_hours)
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Central configuration for the marketplace exchange engine."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # --- Application ---
    app_env: Literal["development", "staging", "production"] = "development"
    app_debug: bool = True
    app_log_level: str = "DEBUG"
    app_host: str = "0.0.0.0"
    app_port: int = 8000

    # --- Database (PostgreSQL) ---
    database_url: str = (
        "postgresql+asyncpg://marketplace:marketplace_dev"
        "@localhost:5432/marketplace_exchange"
    )
    db_pool_size: int = 10
    db_max_overflow: int = 20
    db_pool_timeout: int = 30
    db_echo_sql: bool = False

    # --- Redis / Notifications ---
    redis_url: str = "redis://localhost:6379/0"
    notifications_backend: Literal["log", "redis"] = "log"
    notifications_channel: str = "marketplace:transitions"

    # --- Offers ---
    offer_ttl_hours: int = 168  # 7 days
    offer_expiry_sweep_seconds: int = 300
    offer_expiry_sweep_enabled: bool = True

    # --- Listing relist policy ---
    # Neither cancel nor dispute resolution returns a sold listing to the
    # market unless explicitly enabled.
    relist_on_cancel: bool = False
    relist_on_buyer_favored_resolution: bool = False

    @property
    def is_development(self) -> bool:
        return self.app_env == "development"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached singleton of the application settings."""
    return Settings()
