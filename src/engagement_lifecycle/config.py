"""Application configuration via pydantic-settings.

Reads from .env file or environment variables. All settings are validated
at startup; if a required setting is malformed, the app fails fast with a
clear error message.

Usage:
    from engagement_lifecycle.config import get_settings
    settings = get_settings()
    print(settings.delivery_acceptance_days)
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Central configuration for the engagement lifecycle service."""

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
        "postgresql+asyncpg://engagements:engagements_dev"
        "@localhost:5432/engagement_lifecycle"
    )
    db_pool_size: int = 10
    db_max_overflow: int = 20
    db_pool_timeout: int = 30
    db_echo_sql: bool = False

    # --- Redis ---
    redis_url: str = "redis://localhost:6379/0"
    scan_lock_key: str = "lock:deadline-scan"

    # --- Scheduler ---
    # Shared secret the external scheduler sends as a Bearer token.
    cron_secret: str = ""
    scan_page_size: int = 50
    scan_cycle_timeout_seconds: int = 300

    # --- Deadlines ---
    delivery_acceptance_days: int = 14
    cancellation_response_days: int = 7
    deadline_warning_lead_days: int = 3
    deadline_warning_window_hours: int = 24

    # --- Payments (Stripe) ---
    payment_simulate: bool = True
    stripe_secret_key: str = ""
    stripe_api_version: str = "2024-11-20.acacia"
    refund_reason_code: str = "requested_by_customer"

    @property
    def is_development(self) -> bool:
        return self.app_env == "development"

    @property
    def sync_database_url(self) -> str:
        """Synchronous database URL for Alembic migrations."""
        return self.database_url.replace("+asyncpg", "+psycopg2")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached singleton of the application settings."""
    return Settings()
