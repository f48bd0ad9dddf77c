"""Application configuration via pydantic-settings.

Reads from .env file or environment variables. All settings are validated
at startup, so a malformed value (e.g. a negative fee rate) fails fast with a
clear error message.

Usage:
    from agrotrust_escrow.config import get_settings
    settings = get_settings()
    print(settings.escrow_fee_rate_percent)
"""

from __future__ import annotations

from decimal import Decimal
from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Central configuration for the AgroTrust escrow service."""

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

    # --- Database ---
    database_url: str = (
        "postgresql+asyncpg://agrotrust:agrotrust_dev"
        "@localhost:5432/agrotrust_escrow"
    )
    db_pool_size: int = 10
    db_max_overflow: int = 20
    db_pool_timeout: int = 30
    db_echo_sql: bool = False

    # --- Redis ---
    redis_url: str = "redis://localhost:6379/0"
    redis_idempotency_ttl_seconds: int = 86400  # 24 hours

    # --- Payment provider ---
    payment_provider: Literal["simulated", "stripe"] = "simulated"
    simulated_redirect: bool = True
    stripe_secret_key: str = ""
    stripe_checkout_mode: Literal["payment_intent", "checkout_session"] = "checkout_session"
    checkout_success_url: str = "http://localhost:5173/dashboard/contracts"
    checkout_cancel_url: str = "http://localhost:5173/dashboard/contracts"

    # --- Escrow economics ---
    escrow_fee_rate_percent: Decimal = Field(default=Decimal("1.5"), ge=0, le=100)

    # --- Provider call policy ---
    # Timeouts are reported as transient provider errors and retried.
    provider_timeout_seconds: float = Field(default=12.0, gt=0)
    provider_max_attempts: int = Field(default=3, ge=1)
    provider_backoff_initial_seconds: float = Field(default=0.5, ge=0)
    provider_backoff_max_seconds: float = Field(default=4.0, ge=0)

    # --- Optimistic concurrency ---
    cas_max_attempts: int = Field(default=3, ge=1)

    # --- Inspection defaults ---
    default_inspection_provider: str = "AZ Border Inspection Service"
    default_inspection_location: str = "AZ Border Checkpoint"

    @property
    def is_development(self) -> bool:
        return self.app_env == "development"

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached singleton of the application settings."""
    return Settings()
