"""Application configuration via pydantic-settings.

Reads from .env file or environment variables. All settings are validated
at startup, so a malformed value fails fast with a clear error message.

Usage:
    from keywork.config import get_settings
    settings = get_settings()
    print(settings.keeper_api_url)
"""

from __future__ import annotations

from decimal import Decimal
from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Central configuration for the KeyWork marketplace."""

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
        "postgresql+asyncpg://keywork:keywork_dev"
        "@localhost:5432/keywork"
    )
    db_pool_size: int = 10
    db_max_overflow: int = 20
    db_pool_timeout: int = 30
    db_echo_sql: bool = False

    # --- Redis ---
    redis_url: str = "redis://localhost:6379/0"
    redis_idempotency_ttl_seconds: int = 86400  # 24 hours

    # --- Worker session tokens ---
    jwt_secret_key: str = "change-me-in-production"
    jwt_algorithm: str = "HS256"
    jwt_expire_minutes: int = 60 * 24 * 7

    # --- Keeper (external escrow / balance service) ---
    keeper_api_url: str = "https://api.keykeeper.world"
    keeper_timeout_seconds: float = 10.0
    keeper_hold_attempts: int = 3
    # Simulated ledger keeps balances in memory; set False to talk to Keeper.
    keeper_simulate: bool = True
    agent_key_prefix: str = "kk_"

    # --- Object storage ---
    storage_backend: Literal["memory", "local"] = "memory"
    storage_local_path: str = "./var/storage"

    # --- Business rules ---
    platform_min_payment: Decimal = Decimal("1.00")
    default_currency: str = "USD"
    # Share of the payment paid to a worker when an in-progress job is cancelled.
    cancellation_compensation_ratio: Decimal = Decimal("0.5")
    min_withdrawal_amount: Decimal = Decimal("10.00")
    job_list_default_limit: int = 50
    job_list_max_limit: int = 200
    default_search_radius_meters: float = 10_000.0

    # --- Realtime rooms ---
    realtime_ping_interval_seconds: float = 30.0
    realtime_stale_after_seconds: float = 60.0

    # --- Rate limiting ---
    rate_limit_enabled: bool = True
    rate_limit_window_seconds: int = 60

    # --- Webhooks ---
    webhook_timeout_seconds: float = 5.0

    # --- MCP ---
    mcp_transport: str = "streamable-http"

    @property
    def is_development(self) -> bool:
        return self.app_env == "development"

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")

    @property
    def refund_percent_on_in_progress_cancel(self) -> int:
        """Percent of the hold returned to the agent when work had started."""
        return int((Decimal("1") - self.cancellation_compensation_ratio) * 100)

    @property
    def sync_database_url(self) -> str:
        """Synchronous database URL for Alembic migrations."""
        return self.database_url.replace("+asyncpg", "+psycopg2")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached singleton of the application settings."""
    return Settings()
