"""Application configuration using Pydantic Settings.

Configuration is environment-aware:
- APP_ENV determines which .env file to load
- Supports: development, testing, staging, production
- Each environment has its own .env.{environment} file
"""

from __future__ import annotations

import os
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# Determine which environment to load (default: development)
APP_ENV = os.getenv("APP_ENV", "development")

# Project root (so .env resolution doesn't depend on current working directory)
PROJECT_ROOT = Path(__file__).resolve().parents[2]

# Map environments to their respective .env files (relative to PROJECT_ROOT)
ENV_FILE_MAP = {
    "development": ".env.development",
    "testing": ".env.testing",
    "staging": ".env.staging",
    "production": ".env.production",
}

# Select the .env file for the current environment
_env_filename = ENV_FILE_MAP.get(APP_ENV, ".env.development")
_env_path = PROJECT_ROOT / _env_filename

# Only load from file if it exists (production might inject via env vars only)
_env_file = str(_env_path) if _env_path.is_file() else None


# Load .env file early to populate os.environ before creating nested settings
# This is necessary because Pydantic nested BaseSettings don't inherit env_file
if _env_file:
    from dotenv import load_dotenv
    load_dotenv(_env_file, override=True)


class StoreSettings(BaseSettings):
    """Shared key-value store configuration.

    The ``memory`` backend is per-process and only suitable for a single
    worker or for tests; multi-process deployments must use ``redis``.
    """

    backend: str = Field(
        "memory",
        description="Store backend: memory or redis",
    )
    redis_url: str = Field(
        "redis://localhost:6379/0",
        description="Redis connection URL (used when backend=redis)",
    )
    namespace: str = Field(
        "ridecoord",
        description="Prefix applied to every key written to the backend",
    )
    socket_timeout_seconds: float = Field(
        2.0,
        description="Per-command socket timeout against the backend",
        gt=0,
    )
    max_connections: int = Field(
        50,
        description="Connection pool size for the Redis client",
        ge=1,
    )

    model_config = SettingsConfigDict(
        env_prefix="STORE_",
        case_sensitive=False,
    )


class LockSettings(BaseSettings):
    """Per-resource mutual exclusion defaults."""

    default_ttl_seconds: int = Field(
        10,
        description="Lock lifetime when the caller does not supply one",
        ge=1,
    )

    model_config = SettingsConfigDict(
        env_prefix="LOCK_",
        case_sensitive=False,
    )


class RateLimitSettings(BaseSettings):
    """Default thresholds for failed-attempt rate limiting.

    Coarse identity is the network address; fine identity is the
    principal+address composite. Individual actions override these.
    """

    enabled: bool = Field(
        True,
        description="Enable failed-attempt rate limiting",
    )
    max_attempts_coarse: int = Field(
        20,
        description="Failed attempts allowed per network address per window",
        ge=1,
    )
    window_coarse_seconds: int = Field(
        60,
        description="Counting window for the network address",
        ge=1,
    )
    max_attempts_fine: int = Field(
        5,
        description="Failed attempts allowed per principal+address per window",
        ge=1,
    )
    window_fine_seconds: int = Field(
        300,
        description="Counting window for the principal+address composite",
        ge=1,
    )
    block_seconds: int = Field(
        3600,
        description="Block duration once an identity exceeds its threshold",
        ge=1,
    )
    progressive_enabled: bool = Field(
        False,
        description="Double the block duration for repeat offenders",
    )
    progressive_max_block_seconds: int = Field(
        12 * 60 * 60,
        description="Upper bound for escalated block durations",
        ge=1,
    )
    progressive_memory_seconds: int = Field(
        12 * 60 * 60,
        description="How long past offences are remembered for escalation",
        ge=1,
    )
    fail_closed_retry_after_seconds: int = Field(
        60,
        description="Retry-After reported when the store is unreachable",
        ge=1,
    )
    include_headers: bool = Field(
        True,
        description="Include Retry-After header when throttling",
    )

    model_config = SettingsConfigDict(
        env_prefix="RATE_LIMIT_",
        case_sensitive=False,
    )


class WebhookSettings(BaseSettings):
    """Payment webhook ingestion configuration."""

    event_ttl_seconds: int = Field(
        24 * 60 * 60,
        description="Lifetime of processed-event markers",
        ge=1,
    )
    lock_ttl_seconds: int = Field(
        10,
        description="Lifetime of per-entity mutation locks",
        ge=1,
    )
    signing_secret: str | None = Field(
        None,
        description="Shared secret used to verify webhook signatures",
    )
    tolerance_seconds: int = Field(
        300,
        description="Maximum accepted age of a signed webhook timestamp",
        ge=1,
    )
    key_prefix: str = Field(
        "stripe",
        description="Prefix for processed-event marker keys",
    )

    model_config = SettingsConfigDict(
        env_prefix="WEBHOOK_",
        case_sensitive=False,
    )


class TokenSettings(BaseSettings):
    """Access token signing and revocation configuration."""

    secret: str = Field(
        "change-me",
        description="HMAC secret used to sign access tokens",
    )
    algorithm: str = Field(
        "HS256",
        description="JWT signing algorithm",
    )
    lifetime_seconds: int = Field(
        3600,
        description="Access token lifetime",
        ge=1,
    )
    require_liveness: bool = Field(
        True,
        description="Reject tokens without a liveness marker in the store",
    )

    model_config = SettingsConfigDict(
        env_prefix="TOKEN_",
        case_sensitive=False,
    )


class LogSettings(BaseSettings):
    """Logging output configuration."""

    level: str = Field(
        "INFO",
        description="Root log level",
    )
    format: str = Field(
        "json",
        description="Log format: json or plain",
    )
    output: str = Field(
        "stdout",
        description="Log destination: stdout or file",
    )
    file_path: str | None = Field(
        None,
        description="Log file path when output=file",
    )
    max_bytes: int = Field(
        10 * 1024 * 1024,
        description="Rotate the log file after this many bytes (0 disables)",
        ge=0,
    )
    backup_count: int = Field(
        5,
        description="Number of rotated log files to keep",
        ge=0,
    )
    request_id_header: str = Field(
        "X-Request-ID",
        description="Header carrying the request correlation id",
    )

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
    )


class Settings(BaseSettings):
    """Main application settings container.

    Automatically loads from the appropriate .env.{APP_ENV} file.
    Raises validation errors on startup if settings are invalid.

    Environments:
    - development: Local development (memory store by default)
    - testing: Automated tests (uses .env.testing)
    - staging: Pre-production (uses .env.staging)
    - production: Production deployment (uses .env.production)
    """

    app_env: str = APP_ENV
    store: StoreSettings = Field(default_factory=StoreSettings)
    lock: LockSettings = Field(default_factory=LockSettings)
    rate_limit: RateLimitSettings = Field(default_factory=RateLimitSettings)
    webhook: WebhookSettings = Field(default_factory=WebhookSettings)
    token: TokenSettings = Field(default_factory=TokenSettings)
    log: LogSettings = Field(default_factory=LogSettings)

    model_config = SettingsConfigDict(
        case_sensitive=False,
    )


# Global settings instance - composed from domain-specific settings
# Nested settings are created via default_factory so env loading works.
settings = Settings()
