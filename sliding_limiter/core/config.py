"""Application configuration using Pydantic Settings.

Configuration is environment-aware:
- APP_ENV determines which .env file to load
- Supports: development, testing, staging, production
- Each environment has its own .env.{environment} file

Rate limit values are bound once at startup. Invalid values (e.g. a limit
of 0) raise a pydantic ValidationError while the settings object is built,
which aborts process initialization.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Literal

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

_env_filename = ENV_FILE_MAP.get(APP_ENV, ".env.development")
_env_path = PROJECT_ROOT / _env_filename

# Only load from file if it exists (production might inject via env vars only)
_env_file = str(_env_path) if _env_path.is_file() else None


# Load .env file early to populate os.environ before creating nested settings
# This is necessary because Pydantic nested BaseSettings don't inherit env_file
if _env_file and os.getenv("TESTING") != "true":
    from dotenv import load_dotenv
    load_dotenv(_env_file, override=True)


def _build_rate_limit_settings() -> "RateLimitSettings":
    """Build rate limit settings from environment.

    Pydantic Settings (v2) can populate values from environment variables.
    However, static type checkers often treat required fields as required
    constructor arguments, which is not how BaseSettings is intended to be used.
    """

    return RateLimitSettings()  # type: ignore[call-arg]


def _build_redis_settings() -> "RedisSettings":
    return RedisSettings()  # type: ignore[call-arg]


def _build_log_settings() -> "LogSettings":
    return LogSettings()  # type: ignore[call-arg]


class RateLimitSettings(BaseSettings):
    """Sliding window rate limit configuration.

    Immutable once built: every request reads the same limit and window.
    """

    enabled: bool = Field(
        True,
        description="Enable rate limiting on the /api routes",
    )
    limit: int = Field(
        10,
        description="Maximum number of requests allowed per window (per client)",
        ge=1,
    )
    window_seconds: int = Field(
        60,
        description="Sliding window length in seconds",
        ge=1,
    )
    backend: Literal["redis", "memory"] = Field(
        "redis",
        description="Window store backend. 'memory' is per-process only",
    )
    atomic: bool = Field(
        True,
        description="Run prune/count/insert as one store-side atomic unit",
    )
    failure_policy: Literal["open", "closed"] = Field(
        "open",
        description="Admit (open) or deny (closed) when the store is unavailable",
    )
    key_prefix: str = Field(
        "ratelimit:",
        description="Namespace prepended to every client identity in the store",
    )
    store_timeout_seconds: float = Field(
        0.5,
        description="Deadline for a single rate limit check against the store",
        gt=0,
    )
    forwarded_header: str = Field(
        "X-Forwarded-For",
        description="Header carrying the original client address behind proxies",
    )
    include_retry_after: bool = Field(
        True,
        description="Include a Retry-After header on 429 responses",
    )

    model_config = SettingsConfigDict(
        env_prefix="RATE_LIMIT_",
        case_sensitive=False,
        frozen=True,
    )


class RedisSettings(BaseSettings):
    """Connection settings for the shared Redis window store."""

    url: str = Field(
        "redis://localhost:6379/0",
        description="Redis connection URL",
    )
    socket_timeout_seconds: float = Field(
        0.25,
        description="Socket read/write timeout",
        gt=0,
    )
    connect_timeout_seconds: float = Field(
        0.25,
        description="Socket connect timeout",
        gt=0,
    )
    retry_attempts: int = Field(
        1,
        description="Bounded retries on connection errors and timeouts",
        ge=0,
    )

    model_config = SettingsConfigDict(
        env_prefix="REDIS_",
        case_sensitive=False,
        frozen=True,
    )


class LogSettings(BaseSettings):
    """Logging output configuration."""

    level: str = Field("INFO", description="Root log level")
    format: Literal["json", "plain"] = Field(
        "json",
        description="Log record format",
    )
    output: Literal["stdout", "file"] = Field(
        "stdout",
        description="Where log records are written",
    )
    file_path: str | None = Field(
        None,
        description="Log file path when output=file",
    )
    max_bytes: int = Field(
        10_485_760,
        description="Rotate the log file after this many bytes (0 disables rotation)",
        ge=0,
    )
    backup_count: int = Field(5, description="Rotated files to keep", ge=0)
    request_id_header: str = Field(
        "X-Request-ID",
        description="Header used to propagate the correlation id",
    )

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
    )


class Settings(BaseSettings):
    """Main application settings container.

    Automatically loads from the appropriate .env.{APP_ENV} file.
    Raises validation errors on startup if settings are invalid.
    """

    app_env: str = APP_ENV
    rate_limit: RateLimitSettings = Field(default_factory=_build_rate_limit_settings)
    redis: RedisSettings = Field(default_factory=_build_redis_settings)
    log: LogSettings = Field(default_factory=_build_log_settings)

    model_config = SettingsConfigDict(
        case_sensitive=False,
    )


# Global settings instance - composed from domain-specific settings
settings = Settings()
