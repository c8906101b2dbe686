"""Factory for the window store backing the rate limiter."""

from __future__ import annotations

import redis.asyncio as aioredis
from redis.asyncio.retry import Retry
from redis.backoff import ExponentialBackoff
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from sliding_limiter.adapters.rate_limit.base import AbstractWindowStore
from sliding_limiter.adapters.rate_limit.in_memory import InMemoryWindowStore
from sliding_limiter.adapters.rate_limit.redis_store import RedisWindowStore
from sliding_limiter.core.config import RedisSettings, settings
from sliding_limiter.core.errors import ConfigurationAppError


def create_redis_client(redis_settings: RedisSettings) -> aioredis.Redis:
    """Build an asyncio Redis client with bounded timeouts and retries.

    No connection is opened until the first command is sent.
    """
    return aioredis.from_url(
        redis_settings.url,
        decode_responses=True,
        socket_timeout=redis_settings.socket_timeout_seconds,
        socket_connect_timeout=redis_settings.connect_timeout_seconds,
        retry=Retry(ExponentialBackoff(), redis_settings.retry_attempts),
        retry_on_error=[RedisConnectionError, RedisTimeoutError],
    )


def create_window_store(backend: str | None = None) -> AbstractWindowStore:
    """Instantiate the window store selected by configuration.

    Args:
        backend: Override for ``settings.rate_limit.backend``.

    Returns:
        AbstractWindowStore: Configured store instance.

    Raises:
        ConfigurationAppError: If the backend name is unknown.
    """
    selected = (backend or settings.rate_limit.backend).lower()

    if selected == "redis":
        return RedisWindowStore(create_redis_client(settings.redis))

    if selected == "memory":
        return InMemoryWindowStore()

    raise ConfigurationAppError(
        code="rate_limit_unknown_backend",
        message=f"Unknown rate limit backend: '{selected}'. Supported backends: redis, memory",
    )
