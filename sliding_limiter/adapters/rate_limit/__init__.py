"""Rate limiting adapters.

This package provides the window store abstraction plus a Redis store for
multi-process deployments and an in-memory store for local runs and tests.
"""

from sliding_limiter.adapters.rate_limit.base import (
    AbstractRateLimiter,
    AbstractWindowStore,
    RateLimitDecision,
)
from sliding_limiter.adapters.rate_limit.factory import create_window_store
from sliding_limiter.adapters.rate_limit.in_memory import InMemoryWindowStore
from sliding_limiter.adapters.rate_limit.redis_store import RedisWindowStore

__all__ = [
    "AbstractRateLimiter",
    "AbstractWindowStore",
    "InMemoryWindowStore",
    "RateLimitDecision",
    "RedisWindowStore",
    "create_window_store",
]
