"""Redis-backed window store for multi-process deployments.

Each client maps to one sorted set: member = marker nonce, score = request
time in epoch milliseconds. The atomic ``admit`` path runs a Lua script
(EVALSHA, reloaded transparently by redis-py when the script cache is
flushed), so concurrent checks for one client never overadmit.

Redis key format:
- ``{key_prefix}{identity}`` - sorted set of request markers
"""

from __future__ import annotations

import logging
import math
from typing import Any, Awaitable, TypeVar

from redis.exceptions import RedisError

from sliding_limiter.adapters.rate_limit.base import AbstractWindowStore
from sliding_limiter.adapters.rate_limit.scripts import SLIDING_WINDOW_ADMIT_SCRIPT
from sliding_limiter.core.errors import StoreUnavailableAppError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _score_bound(value: float) -> str | float:
    """Translate infinite bounds into Redis range syntax."""
    if value == math.inf:
        return "+inf"
    if value == -math.inf:
        return "-inf"
    return value


class RedisWindowStore(AbstractWindowStore):
    """Sorted set window store on top of ``redis.asyncio``."""

    backend = "redis"

    def __init__(self, redis_client: Any) -> None:
        """Initialize the store.

        Args:
            redis_client: A ``redis.asyncio.Redis`` instance. Timeouts and
                bounded retries are configured on the client itself.
        """
        self._redis = redis_client
        self._admit_script = redis_client.register_script(SLIDING_WINDOW_ADMIT_SCRIPT)

    async def _call(self, operation: str, awaitable: Awaitable[T]) -> T:
        """Await a Redis command, translating driver errors."""
        try:
            return await awaitable
        except RedisError as exc:
            raise StoreUnavailableAppError(
                code="store_unavailable",
                message=f"Redis {operation} failed: {type(exc).__name__}",
                details={"backend": self.backend, "operation": operation},
            ) from exc

    async def prune_before(self, key: str, threshold: int) -> int:
        removed = await self._call(
            "zremrangebyscore",
            self._redis.zremrangebyscore(key, "-inf", threshold),
        )
        return int(removed or 0)

    async def count_in_range(self, key: str, low: float, high: float = math.inf) -> int:
        count = await self._call(
            "zcount",
            self._redis.zcount(key, _score_bound(low), _score_bound(high)),
        )
        return int(count or 0)

    async def insert(self, key: str, member: str, score: int) -> None:
        await self._call("zadd", self._redis.zadd(key, {member: score}))

    async def set_expiry(self, key: str, seconds: int) -> None:
        await self._call("expire", self._redis.expire(key, seconds))

    async def admit(
        self,
        key: str,
        *,
        window_start: int,
        now: int,
        limit: int,
        ttl_seconds: int,
        member: str,
    ) -> tuple[bool, int]:
        result = await self._call(
            "admit_script",
            self._admit_script(
                keys=[key],
                args=[window_start, now, limit, ttl_seconds, member],
            ),
        )
        admitted, count = result
        return bool(int(admitted)), int(count)

    async def ping(self) -> bool:
        try:
            return bool(await self._redis.ping())
        except RedisError as exc:
            logger.warning(
                "rate_limit.store_ping_failed",
                extra={"backend": self.backend, "error_type": type(exc).__name__},
            )
            return False

    async def close(self) -> None:
        # aclose() is the redis-py 5.0+ spelling
        await self._redis.aclose()
        logger.info("rate_limit.store_closed", extra={"backend": self.backend})
