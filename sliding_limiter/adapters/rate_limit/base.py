"""Window store and rate limiter interfaces.

The limiter depends on this abstraction (not a concrete store) so the same
sliding window algorithm runs against Redis in production and against the
in-memory store in development and tests.

A window store holds, per key, an ordered set of request markers scored by
their timestamp in milliseconds. Implementations must raise
``StoreUnavailableAppError`` for any transport failure so callers never see
driver-specific exceptions.
"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class RateLimitDecision:
    """Outcome of a single rate limit check.

    Attributes:
        allowed: Whether the request may proceed.
        limit: Max requests per window.
        remaining: Requests left in the current window (0 when blocked).
        reset_after_seconds: Upper bound on the wait before a slot frees up.
        degraded: True when the store was unavailable and the decision came
            from the configured failure policy.
    """

    allowed: bool
    limit: int
    remaining: int
    reset_after_seconds: int = 0
    degraded: bool = False


class AbstractWindowStore(ABC):
    """Shared ordered store of request markers keyed by client."""

    #: Human-readable backend name, used in logs and readiness responses.
    backend: str = "abstract"

    @abstractmethod
    async def prune_before(self, key: str, threshold: int) -> int:
        """Remove every marker with score <= threshold.

        Returns:
            Number of markers removed.
        """
        raise NotImplementedError

    @abstractmethod
    async def count_in_range(self, key: str, low: float, high: float = math.inf) -> int:
        """Count markers with low <= score <= high."""
        raise NotImplementedError

    @abstractmethod
    async def insert(self, key: str, member: str, score: int) -> None:
        """Add one marker to the key's set."""
        raise NotImplementedError

    @abstractmethod
    async def set_expiry(self, key: str, seconds: int) -> None:
        """Set or refresh the idle expiry of the whole set."""
        raise NotImplementedError

    @abstractmethod
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
        """Prune, count and conditionally record a marker as one atomic unit.

        Args:
            key: Namespaced client key.
            window_start: Markers scored at or below this are pruned first.
            now: Score of the new marker.
            limit: Admit only while fewer than ``limit`` markers survive.
            ttl_seconds: Idle expiry applied to the set on admission.
            member: Unique marker member.

        Returns:
            Tuple of (admitted, surviving marker count before insertion).
        """
        raise NotImplementedError

    async def ping(self) -> bool:
        """Return True when the store is reachable."""
        return True

    async def close(self) -> None:
        """Release any held connections."""
        return None


class AbstractRateLimiter(ABC):
    """Interface for rate limiters."""

    @abstractmethod
    async def check(self, identity: str, now: int | None = None) -> RateLimitDecision:
        """Decide whether ``identity`` may issue one more request.

        Args:
            identity: Client identity (IP address, API key, ...).
            now: Current time in epoch milliseconds; defaults to the limiter clock.

        Returns:
            RateLimitDecision describing whether it was allowed.
        """
        raise NotImplementedError

    async def ready(self) -> bool:
        """Return True when the backing store can serve checks."""
        return True

    async def close(self) -> None:
        return None
