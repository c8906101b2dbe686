"""In-memory window store.

Notes:
- Per-process only: running multiple workers multiplies the effective limit.
  Use the Redis store whenever more than one process serves traffic.
- Thread-safe: uses a lock around shared state. ``admit`` runs entirely
  inside one critical section, which makes it atomic for this store.
"""

from __future__ import annotations

import bisect
import math
import threading
import time
from dataclasses import dataclass, field
from typing import Callable

from sliding_limiter.adapters.rate_limit.base import AbstractWindowStore


@dataclass
class _WindowSet:
    # (score, member) pairs kept sorted by score, then member
    markers: list[tuple[int, str]] = field(default_factory=list)
    expires_at: float | None = None


class InMemoryWindowStore(AbstractWindowStore):
    """Sorted-set emulation with idle expiry, kept in process memory.

    Mirrors the subset of sorted set semantics the limiter needs: members are
    unique per key, re-adding a member updates its score, and a key with an
    elapsed expiry behaves as if it never existed.
    """

    backend = "memory"

    def __init__(self, *, clock: Callable[[], float] = time.time) -> None:
        """Initialize the store.

        Args:
            clock: Time source returning UNIX time in seconds, used only for
                idle expiry.
        """
        self._clock = clock
        self._lock = threading.RLock()
        self._sets: dict[str, _WindowSet] = {}

    def _live_set(self, key: str) -> _WindowSet | None:
        """Return the set for key, dropping it first if its expiry elapsed."""
        window_set = self._sets.get(key)
        if window_set is None:
            return None
        if window_set.expires_at is not None and window_set.expires_at <= self._clock():
            del self._sets[key]
            return None
        return window_set

    def _drop_if_empty(self, key: str, window_set: _WindowSet) -> None:
        # Redis deletes a sorted set once its last member is removed
        if not window_set.markers:
            self._sets.pop(key, None)

    def _prune(self, key: str, threshold: int) -> int:
        window_set = self._live_set(key)
        if window_set is None:
            return 0
        cut = bisect.bisect_right(window_set.markers, threshold, key=lambda m: m[0])
        del window_set.markers[:cut]
        self._drop_if_empty(key, window_set)
        return cut

    def _count(self, key: str, low: float, high: float) -> int:
        window_set = self._live_set(key)
        if window_set is None:
            return 0
        scores = [score for score, _ in window_set.markers]
        return bisect.bisect_right(scores, high) - bisect.bisect_left(scores, low)

    def _insert(self, key: str, member: str, score: int) -> None:
        window_set = self._live_set(key)
        if window_set is None:
            window_set = self._sets[key] = _WindowSet()
        window_set.markers = [m for m in window_set.markers if m[1] != member]
        bisect.insort(window_set.markers, (score, member))

    def _expire(self, key: str, seconds: int) -> None:
        window_set = self._live_set(key)
        if window_set is not None:
            window_set.expires_at = self._clock() + seconds

    async def prune_before(self, key: str, threshold: int) -> int:
        with self._lock:
            return self._prune(key, threshold)

    async def count_in_range(self, key: str, low: float, high: float = math.inf) -> int:
        with self._lock:
            return self._count(key, low, high)

    async def insert(self, key: str, member: str, score: int) -> None:
        with self._lock:
            self._insert(key, member, score)

    async def set_expiry(self, key: str, seconds: int) -> None:
        with self._lock:
            self._expire(key, seconds)

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
        with self._lock:
            self._prune(key, window_start)
            count = self._count(key, -math.inf, math.inf)
            if count >= limit:
                return False, count
            self._insert(key, member, now)
            self._expire(key, ttl_seconds)
            return True, count

    def members(self, key: str) -> list[tuple[int, str]]:
        """Snapshot of the live markers for key, oldest first."""
        with self._lock:
            window_set = self._live_set(key)
            return list(window_set.markers) if window_set else []

    def ttl(self, key: str) -> float | None:
        """Seconds until key expires, or None when absent or without expiry."""
        with self._lock:
            window_set = self._live_set(key)
            if window_set is None or window_set.expires_at is None:
                return None
            return window_set.expires_at - self._clock()

    async def close(self) -> None:
        with self._lock:
            self._sets.clear()
