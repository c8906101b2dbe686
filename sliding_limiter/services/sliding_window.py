"""Sliding window rate limiter over a shared window store.

The counting interval for a client is ``(now - window, now]`` and moves
continuously with the clock instead of resetting on fixed ticks. For each
check the limiter:

1. prunes the client's markers scored at or below ``now - window``,
2. counts the survivors,
3. denies without recording anything when the count reached the limit,
4. otherwise records a marker at ``now`` and refreshes the set's idle expiry.

The limiter keeps no per-client state in the process. Every horizontally
scaled instance reads and writes the same store, so all of them enforce one
shared quota.

Atomicity:
    With ``atomic=True`` steps 1-4 run through ``store.admit`` as a single
    store-side unit (a Lua script on Redis) and the limit is never exceeded.
    With ``atomic=False`` the steps are separate store calls; N concurrent
    checks for one client can all observe a free slot, overshooting the limit
    by at most N - 1.

Store failures:
    A store error or a store call exceeding ``store_timeout_seconds`` never
    propagates. It resolves to the configured failure policy: ``open`` admits
    with ``remaining = limit - 1``, ``closed`` denies. Both are flagged as
    ``degraded`` on the decision and logged. In non-atomic mode the deadline
    applies per store call, and a marker whose insert has started is always
    followed by an expiry refresh, even past the deadline.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from typing import Callable

from sliding_limiter.adapters.rate_limit.base import (
    AbstractRateLimiter,
    AbstractWindowStore,
    RateLimitDecision,
)
from sliding_limiter.core.errors import ConfigurationAppError, StoreUnavailableAppError
from sliding_limiter.core.logging import identity_hash

logger = logging.getLogger(__name__)

FAILURE_POLICIES = ("open", "closed")


def wall_clock_ms() -> int:
    """Current UNIX time in integer milliseconds."""
    return time.time_ns() // 1_000_000


def random_nonce() -> str:
    """Unique marker member; only disambiguates same-millisecond markers."""
    return uuid.uuid4().hex


class SlidingWindowRateLimiter(AbstractRateLimiter):
    """Per-client sliding window limiter backed by an ``AbstractWindowStore``."""

    def __init__(
        self,
        store: AbstractWindowStore,
        *,
        limit: int,
        window_seconds: int,
        key_prefix: str = "ratelimit:",
        atomic: bool = True,
        failure_policy: str = "open",
        store_timeout_seconds: float | None = 0.5,
        clock: Callable[[], int] = wall_clock_ms,
        nonce_factory: Callable[[], str] = random_nonce,
    ) -> None:
        """Initialize the limiter.

        Args:
            store: Shared window store.
            limit: Maximum admitted requests per window.
            window_seconds: Window length in seconds.
            key_prefix: Namespace prepended to identities in the store.
            atomic: Run prune/count/insert as one store-side unit.
            failure_policy: ``open`` or ``closed`` when the store is unavailable.
            store_timeout_seconds: Deadline per store round trip; None disables it.
            clock: Time source returning epoch milliseconds.
            nonce_factory: Source of unique marker members.

        Raises:
            ConfigurationAppError: If limit, window or policy are invalid.
        """
        if limit < 1:
            raise ConfigurationAppError(
                code="rate_limit_invalid_limit",
                message="limit must be >= 1",
                details={"limit": limit},
            )
        if window_seconds < 1:
            raise ConfigurationAppError(
                code="rate_limit_invalid_window",
                message="window_seconds must be >= 1",
            )
        if failure_policy not in FAILURE_POLICIES:
            raise ConfigurationAppError(
                code="rate_limit_invalid_failure_policy",
                message=f"failure_policy must be one of {FAILURE_POLICIES}, got '{failure_policy}'",
            )

        self._store = store
        self._limit = limit
        self._window_seconds = window_seconds
        self._window_ms = window_seconds * 1000
        self._key_prefix = key_prefix
        self._atomic = atomic
        self._failure_policy = failure_policy
        self._timeout = store_timeout_seconds
        self._clock = clock
        self._nonce_factory = nonce_factory
        self._deferred: set[asyncio.Task] = set()

    @property
    def store(self) -> AbstractWindowStore:
        return self._store

    @property
    def limit(self) -> int:
        return self._limit

    @property
    def window_seconds(self) -> int:
        return self._window_seconds

    def key_for(self, identity: str) -> str:
        return f"{self._key_prefix}{identity}"

    async def _bounded(self, awaitable):
        if self._timeout is None:
            return await awaitable
        return await asyncio.wait_for(awaitable, timeout=self._timeout)

    async def _record(self, key: str, now: int) -> None:
        """Insert a marker and refresh the set's idle expiry.

        Once the insert landed the slot is consumed, so a failed expiry
        refresh is logged instead of turning the admission into a denial.
        """
        await self._store.insert(key, self._nonce_factory(), now)
        try:
            await self._store.set_expiry(key, self._window_seconds)
        except StoreUnavailableAppError as exc:
            logger.warning(
                "rate_limit.expiry_refresh_failed",
                extra={"backend": self._store.backend, "error_type": type(exc).__name__},
            )

    def _on_deferred_record_done(self, task: asyncio.Task) -> None:
        self._deferred.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "rate_limit.deferred_record_failed",
                extra={"backend": self._store.backend, "error_type": type(exc).__name__},
            )

    async def _check_and_record(self, key: str, window_start: int, now: int) -> tuple[bool, int]:
        """Non-atomic check-then-act: four separate store round trips.

        Prune and count each get their own deadline. Insert and expiry
        refresh run as one shielded unit: when the deadline fires while they
        are in flight they finish in the background and the request is
        admitted, since its slot is already taken.
        """
        await self._bounded(self._store.prune_before(key, window_start))
        count = await self._bounded(self._store.count_in_range(key, window_start + 1))
        if count >= self._limit:
            return False, count

        recording = asyncio.ensure_future(self._record(key, now))
        try:
            await self._bounded(asyncio.shield(recording))
        except asyncio.TimeoutError:
            self._deferred.add(recording)
            recording.add_done_callback(self._on_deferred_record_done)
            logger.warning(
                "rate_limit.record_deferred",
                extra={"backend": self._store.backend, "timeout_s": self._timeout},
            )
        return True, count

    async def _run(self, key: str, window_start: int, now: int) -> tuple[bool, int]:
        if self._atomic:
            return await self._bounded(
                self._store.admit(
                    key,
                    window_start=window_start,
                    now=now,
                    limit=self._limit,
                    ttl_seconds=self._window_seconds,
                    member=self._nonce_factory(),
                )
            )
        return await self._check_and_record(key, window_start, now)

    async def check(self, identity: str, now: int | None = None) -> RateLimitDecision:
        """Decide whether ``identity`` may issue one more request.

        Args:
            identity: Client identity (IP address, API key, ...).
            now: Current time in epoch milliseconds; defaults to the clock.

        Returns:
            RateLimitDecision. Denials are decisions, never exceptions.

        Raises:
            ValueError: If identity is empty.
        """
        if not identity:
            raise ValueError("identity must be a non-empty string")

        now = self._clock() if now is None else now
        key = self.key_for(identity)
        window_start = now - self._window_ms

        try:
            admitted, count = await self._run(key, window_start, now)
        except (StoreUnavailableAppError, asyncio.TimeoutError) as exc:
            return self._on_store_failure(identity, exc)

        if not admitted:
            return RateLimitDecision(
                allowed=False,
                limit=self._limit,
                remaining=0,
                reset_after_seconds=self._window_seconds,
            )

        return RateLimitDecision(
            allowed=True,
            limit=self._limit,
            remaining=max(0, self._limit - (count + 1)),
            reset_after_seconds=self._window_seconds,
        )

    def _on_store_failure(self, identity: str, exc: Exception) -> RateLimitDecision:
        """Resolve a store failure to the configured fail-open/fail-closed policy."""
        fail_open = self._failure_policy == "open"
        logger.error(
            "rate_limit.store_unavailable",
            extra={
                "backend": self._store.backend,
                "key_hash": identity_hash(identity),
                "error_type": type(exc).__name__,
                "failure_policy": self._failure_policy,
                "allowed": fail_open,
            },
        )
        return RateLimitDecision(
            allowed=fail_open,
            limit=self._limit,
            remaining=self._limit - 1 if fail_open else 0,
            reset_after_seconds=self._window_seconds,
            degraded=True,
        )

    async def ready(self) -> bool:
        try:
            return await asyncio.wait_for(self._store.ping(), timeout=self._timeout)
        except (StoreUnavailableAppError, asyncio.TimeoutError):
            return False

    async def close(self) -> None:
        if self._deferred:
            await asyncio.gather(*self._deferred, return_exceptions=True)
        await self._store.close()
