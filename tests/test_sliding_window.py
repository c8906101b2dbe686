"""Unit tests for the sliding window limiter."""

from __future__ import annotations

import asyncio
import itertools
import logging
from unittest.mock import AsyncMock, Mock

import pytest

from sliding_limiter.adapters.rate_limit.base import AbstractWindowStore
from sliding_limiter.adapters.rate_limit.in_memory import InMemoryWindowStore
from sliding_limiter.core.errors import ConfigurationAppError, StoreUnavailableAppError
from sliding_limiter.services.sliding_window import SlidingWindowRateLimiter

T0 = 1_700_000_000_000  # arbitrary epoch in ms


class YieldingStore(InMemoryWindowStore):
    """In-memory store that suspends before every operation, like a network round trip."""

    async def prune_before(self, key, threshold):
        await asyncio.sleep(0)
        return await super().prune_before(key, threshold)

    async def count_in_range(self, key, low, high=float("inf")):
        await asyncio.sleep(0)
        return await super().count_in_range(key, low, high)

    async def insert(self, key, member, score):
        await asyncio.sleep(0)
        await super().insert(key, member, score)

    async def set_expiry(self, key, seconds):
        await asyncio.sleep(0)
        await super().set_expiry(key, seconds)

    async def admit(self, key, **kwargs):
        await asyncio.sleep(0)
        return await super().admit(key, **kwargs)


class SlowStore(InMemoryWindowStore):
    async def admit(self, key, **kwargs):
        await asyncio.sleep(1)
        return await super().admit(key, **kwargs)


class StallingExpiryStore(InMemoryWindowStore):
    """Store whose expiry refresh is slower than the limiter's deadline."""

    def __init__(self, delay: float = 0.05) -> None:
        super().__init__()
        self.delay = delay
        self.expiry_calls = 0

    async def set_expiry(self, key, seconds):
        await asyncio.sleep(self.delay)
        self.expiry_calls += 1
        await super().set_expiry(key, seconds)


def make_limiter(store=None, **kwargs) -> SlidingWindowRateLimiter:
    counter = itertools.count()
    kwargs.setdefault("limit", 3)
    kwargs.setdefault("window_seconds", 10)
    kwargs.setdefault("nonce_factory", lambda: f"n{next(counter)}")
    return SlidingWindowRateLimiter(store or InMemoryWindowStore(), **kwargs)


def failing_store(exc: BaseException) -> AsyncMock:
    store = AsyncMock(spec=AbstractWindowStore)
    store.backend = "redis"
    store.admit.side_effect = exc
    store.prune_before.side_effect = exc
    return store


@pytest.mark.parametrize("atomic", [True, False])
class TestAdmission:
    """Algorithm behaviour, identical in atomic and non-atomic modes."""

    @pytest.mark.asyncio
    async def test_limit_three_window_ten_scenario(self, atomic: bool) -> None:
        limiter = make_limiter(atomic=atomic)

        results = [await limiter.check("c", now=T0 + s * 1000) for s in (0, 1, 2)]
        assert [r.allowed for r in results] == [True, True, True]
        assert [r.remaining for r in results] == [2, 1, 0]

        denied = await limiter.check("c", now=T0 + 3000)
        assert denied.allowed is False
        assert denied.remaining == 0
        assert denied.limit == 3

        # Window (1000, 11000]: markers at 0s and 1s are both pruned
        later = await limiter.check("c", now=T0 + 11_000)
        assert later.allowed is True
        assert later.remaining == 1

    @pytest.mark.asyncio
    async def test_only_oldest_marker_slides_out(self, atomic: bool) -> None:
        limiter = make_limiter(atomic=atomic)
        for s in (0, 1, 2):
            await limiter.check("c", now=T0 + s * 1000)

        result = await limiter.check("c", now=T0 + 10_500)

        assert result.allowed is True
        assert result.remaining == 0

    @pytest.mark.asyncio
    async def test_boundary_exclusion(self, atomic: bool) -> None:
        limiter = make_limiter(limit=1, window_seconds=10, atomic=atomic)

        assert (await limiter.check("c", now=T0)).allowed is True
        assert (await limiter.check("c", now=T0 + 9_000)).allowed is False
        assert (await limiter.check("c", now=T0 + 11_000)).allowed is True

    @pytest.mark.asyncio
    async def test_marker_exactly_at_window_start_is_pruned(self, atomic: bool) -> None:
        limiter = make_limiter(limit=1, window_seconds=10, atomic=atomic)

        await limiter.check("c", now=T0)

        assert (await limiter.check("c", now=T0 + 9_999)).allowed is False
        assert (await limiter.check("c", now=T0 + 10_000)).allowed is True

    @pytest.mark.asyncio
    async def test_denied_request_does_not_mutate_window(self, atomic: bool) -> None:
        store = InMemoryWindowStore()
        limiter = make_limiter(store, limit=2, atomic=atomic)
        await limiter.check("c", now=T0)
        await limiter.check("c", now=T0 + 100)
        before = store.members(limiter.key_for("c"))

        denied = await limiter.check("c", now=T0 + 200)

        assert denied.allowed is False
        assert store.members(limiter.key_for("c")) == before

    @pytest.mark.asyncio
    async def test_client_held_at_ceiling_does_not_extend_its_window(self, atomic: bool) -> None:
        limiter = make_limiter(limit=1, window_seconds=10, atomic=atomic)
        await limiter.check("c", now=T0)

        for offset in range(1_000, 10_000, 1_000):
            assert (await limiter.check("c", now=T0 + offset)).allowed is False

        assert (await limiter.check("c", now=T0 + 10_001)).allowed is True

    @pytest.mark.asyncio
    async def test_remaining_stays_within_bounds(self, atomic: bool) -> None:
        limiter = make_limiter(limit=4, atomic=atomic)

        for i in range(8):
            decision = await limiter.check("c", now=T0 + i)
            assert 0 <= decision.remaining <= decision.limit
            if not decision.allowed:
                assert decision.remaining == 0

    @pytest.mark.asyncio
    async def test_identities_are_isolated(self, atomic: bool) -> None:
        limiter = make_limiter(limit=1, atomic=atomic)

        assert (await limiter.check("a", now=T0)).allowed is True
        assert (await limiter.check("a", now=T0)).allowed is False
        assert (await limiter.check("b", now=T0)).allowed is True

    @pytest.mark.asyncio
    async def test_same_millisecond_requests_get_distinct_markers(self, atomic: bool) -> None:
        store = InMemoryWindowStore()
        limiter = make_limiter(store, limit=3, atomic=atomic)

        for _ in range(3):
            assert (await limiter.check("c", now=T0)).allowed is True

        members = store.members(limiter.key_for("c"))
        assert len(members) == 3
        assert {score for score, _ in members} == {T0}

    @pytest.mark.asyncio
    async def test_admission_refreshes_idle_expiry(self, atomic: bool) -> None:
        clock = Mock(return_value=1000.0)
        store = InMemoryWindowStore(clock=clock)
        limiter = make_limiter(store, window_seconds=10, atomic=atomic)

        await limiter.check("c", now=T0)
        assert store.ttl(limiter.key_for("c")) == pytest.approx(10)

        clock.return_value = 1005.0
        await limiter.check("c", now=T0 + 5_000)
        assert store.ttl(limiter.key_for("c")) == pytest.approx(10)

        clock.return_value = 1015.0
        assert store.members(limiter.key_for("c")) == []


class TestConcurrency:
    """Races between concurrent checks for one identity."""

    @pytest.mark.asyncio
    async def test_atomic_mode_never_overadmits(self) -> None:
        store = YieldingStore()
        limiter = make_limiter(store, limit=5, atomic=True, store_timeout_seconds=None)

        decisions = await asyncio.gather(*(limiter.check("c", now=T0) for _ in range(20)))

        assert sum(d.allowed for d in decisions) == 5
        assert len(store.members(limiter.key_for("c"))) == 5

    @pytest.mark.asyncio
    async def test_non_atomic_overshoot_is_bounded(self) -> None:
        n, limit = 10, 3
        store = YieldingStore()
        limiter = make_limiter(store, limit=limit, atomic=False, store_timeout_seconds=None)

        decisions = await asyncio.gather(*(limiter.check("c", now=T0) for _ in range(n)))
        admitted = sum(d.allowed for d in decisions)

        # Every racer saw an empty window before anyone inserted
        assert limit < admitted <= limit + n - 1
        assert all(0 <= d.remaining <= limit for d in decisions)


class TestStoreFailures:
    """Fail-open / fail-closed policy."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("atomic", [True, False])
    async def test_fail_open_admits_with_limit_minus_one(self, atomic: bool) -> None:
        store = failing_store(StoreUnavailableAppError(code="store_unavailable", message="down"))
        limiter = make_limiter(store, limit=5, atomic=atomic, failure_policy="open")

        decision = await limiter.check("c", now=T0)

        assert decision.allowed is True
        assert decision.remaining == 4
        assert decision.degraded is True

    @pytest.mark.asyncio
    async def test_fail_closed_denies(self) -> None:
        store = failing_store(StoreUnavailableAppError(code="store_unavailable", message="down"))
        limiter = make_limiter(store, limit=5, failure_policy="closed")

        decision = await limiter.check("c", now=T0)

        assert decision.allowed is False
        assert decision.remaining == 0
        assert decision.degraded is True

    @pytest.mark.asyncio
    @pytest.mark.parametrize("policy, allowed", [("open", True), ("closed", False)])
    async def test_timeout_resolves_to_policy(self, policy: str, allowed: bool) -> None:
        limiter = make_limiter(
            SlowStore(), failure_policy=policy, store_timeout_seconds=0.01
        )

        decision = await limiter.check("c", now=T0)

        assert decision.allowed is allowed
        assert decision.degraded is True

    @pytest.mark.asyncio
    async def test_empty_store_result_counts_as_zero(self) -> None:
        store = AsyncMock(spec=AbstractWindowStore)
        store.admit.return_value = (True, 0)
        limiter = make_limiter(store, limit=5)

        decision = await limiter.check("c", now=T0)

        assert decision.allowed is True
        assert decision.remaining == 4
        assert decision.degraded is False
        store.admit.assert_awaited_once()
        assert store.admit.await_args.kwargs["window_start"] == T0 - 10_000

    @pytest.mark.asyncio
    async def test_store_failure_is_logged(self, caplog: pytest.LogCaptureFixture) -> None:
        store = failing_store(StoreUnavailableAppError(code="store_unavailable", message="down"))
        limiter = make_limiter(store)

        with caplog.at_level(logging.ERROR, logger="sliding_limiter.services.sliding_window"):
            await limiter.check("203.0.113.7", now=T0)

        records = [r for r in caplog.records if r.getMessage() == "rate_limit.store_unavailable"]
        assert len(records) == 1
        assert records[0].failure_policy == "open"
        assert "203.0.113.7" not in records[0].key_hash

    @pytest.mark.asyncio
    async def test_slow_expiry_refresh_admits_and_still_sets_ttl(self) -> None:
        store = StallingExpiryStore(delay=0.05)
        limiter = make_limiter(
            store,
            limit=1,
            atomic=False,
            failure_policy="closed",
            store_timeout_seconds=0.01,
        )
        key = limiter.key_for("c")

        decision = await limiter.check("c", now=T0)

        # The marker is recorded, so the request counts as admitted
        assert decision.allowed is True
        assert decision.degraded is False
        assert len(store.members(key)) == 1

        await asyncio.sleep(0.1)
        assert store.expiry_calls == 1
        assert store.ttl(key) == pytest.approx(10, abs=1)

        # The recorded marker holds the only slot
        assert (await limiter.check("c", now=T0 + 1)).allowed is False

    @pytest.mark.asyncio
    async def test_close_waits_for_deferred_expiry_refresh(self) -> None:
        store = StallingExpiryStore(delay=0.05)
        limiter = make_limiter(store, atomic=False, store_timeout_seconds=0.01)

        await limiter.check("c", now=T0)
        assert store.expiry_calls == 0

        await limiter.close()

        assert store.expiry_calls == 1

    @pytest.mark.asyncio
    async def test_failed_expiry_refresh_keeps_admission(self) -> None:
        store = InMemoryWindowStore()
        store.set_expiry = AsyncMock(
            side_effect=StoreUnavailableAppError(code="store_unavailable", message="down")
        )
        limiter = make_limiter(store, atomic=False, failure_policy="closed")

        decision = await limiter.check("c", now=T0)

        assert decision.allowed is True
        assert decision.degraded is False
        assert len(store.members(limiter.key_for("c"))) == 1

    @pytest.mark.asyncio
    async def test_unexpected_errors_propagate(self) -> None:
        limiter = make_limiter(failing_store(RuntimeError("bug")))

        with pytest.raises(RuntimeError):
            await limiter.check("c", now=T0)


class TestConfiguration:
    @pytest.mark.parametrize(
        "kwargs",
        [
            {"limit": 0, "window_seconds": 60},
            {"limit": 1, "window_seconds": 0},
            {"limit": -5, "window_seconds": 60},
            {"limit": 1, "window_seconds": 60, "failure_policy": "maybe"},
        ],
    )
    def test_invalid_constructor_args(self, kwargs: dict) -> None:
        with pytest.raises(ConfigurationAppError):
            SlidingWindowRateLimiter(InMemoryWindowStore(), **kwargs)

    @pytest.mark.asyncio
    async def test_empty_identity_is_rejected(self) -> None:
        with pytest.raises(ValueError):
            await make_limiter().check("")

    @pytest.mark.asyncio
    async def test_uses_clock_when_now_is_omitted(self) -> None:
        store = InMemoryWindowStore()
        limiter = make_limiter(store, clock=Mock(return_value=T0))

        await limiter.check("c")

        assert store.members("ratelimit:c")[0][0] == T0

    @pytest.mark.asyncio
    async def test_key_prefix_namespaces_identities(self) -> None:
        store = InMemoryWindowStore()
        limiter = make_limiter(store, key_prefix="rl:test:")

        await limiter.check("203.0.113.7", now=T0)

        assert store.members("rl:test:203.0.113.7")
        assert limiter.key_for("x") == "rl:test:x"
