"""Compliance tests for rate limiter decisions on every store.

Covers the window cap, window reset, per-key independence, concurrency
safety, lazy construction, the zero limit and the backend failure policy.
"""

from __future__ import annotations

import asyncio

import pytest

from compliance.utils import get_test_engines
from ratewindow.core import CounterStore
from ratewindow.exceptions import BackendError, BackendUnavailableError
from ratewindow.limiter import RateLimiter
from ratewindow.testing import FailingCounterStore


pytestmark = [pytest.mark.compliance, pytest.mark.asyncio]

ENGINES = get_test_engines()


@pytest.mark.parametrize("store_factory", ENGINES, indirect=True)
class TestWindowDecisions:
    """Admission decisions against a real store."""

    async def test_first_limit_calls_admitted(self, store: CounterStore) -> None:
        """limit=5: of 10 immediate calls the first 5 pass, the last 5 do not."""
        limiter = RateLimiter(store, limit=5, window_seconds=1, name="cap")

        results = [await limiter.allow("client") for _ in range(10)]

        assert results == [True] * 5 + [False] * 5

    async def test_window_resets_after_elapsing(self, store: CounterStore) -> None:
        """A rejected key is admitted again once its window has passed."""
        limiter = RateLimiter(store, limit=1, window_seconds=0.3, name="reset")

        assert await limiter.allow("client") is True
        await asyncio.sleep(0.1)
        assert await limiter.allow("client") is False
        await asyncio.sleep(0.4)
        assert await limiter.allow("client") is True

    async def test_identifiers_are_independent(self, store: CounterStore) -> None:
        """Exhausting identifier A leaves identifier B untouched."""
        limiter = RateLimiter(store, limit=2, window_seconds=60, name="keys")

        for _ in range(5):
            await limiter.allow("a")

        assert await limiter.allow("b") is True
        assert await store.get(limiter.key_for("b")) == 1

    async def test_concurrent_calls_within_limit_all_admitted(self, store: CounterStore) -> None:
        """N concurrent calls with limit >= N all pass and count exactly N."""
        n = 25
        limiter = RateLimiter(store, limit=n, window_seconds=60, name="conc")

        results = await asyncio.gather(*(limiter.allow("client") for _ in range(n)))

        assert all(results)
        assert await store.get(limiter.key_for("client")) == n

    async def test_construction_does_not_touch_store(self, store: CounterStore) -> None:
        """No counter exists before the first allow() call."""
        limiter = RateLimiter(store, limit=3, window_seconds=60, name="lazy")

        assert await store.get(limiter.key_for("client")) is None

        await limiter.allow("client")

        assert await store.get(limiter.key_for("client")) == 1

    async def test_zero_limit_rejects_everything(self, store: CounterStore) -> None:
        """limit=0 rejects every call and never writes a counter."""
        limiter = RateLimiter(store, limit=0, window_seconds=60, name="zero")

        results = [await limiter.allow("client") for _ in range(3)]

        assert results == [False, False, False]
        assert await store.get(limiter.key_for("client")) is None

    async def test_limiter_namespaces_share_nothing(self, store: CounterStore) -> None:
        """Two limiters with different names keep separate counters."""
        login = RateLimiter(store, limit=1, window_seconds=60, name="login")
        api = RateLimiter(store, limit=1, window_seconds=60, name="api")

        assert await login.allow("client") is True
        assert await api.allow("client") is True
        assert await login.allow("client") is False


class TestFailurePolicy:
    """Store failures follow the configured policy (no store needed)."""

    @pytest.mark.parametrize(
        "error",
        [
            BackendUnavailableError("down", store="failing"),
            BackendError("broken", store="failing"),
        ],
    )
    async def test_fail_open_admits_consistently(self, error: BackendError) -> None:
        limiter = RateLimiter(FailingCounterStore(error), limit=1, window_seconds=60)

        results = [await limiter.allow("client") for _ in range(5)]

        assert results == [True] * 5

    @pytest.mark.parametrize(
        "error",
        [
            BackendUnavailableError("down", store="failing"),
            BackendError("broken", store="failing"),
        ],
    )
    async def test_fail_closed_rejects_consistently(self, error: BackendError) -> None:
        limiter = RateLimiter(
            FailingCounterStore(error), limit=100, window_seconds=60, fail_closed=True
        )

        results = [await limiter.allow("client") for _ in range(5)]

        assert results == [False] * 5

    async def test_zero_limit_ignores_failing_store(self) -> None:
        """limit=0 rejects without consulting the store, even under fail-open."""
        store = FailingCounterStore.unavailable()
        limiter = RateLimiter(store, limit=0, window_seconds=60)

        assert await limiter.allow("client") is False
        assert store.calls == 0
