"""Compliance tests for the counter store contract.

All stores must implement get/set/incr/ttl/delete/clear with the same
semantics, so a limiter behaves identically on every engine.
"""

from __future__ import annotations

import asyncio

import pytest

from compliance.utils import get_test_engines
from ratewindow.core import CounterStore


pytestmark = [pytest.mark.compliance, pytest.mark.asyncio]

ENGINES = get_test_engines()


@pytest.mark.parametrize("store_factory", ENGINES, indirect=True)
class TestGetSet:
    """get() and set() semantics."""

    async def test_get_absent_key_returns_none(self, store: CounterStore) -> None:
        """A key never written has no count."""
        assert await store.get("missing") is None

    async def test_set_then_get(self, store: CounterStore) -> None:
        """set() creates a record readable by get()."""
        await store.set("key", 7, ttl=60)

        assert await store.get("key") == 7

    async def test_set_overwrites_existing_record(self, store: CounterStore) -> None:
        """set() replaces the count of an active record."""
        await store.incr("key", 5, ttl=60)
        await store.set("key", 2, ttl=60)

        assert await store.get("key") == 2

    async def test_set_zero_is_a_valid_count(self, store: CounterStore) -> None:
        """A record with count 0 exists and is distinct from an absent key."""
        await store.set("key", 0, ttl=60)

        assert await store.get("key") == 0

    async def test_set_rejects_negative_value(self, store: CounterStore) -> None:
        """Counts are non-negative."""
        with pytest.raises(ValueError):
            await store.set("key", -1, ttl=60)

    async def test_set_rejects_non_positive_ttl(self, store: CounterStore) -> None:
        """A window must have a positive length."""
        with pytest.raises(ValueError):
            await store.set("key", 1, ttl=0)


@pytest.mark.parametrize("store_factory", ENGINES, indirect=True)
class TestIncr:
    """incr() semantics."""

    async def test_incr_absent_key_creates_record(self, store: CounterStore) -> None:
        """The first increment returns the amount."""
        assert await store.incr("key", 1, ttl=60) == 1
        assert await store.get("key") == 1

    async def test_incr_with_amount(self, store: CounterStore) -> None:
        """A new record starts at the amount, later increments add to it."""
        assert await store.incr("key", 3, ttl=60) == 3
        assert await store.incr("key", 4, ttl=60) == 7

    async def test_incr_returns_consecutive_counts(self, store: CounterStore) -> None:
        """Sequential increments return 1..N."""
        counts = [await store.incr("key", 1, ttl=60) for _ in range(5)]

        assert counts == [1, 2, 3, 4, 5]

    async def test_incr_after_set(self, store: CounterStore) -> None:
        """Increments continue from a count written by set()."""
        await store.set("key", 10, ttl=60)

        assert await store.incr("key", 1, ttl=60) == 11

    async def test_incr_keeps_window_end(self, store: CounterStore) -> None:
        """Later increments do not extend the window (fixed window)."""
        await store.incr("key", 1, ttl=2)
        first_ttl = await store.ttl("key")

        await asyncio.sleep(0.2)
        await store.incr("key", 1, ttl=60)
        second_ttl = await store.ttl("key")

        assert first_ttl is not None and second_ttl is not None
        assert second_ttl <= first_ttl
        assert second_ttl < 2

    async def test_incr_rejects_negative_amount(self, store: CounterStore) -> None:
        """Counts never decrease."""
        with pytest.raises(ValueError):
            await store.incr("key", -1, ttl=60)

    async def test_keys_are_independent(self, store: CounterStore) -> None:
        """Increments of one key never change another."""
        await store.incr("a", 1, ttl=60)
        await store.incr("a", 1, ttl=60)

        assert await store.incr("b", 1, ttl=60) == 1
        assert await store.get("a") == 2

    async def test_keys_with_special_characters(self, store: CounterStore) -> None:
        """Keys are opaque strings."""
        key = "api:2001:db8::1 user@example.com/ü"

        assert await store.incr(key, 1, ttl=60) == 1
        assert await store.get(key) == 1


@pytest.mark.parametrize("store_factory", ENGINES, indirect=True)
class TestExpiry:
    """Expired records behave as absent."""

    async def test_get_after_expiry_returns_none(self, store: CounterStore) -> None:
        """get() never returns the count of an expired record."""
        await store.incr("key", 1, ttl=0.2)

        await asyncio.sleep(0.4)

        assert await store.get("key") is None

    async def test_incr_after_expiry_starts_new_window(self, store: CounterStore) -> None:
        """An increment of an expired record starts over at the amount."""
        await store.incr("key", 5, ttl=0.2)

        await asyncio.sleep(0.4)

        assert await store.incr("key", 1, ttl=60) == 1
        remaining = await store.ttl("key")
        assert remaining is not None and remaining > 50

    async def test_ttl_of_active_record(self, store: CounterStore) -> None:
        """ttl() reports the seconds left in the window."""
        await store.set("key", 1, ttl=30)

        remaining = await store.ttl("key")

        assert remaining is not None
        assert 25 < remaining <= 30

    async def test_ttl_of_absent_or_expired_record(self, store: CounterStore) -> None:
        """ttl() is None without an active record."""
        assert await store.ttl("missing") is None

        await store.set("key", 1, ttl=0.2)
        await asyncio.sleep(0.4)

        assert await store.ttl("key") is None


@pytest.mark.parametrize("store_factory", ENGINES, indirect=True)
class TestDeleteClear:
    """delete() and clear() semantics."""

    async def test_delete_existing_key(self, store: CounterStore) -> None:
        """delete() removes the record and reports it."""
        await store.incr("key", 1, ttl=60)

        assert await store.delete("key") is True
        assert await store.get("key") is None

    async def test_delete_absent_key(self, store: CounterStore) -> None:
        """delete() of an absent key reports nothing removed."""
        assert await store.delete("missing") is False

    async def test_incr_after_delete_starts_over(self, store: CounterStore) -> None:
        """A deleted counter starts a new window."""
        await store.incr("key", 3, ttl=60)
        await store.delete("key")

        assert await store.incr("key", 1, ttl=60) == 1

    async def test_clear_removes_every_record(self, store: CounterStore) -> None:
        """clear() empties the store."""
        for i in range(3):
            await store.incr(f"key{i}", 1, ttl=60)

        assert await store.clear() == 3
        for i in range(3):
            assert await store.get(f"key{i}") is None

    async def test_clear_empty_store(self, store: CounterStore) -> None:
        """clear() of an empty store removes nothing."""
        assert await store.clear() == 0


@pytest.mark.parametrize("store_factory", ENGINES, indirect=True)
class TestLifecycle:
    """initialize() and engine name."""

    async def test_initialize_is_idempotent(self, store: CounterStore) -> None:
        """A second initialize() keeps the store usable."""
        await store.incr("key", 1, ttl=60)
        await store.initialize()

        assert await store.get("key") == 1

    async def test_engine_name(self, store: CounterStore) -> None:
        """Every store reports its engine name."""
        assert store.engine in ("memory", "redis", "postgres", "nats")
