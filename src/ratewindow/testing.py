"""Testing utilities for rate-window.

This module provides utilities to help test code that uses rate limiting.
All utilities are store-agnostic and work with Memory, Redis, NATS, and PostgreSQL.

Example:
    >>> from ratewindow.testing import ManualClock, reset_all_stores
    >>>
    >>> # Start every test with empty counters
    >>> @pytest.fixture(autouse=True)
    ... async def clean_counters():
    ...     await reset_all_stores()
    ...     yield
    >>>
    >>> # Drive window expiry without sleeping
    >>> clock = ManualClock()
    >>> store = MemoryCounterStore(clock=clock)
    >>> clock.advance(60)
"""

from __future__ import annotations

import asyncio
import logging

from ratewindow.core import CounterStore
from ratewindow.exceptions import BackendError, BackendUnavailableError

logger = logging.getLogger(__name__)


async def reset_store(store: CounterStore | str) -> int:
    """Remove every counter of a store.

    WARNING: This is destructive and should only be used in tests. On shared
    stores (Redis, PostgreSQL, NATS) it deletes every counter under the
    store's key prefix, including ones written by other processes.

    Args:
        store: Store instance, or ID of a store configured in the registry

    Returns:
        Number of counters removed

    Raises:
        StoreNotFoundError: If store is an ID that is not configured
    """
    if isinstance(store, str):
        from ratewindow.registry import get_registry

        store_id = store
        store = get_registry().get_store(store_id)
        await get_registry().initialize_store(store_id)

    removed = await store.clear()
    logger.debug("Store %s reset (%d counters removed)", store.engine, removed)
    return removed


async def reset_all_stores() -> int:
    """Remove every counter of every store configured in the registry.

    Useful for test fixtures that need clean state between tests.

    Returns:
        Total number of counters removed
    """
    from ratewindow.registry import list_stores

    store_ids = list(list_stores())
    if not store_ids:
        logger.debug("No stores configured to reset")
        return 0

    removed = 0
    for store_id in store_ids:
        removed += await reset_store(store_id)

    logger.info("Reset %d stores (%d counters removed)", len(store_ids), removed)
    return removed


class ManualClock:
    """Clock for the memory store that only moves when told to.

    Example:
        >>> clock = ManualClock()
        >>> store = MemoryCounterStore(clock=clock)
        >>> await store.incr("k", 1, ttl=10)
        >>> clock.advance(10)
        >>> await store.get("k") is None
        True
    """

    def __init__(self, start: float = 0.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        """Move the clock forward."""
        if seconds < 0:
            raise ValueError(f"seconds must be >= 0, got {seconds}")
        self.now += seconds


class FailingCounterStore(CounterStore):
    """Counter store double whose operations fail or stall on demand.

    Every operation raises ``error`` (a BackendUnavailableError by default)
    after an optional ``delay``. Set ``error = None`` to make operations
    succeed with an empty store: counts start at the increment amount and
    nothing is kept.

    Attributes:
        error: Exception raised by every operation, or None
        delay: Seconds each operation sleeps before completing
        calls: Number of operations started
        completed: Number of operations that ran to the end (raised or returned)
    """

    def __init__(
        self,
        error: BackendError | None = None,
        delay: float = 0.0,
    ) -> None:
        self.error = error if error is not None else BackendUnavailableError(
            "Simulated store outage", store="failing"
        )
        self.delay = delay
        self.calls = 0
        self.completed = 0

    @classmethod
    def unavailable(cls, delay: float = 0.0) -> "FailingCounterStore":
        return cls(BackendUnavailableError("Simulated store outage", store="failing"), delay)

    @classmethod
    def faulty(cls, delay: float = 0.0) -> "FailingCounterStore":
        return cls(BackendError("Simulated store fault", store="failing"), delay)

    @classmethod
    def slow(cls, delay: float) -> "FailingCounterStore":
        """A store that succeeds after ``delay`` seconds."""
        store = cls(delay=delay)
        store.error = None
        return store

    @property
    def engine(self) -> str:
        return "failing"

    async def _operation(self) -> None:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        self.completed += 1
        if self.error is not None:
            raise self.error

    async def get(self, key: str) -> int | None:
        await self._operation()
        return None

    async def set(self, key: str, value: int, ttl: float) -> None:
        await self._operation()

    async def incr(self, key: str, amount: int, ttl: float) -> int:
        await self._operation()
        return amount

    async def ttl(self, key: str) -> float | None:
        await self._operation()
        return None

    async def delete(self, key: str) -> bool:
        await self._operation()
        return False

    async def clear(self) -> int:
        await self._operation()
        return 0


__all__ = [
    "reset_store",
    "reset_all_stores",
    "ManualClock",
    "FailingCounterStore",
]
