"""Core abstractions for fixed-window admission control.

This module defines the counter storage contract every backend implements
(in-memory, Redis, PostgreSQL, NATS KV) and the observability metrics kept
by each rate limiter.
"""

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass
class RateLimiterMetrics:
    """Observability metrics for a rate limiter.

    Attributes:
        total_checks: Number of admission decisions taken
        allowed: Decisions that admitted the request
        rejected: Decisions that rejected the request because of the limit
        backend_failures: Store operations that raised a BackendError
        fallback_allowed: Requests admitted by the fail-open policy
        fallback_rejected: Requests rejected by the fail-closed policy
        last_decision_at: Timestamp of the last decision
    """

    total_checks: int = 0
    allowed: int = 0
    rejected: int = 0
    backend_failures: int = 0
    fallback_allowed: int = 0
    fallback_rejected: int = 0
    last_decision_at: float | None = None

    def record_decision(self, allowed: bool) -> None:
        """Record a decision taken from a store count."""
        self.total_checks += 1
        if allowed:
            self.allowed += 1
        else:
            self.rejected += 1
        self.last_decision_at = time.time()

    def record_fallback(self, allowed: bool) -> None:
        """Record a decision taken by the backend failure policy."""
        self.total_checks += 1
        self.backend_failures += 1
        if allowed:
            self.fallback_allowed += 1
        else:
            self.fallback_rejected += 1
        self.last_decision_at = time.time()


def validate_counter_args(value: int, ttl: float, name: str = "amount") -> None:
    """Validate arguments shared by set() and incr().

    Raises:
        ValueError: If value is not a non-negative int or ttl is not positive
    """
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValueError(f"{name} must be an int >= 0, got {value!r}")
    if ttl <= 0:
        raise ValueError(f"ttl must be > 0, got {ttl}")


class CounterStore(ABC):
    """Abstract contract for counter storage backends.

    A store maps string keys to counter records ``{count, expires_at}``.
    Records whose window has elapsed behave as if they did not exist.

    ``incr`` is the only operation on the admission hot path and MUST be
    atomic per key: N concurrent increments of an absent key return exactly
    the values 1..N. Implementations must never build it from get() + set().

    Example usage:
        >>> store = MemoryCounterStore()
        >>> await store.initialize()
        >>> await store.incr("api:10.0.0.1", 1, ttl=60)
        1
        >>> await store.get("api:10.0.0.1")
        1
    """

    @property
    @abstractmethod
    def engine(self) -> str:
        """Engine name of this store ("memory", "redis", ...)."""

    @abstractmethod
    async def get(self, key: str) -> int | None:
        """Return the count of the active record for key, or None.

        Raises:
            BackendUnavailableError: If the store cannot be reached
            BackendError: On any other store fault
        """

    @abstractmethod
    async def set(self, key: str, value: int, ttl: float) -> None:
        """Unconditionally (re)create the record for key with a fresh window.

        Args:
            key: Counter key
            value: Count to store (int >= 0)
            ttl: Window length in seconds, starting now

        Raises:
            BackendUnavailableError: If the store cannot be reached
            BackendError: On any other store fault
        """

    @abstractmethod
    async def incr(self, key: str, amount: int, ttl: float) -> int:
        """Atomically add amount to the record for key and return the new count.

        If no active record exists, one is created with count = amount and a
        window of ttl seconds. Otherwise the count grows and the window end is
        left unchanged (fixed window).

        Raises:
            BackendUnavailableError: If the store cannot be reached
            BackendError: On any other store fault
        """

    @abstractmethod
    async def ttl(self, key: str) -> float | None:
        """Return seconds left in the active window for key, or None."""

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Remove the record for key. Returns True if a record was removed."""

    @abstractmethod
    async def clear(self) -> int:
        """Remove every record owned by this store. Returns the number removed."""

    async def initialize(self) -> None:
        """Prepare the store for use (connect, create tables, ...).

        Idempotent. The default implementation does nothing.
        """

    async def close(self) -> None:
        """Release resources held by the store. The default does nothing."""
