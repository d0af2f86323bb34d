"""Fixed-window admission decisions on top of a CounterStore.

Each request for an identifier increments the counter of the current window
for that identifier; the request is admitted while the returned count stays
within the limit. The limiter itself is stateless apart from its immutable
configuration and metrics, so one instance can be shared by any number of
concurrent tasks.

Note: a fixed window admits up to ``2 * limit`` requests across a window
boundary (``limit`` at the end of one window, ``limit`` at the start of the
next).
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable
from typing import TypeVar

from ratewindow.contrib.prometheus.metrics import (
    record_backend_failure,
    record_decision,
    record_fallback_activation,
)
from ratewindow.core import CounterStore, RateLimiterMetrics
from ratewindow.exceptions import BackendError, BackendUnavailableError
from ratewindow.schemas import LimiterReadOnlyConfig, LimiterState, RateLimitResult, Reason

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RateLimiter:
    """Per-key fixed-window rate limiter.

    Admission runs a single atomic ``incr`` on the store, so concurrent
    requests for the same key always observe consecutive counts and never
    admit more than ``limit`` requests per window.

    When the store fails (``BackendError``, including unavailability and
    timeouts), the decision follows the failure policy:

    - fail-open (default): admit the request
    - fail-closed: reject the request

    Store errors never escape ``allow()`` or ``check()``.

    Example:
        >>> limiter = RateLimiter(MemoryCounterStore(), limit=100, window_seconds=60, name="api")
        >>> if not await limiter.allow(client_ip):
        ...     return Response(status_code=429)
    """

    def __init__(
        self,
        store: CounterStore,
        limit: int,
        window_seconds: float,
        *,
        name: str = "default",
        fail_closed: bool = False,
        timeout: float | None = None,
    ) -> None:
        """Initialize the rate limiter. Does not touch the store.

        Args:
            store: Counter store shared with other limiters
            limit: Maximum requests admitted per window (0 rejects everything)
            window_seconds: Window length in seconds
            name: Namespace of this limiter's keys ("{name}:{identifier}")
            fail_closed: If True, reject requests when the store fails.
                If False (default), admit them (fail-open).
            timeout: Seconds to wait for a store round trip (None = no timeout).
                A timeout is handled like an unavailable store.

        Raises:
            ValueError: If limit, window_seconds, timeout or name is invalid
        """
        if isinstance(limit, bool) or not isinstance(limit, int) or limit < 0:
            raise ValueError(f"limit must be an int >= 0, got {limit!r}")

        if window_seconds <= 0:
            raise ValueError(f"window_seconds must be > 0, got {window_seconds}")

        if timeout is not None and timeout <= 0:
            raise ValueError(f"timeout must be > 0, got {timeout}")

        if not name or not name.strip():
            raise ValueError("name cannot be empty")

        self._store = store
        self._limit = limit
        self._window = float(window_seconds)
        self._name = name.strip()
        self._fail_closed = fail_closed
        self._timeout = timeout
        self._metrics = RateLimiterMetrics()
        self._pending: set[asyncio.Task] = set()

    def __repr__(self) -> str:
        return (
            f"RateLimiter(name={self._name!r}, limit={self._limit}, "
            f"window_seconds={self._window}, store={self._store.engine!r})"
        )

    @property
    def name(self) -> str:
        return self._name

    @property
    def store(self) -> CounterStore:
        return self._store

    @property
    def limit(self) -> int:
        return self._limit

    @property
    def window_seconds(self) -> float:
        return self._window

    @property
    def fail_closed(self) -> bool:
        return self._fail_closed

    @property
    def timeout(self) -> float | None:
        return self._timeout

    def key_for(self, identifier: str) -> str:
        """Storage key of the counter for an identifier."""
        return f"{self._name}:{identifier}"

    def _on_store_call_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        # Marks the exception as retrieved for calls abandoned by their caller
        if not task.cancelled() and task.exception() is not None:
            logger.debug("Store call for limiter '%s' failed: %s", self._name, task.exception())

    async def _store_call(self, operation: str, call: Awaitable[T]) -> T:
        """Await a store call, bounded by the timeout.

        The call runs as its own task behind ``asyncio.shield``, so neither a
        timeout nor the cancellation of the caller interrupts it: a request
        already counted by the store stays counted.

        Raises:
            BackendUnavailableError: If the timeout expires
            BackendError: If the store fails
        """
        task = asyncio.ensure_future(call)
        self._pending.add(task)
        task.add_done_callback(self._on_store_call_done)

        if self._timeout is None:
            return await asyncio.shield(task)

        try:
            return await asyncio.wait_for(asyncio.shield(task), self._timeout)
        except TimeoutError as e:
            raise BackendUnavailableError(
                f"Store {operation} timed out after {self._timeout}s",
                store=self._store.engine,
            ) from e

    def _fallback(self, error: BackendError, reason: Reason) -> bool:
        allowed = not self._fail_closed
        policy = "fail_closed" if self._fail_closed else "fail_open"

        self._metrics.record_fallback(allowed)
        record_backend_failure(
            self._name,
            self._store.engine,
            "unavailable" if reason == "backend_unavailable" else "error",
        )
        record_fallback_activation(self._name, policy)

        logger.warning(
            "Counter store failure for limiter '%s', %s request (%s): %s",
            self._name,
            "allowing" if allowed else "rejecting",
            policy,
            error,
        )
        return allowed

    async def _decide(self, identifier: str) -> tuple[bool, int | None, Reason]:
        """Count the request and decide.

        Returns:
            Tuple of (allowed, count returned by the store or None, reason)
        """
        if self._limit == 0:
            self._metrics.record_decision(False)
            record_decision(self._name, self._store.engine, "limit_exceeded")
            return False, None, "limit_exceeded"

        key = self.key_for(identifier)
        try:
            count = await self._store_call("incr", self._store.incr(key, 1, self._window))
        except BackendUnavailableError as e:
            reason: Reason = "backend_unavailable"
            allowed = self._fallback(e, reason)
            record_decision(self._name, self._store.engine, reason)
            return allowed, None, reason
        except BackendError as e:
            reason = "backend_error"
            allowed = self._fallback(e, reason)
            record_decision(self._name, self._store.engine, reason)
            return allowed, None, reason

        allowed = count <= self._limit
        reason = "allowed" if allowed else "limit_exceeded"
        self._metrics.record_decision(allowed)
        record_decision(self._name, self._store.engine, reason)

        if not allowed:
            logger.debug(
                "Limiter '%s' rejected '%s' (count=%d, limit=%d)",
                self._name,
                identifier,
                count,
                self._limit,
            )

        return allowed, count, reason

    async def allow(self, identifier: str) -> bool:
        """Decide whether a request from identifier is admitted.

        Every call counts as a request, admitted or not.

        Args:
            identifier: Client identifier (IP address, API key, ...)

        Returns:
            True if the request is admitted
        """
        allowed, _, _ = await self._decide(identifier)
        return allowed

    async def check(self, identifier: str) -> RateLimitResult:
        """Decide like allow() and describe the outcome.

        ``reset_in`` is read from the store after counting (one extra round
        trip); if that read fails the window length is reported instead.

        Args:
            identifier: Client identifier (IP address, API key, ...)

        Returns:
            RateLimitResult with the decision, remaining budget and reason
        """
        allowed, count, reason = await self._decide(identifier)

        if count is None:
            remaining = self._limit if allowed and self._limit else 0
            return RateLimitResult(
                allowed=allowed,
                limit=self._limit,
                remaining=remaining,
                reset_in=self._window,
                count=None,
                reason=reason,
                limiter_id=self._name,
            )

        reset_in = self._window
        try:
            ttl = await self._store_call("ttl", self._store.ttl(self.key_for(identifier)))
            if ttl is not None:
                reset_in = ttl
        except BackendError as e:
            logger.debug("Could not read window end for limiter '%s': %s", self._name, e)

        return RateLimitResult(
            allowed=allowed,
            limit=self._limit,
            remaining=max(0, self._limit - count),
            reset_in=reset_in,
            count=count,
            reason=reason,
            limiter_id=self._name,
        )

    async def peek(self, identifier: str) -> LimiterState:
        """Return the current window state for identifier without counting a request.

        Raises:
            BackendError: If the store fails (no failure policy applies here)
        """
        key = self.key_for(identifier)
        count = await self._store_call("get", self._store.get(key)) or 0

        remaining_s = None
        if count:
            remaining_s = await self._store_call("ttl", self._store.ttl(key))

        return LimiterState(
            allowed=count < self._limit,
            remaining=max(0, self._limit - count),
            reset_at=int(time.time() + (remaining_s if remaining_s is not None else self._window)),
            current_usage=count,
        )

    async def reset(self, identifier: str) -> None:
        """Start a fresh window with a zero count for identifier.

        Raises:
            BackendError: If the store fails
        """
        await self._store_call("set", self._store.set(self.key_for(identifier), 0, self._window))
        logger.info("Limiter '%s' reset for '%s'", self._name, identifier)

    def get_metrics(self) -> RateLimiterMetrics:
        """Return this limiter's decision metrics."""
        return self._metrics

    def get_config(self) -> LimiterReadOnlyConfig:
        """Return a read-only snapshot of this limiter's configuration."""
        return LimiterReadOnlyConfig(
            id=self._name,
            store_engine=self._store.engine,
            limit=self._limit,
            window_seconds=self._window,
            timeout=self._timeout,
            fail_closed=self._fail_closed,
        )
