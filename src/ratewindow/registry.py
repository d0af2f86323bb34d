"""Global registry for managing counter stores and rate limiters.

This module provides a centralized registry with dual storage:
- Stores: reusable store configurations (memory, Redis, PostgreSQL, NATS)
  and their lazily-created instances
- Limiters: limiter configurations that reference a store, and their instances

Every limiter referencing a store shares the same store instance, so one
connection pool serves all of them.
"""

import asyncio
import logging
from dataclasses import asdict, dataclass, field
from typing import Any

from ratewindow.core import CounterStore
from ratewindow.exceptions import BackendError, LimiterNotFoundError, StoreNotFoundError
from ratewindow.limiter import RateLimiter
from ratewindow.schemas import LimiterConfig, MultiLimiterResult, RateLimitResult
from ratewindow.stores import STORE_CLASSES
from ratewindow.validation import (
    split_runtime_params,
    validate_limiter_config,
    validate_store_config,
)

logger = logging.getLogger(__name__)


@dataclass
class _StoreEntry:
    config: Any
    runtime_kwargs: dict[str, Any] = field(default_factory=dict)
    instance: CounterStore | None = None
    initialized: bool = False


@dataclass
class _LimiterEntry:
    config: LimiterConfig
    limiter: RateLimiter | None = None


class RateLimiterRegistry:
    """Registry for managing stores and rate limiters.

    Example:
        >>> registry = RateLimiterRegistry()
        >>> registry.configure_store("main", "redis", url="redis://localhost:6379/0")
        >>> registry.configure_limiter("api", store_id="main", limit=100, window_seconds=60)
        >>> await registry.allow("api", "10.0.0.1")
        True
    """

    def __init__(self) -> None:
        """Initialize empty registry."""
        self._stores: dict[str, _StoreEntry] = {}
        self._limiters: dict[str, _LimiterEntry] = {}

    def configure_store(self, store_id: str, engine: str, **kwargs: Any) -> None:
        """Configure a counter store.

        Reconfiguring an existing store drops its instance (and the limiters
        built on it); close the old instance first if it holds connections.

        Args:
            store_id: Unique identifier for this store (e.g., "main")
            engine: Engine name ("memory", "redis", "postgres", "nats")
            **kwargs: Engine-specific configuration and runtime parameters

        Raises:
            ConfigValidationError: If engine unknown or parameters invalid
        """
        config_params, runtime_kwargs = split_runtime_params(engine, kwargs)
        config = validate_store_config(engine, config_params)

        previous = self._stores.get(store_id)
        if previous is not None and previous.instance is not None:
            logger.warning("Store '%s' reconfigured, dropping its current instance", store_id)
            for entry in self._limiters.values():
                if entry.config.store == store_id:
                    entry.limiter = None

        self._stores[store_id] = _StoreEntry(config=config, runtime_kwargs=runtime_kwargs)

        logger.info("Store '%s' configured (engine=%s)", store_id, engine)

    def configure_limiter(
        self,
        limiter_id: str,
        store_id: str,
        limit: int,
        window_seconds: float,
        fail_closed: bool = False,
        timeout: float | None = None,
    ) -> None:
        """Configure a rate limiter.

        The store does not need to be configured yet; it is resolved when the
        limiter is first used.

        Args:
            limiter_id: Unique identifier for this limiter, also its key namespace
            store_id: ID of the store holding the counters
            limit: Maximum requests admitted per window
            window_seconds: Window length in seconds
            fail_closed: If True, reject requests when the store fails
            timeout: Timeout in seconds for a store round trip

        Raises:
            ConfigValidationError: If parameters are invalid
        """
        config = validate_limiter_config(
            {
                "store": store_id,
                "limit": limit,
                "window_seconds": window_seconds,
                "fail_closed": fail_closed,
                "timeout": timeout,
            }
        )
        self._limiters[limiter_id] = _LimiterEntry(config=config)

        logger.info(
            "Limiter '%s' configured (store=%s, limit=%d, window=%ss, fail_closed=%s, timeout=%s)",
            limiter_id,
            store_id,
            limit,
            window_seconds,
            fail_closed,
            timeout,
        )

    def get_store(self, store_id: str) -> CounterStore:
        """Get (or lazily create) the store instance.

        Note: The returned store may not be initialized yet.

        Raises:
            StoreNotFoundError: If store not configured
        """
        entry = self._stores.get(store_id)
        if entry is None:
            raise StoreNotFoundError(store_id)

        if entry.instance is None:
            store_class = STORE_CLASSES[entry.config.engine]
            entry.instance = store_class.from_config(entry.config, **entry.runtime_kwargs)
            logger.info("Store '%s' created (engine=%s)", store_id, entry.config.engine)

        return entry.instance

    def get_limiter(self, limiter_id: str) -> RateLimiter:
        """Get (or lazily create) the rate limiter instance.

        Raises:
            LimiterNotFoundError: If limiter not configured
            StoreNotFoundError: If limiter's store not configured
        """
        entry = self._limiters.get(limiter_id)
        if entry is None:
            raise LimiterNotFoundError(limiter_id)

        if entry.limiter is None:
            config = entry.config
            entry.limiter = RateLimiter(
                self.get_store(config.store),
                limit=config.limit,
                window_seconds=config.window_seconds,
                name=limiter_id,
                fail_closed=config.fail_closed,
                timeout=config.timeout,
            )

        return entry.limiter

    def has_limiter(self, limiter_id: str) -> bool:
        return limiter_id in self._limiters

    def has_store(self, store_id: str) -> bool:
        return store_id in self._stores

    async def initialize_store(self, store_id: str) -> None:
        """Initialize a store (connect, create tables, start sweeps).

        Note: This is optional. Stores initialize on first use.
        Call this explicitly for fail-fast behavior on startup.
        """
        store = self.get_store(store_id)
        entry = self._stores[store_id]
        if entry.initialized:
            return

        await store.initialize()
        entry.initialized = True
        logger.info("Store '%s' initialized", store_id)

    async def initialize_all_stores(self) -> None:
        """Initialize all configured stores."""
        for store_id in list(self._stores):
            await self.initialize_store(store_id)

    async def close_all_stores(self) -> None:
        """Close every store instance created so far."""
        for store_id, entry in self._stores.items():
            if entry.instance is None:
                continue
            await entry.instance.close()
            entry.initialized = False
            logger.info("Store '%s' closed", store_id)

    async def _ready_limiter(self, limiter_id: str) -> RateLimiter:
        limiter = self.get_limiter(limiter_id)
        store_id = self._limiters[limiter_id].config.store
        if not self._stores[store_id].initialized:
            try:
                await self.initialize_store(store_id)
            except BackendError as e:
                # Stays uninitialized; the store retries on the limiter's next call
                logger.warning(
                    "Store '%s' not initialized, limiter '%s' applies its failure policy: %s",
                    store_id,
                    limiter_id,
                    e,
                )
        return limiter

    async def allow(self, limiter_id: str, identifier: str) -> bool:
        """Decide whether a request from identifier is admitted by a limiter."""
        limiter = await self._ready_limiter(limiter_id)
        return await limiter.allow(identifier)

    async def check(self, limiter_id: str, identifier: str) -> RateLimitResult:
        """Decide like allow() and return the detailed result."""
        limiter = await self._ready_limiter(limiter_id)
        return await limiter.check(identifier)

    async def check_multi_limiters(
        self, limiter_ids: list[str], identifier: str
    ) -> MultiLimiterResult:
        """Check several limiters for one identifier and combine the outcomes.

        The request is counted by every limiter, including when another one
        rejects it. Limiters are checked concurrently.

        Raises:
            ValueError: If limiter_ids is empty
            LimiterNotFoundError: If a limiter is not configured
        """
        if not limiter_ids:
            raise ValueError("check_multi_limiters() requires at least one limiter id")

        limiters = [await self._ready_limiter(limiter_id) for limiter_id in limiter_ids]
        results = await asyncio.gather(*(limiter.check(identifier) for limiter in limiters))
        return MultiLimiterResult.from_results(list(results))

    def list_stores(self) -> dict[str, dict[str, Any]]:
        """List all configured stores with their info.

        Example:
            >>> registry.list_stores()
            {'main': {'engine': 'redis', 'url': 'redis://...', 'initialized': False, ...}}
        """
        return {
            store_id: {
                **asdict(entry.config),
                "initialized": entry.initialized,
                "runtime_kwargs": list(entry.runtime_kwargs),
            }
            for store_id, entry in self._stores.items()
        }

    def list_limiters(self) -> dict[str, dict[str, Any]]:
        """List all configured limiters with their info.

        Example:
            >>> registry.list_limiters()
            {'api': {'store': 'main', 'limit': 100, 'window_seconds': 60, ...}}
        """
        return {
            limiter_id: {
                **asdict(entry.config),
                "metrics": entry.limiter.get_metrics() if entry.limiter else None,
            }
            for limiter_id, entry in self._limiters.items()
        }

    def clear(self) -> None:
        """Forget every store and limiter (does not close store instances)."""
        self._stores.clear()
        self._limiters.clear()


# Global singleton
_registry = RateLimiterRegistry()


def get_registry() -> RateLimiterRegistry:
    """Return the global registry."""
    return _registry


def configure_store(store_id: str, engine: str, **kwargs: Any) -> None:
    """Configure a store in the global registry.

    Example:
        >>> configure_store("main", "redis", url="redis://localhost:6379/0")
    """
    _registry.configure_store(store_id, engine, **kwargs)


def configure_limiter(
    limiter_id: str,
    store_id: str,
    limit: int,
    window_seconds: float,
    fail_closed: bool = False,
    timeout: float | None = None,
) -> None:
    """Configure a rate limiter in the global registry.

    Example:
        >>> configure_limiter("login", "main", limit=5, window_seconds=300, fail_closed=True)
    """
    _registry.configure_limiter(
        limiter_id,
        store_id,
        limit=limit,
        window_seconds=window_seconds,
        fail_closed=fail_closed,
        timeout=timeout,
    )


def get_store(store_id: str) -> CounterStore:
    """Get store instance from global registry."""
    return _registry.get_store(store_id)


def get_limiter(limiter_id: str) -> RateLimiter:
    """Get rate limiter instance from global registry.

    Example:
        >>> limiter = get_limiter("api")
        >>> await limiter.allow("10.0.0.1")
    """
    return _registry.get_limiter(limiter_id)


async def allow(limiter_id: str, identifier: str) -> bool:
    """Decide whether a request is admitted by a configured limiter.

    Example:
        >>> if not await allow("api", client_ip):
        ...     return Response(status_code=429)
    """
    return await _registry.allow(limiter_id, identifier)


async def check(limiter_id: str, identifier: str) -> RateLimitResult:
    """Decide like allow() and return the detailed result."""
    return await _registry.check(limiter_id, identifier)


async def check_multi_limiters(limiter_ids: list[str], identifier: str) -> MultiLimiterResult:
    """Check several limiters (e.g. per-minute and per-hour) for one identifier.

    Example:
        >>> result = await check_multi_limiters(["api:minute", "api:hour"], client_ip)
        >>> if not result.allowed:
        ...     print(f"Blocked by: {result.blocking_limiter_id}")
    """
    return await _registry.check_multi_limiters(limiter_ids, identifier)


async def initialize_store(store_id: str) -> None:
    """Initialize a store in the global registry."""
    await _registry.initialize_store(store_id)


async def initialize_all_stores() -> None:
    """Initialize all configured stores in the global registry."""
    await _registry.initialize_all_stores()


async def close_all_stores() -> None:
    """Close all store instances of the global registry."""
    await _registry.close_all_stores()


def list_stores() -> dict[str, dict[str, Any]]:
    """List all configured stores from global registry."""
    return _registry.list_stores()


def list_limiters() -> dict[str, dict[str, Any]]:
    """List all configured limiters from global registry."""
    return _registry.list_limiters()
