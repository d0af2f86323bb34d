"""Redis counter store.

Counters live in Redis so every process and container sharing the server
sees the same counts. Increments run as a single Lua script, so the
create-or-increment decision and the window expiry are atomic per key.

The store requires Redis 5.0+ for Lua script support.

Requirements:
    pip install 'rate-window[redis]'  or  pip install redis
"""

import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

# Lazy import: only fail if Redis store is actually used
try:
    from redis import asyncio as redis_asyncio
    from redis.asyncio import ConnectionPool
    from redis.exceptions import ConnectionError as RedisConnectionError
    from redis.exceptions import RedisError
    from redis.exceptions import TimeoutError as RedisTimeoutError

    REDIS_AVAILABLE = True
except ImportError:
    REDIS_AVAILABLE = False
    redis_asyncio = None  # type: ignore
    ConnectionPool = None  # type: ignore

    class RedisError(Exception):  # type: ignore
        """Placeholder for redis.exceptions.RedisError when redis is not installed."""

    class RedisConnectionError(RedisError):  # type: ignore
        """Placeholder for redis.exceptions.ConnectionError when redis is not installed."""

    class RedisTimeoutError(RedisError):  # type: ignore
        """Placeholder for redis.exceptions.TimeoutError when redis is not installed."""


from ratewindow.contrib.prometheus.metrics import record_store_operation
from ratewindow.core import CounterStore, validate_counter_args
from ratewindow.exceptions import BackendError, BackendUnavailableError
from ratewindow.schemas import RedisStoreConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Create-or-increment in one call.
# A key without expiry (PTTL == -1) gets the window again so a counter can
# never outlive its window.
# Returns: the new count
# Args: amount, ttl in milliseconds
INCR_SCRIPT = """
local key = KEYS[1]
local amount = tonumber(ARGV[1])
local ttl_ms = tonumber(ARGV[2])

if redis.call('EXISTS', key) == 0 then
    redis.call('SET', key, amount, 'PX', ttl_ms)
    return amount
end

local count = redis.call('INCRBY', key, amount)
if redis.call('PTTL', key) == -1 then
    redis.call('PEXPIRE', key, ttl_ms)
end
return count
"""


def _to_ms(ttl: float) -> int:
    """Window length in whole milliseconds (at least 1)."""
    return max(1, int(ttl * 1000))


class RedisCounterStore(CounterStore):
    """Redis-backed counter store shared across processes.

    Each counter is a plain Redis integer key with a millisecond expiry set
    when the window opens. Redis expiry removes finished windows, so no
    sweeping is needed.

    Example:
        >>> store = RedisCounterStore(url="redis://localhost:6379/0")
        >>> await store.initialize()
        >>> await store.incr("api:10.0.0.1", 1, ttl=60)
        1
    """

    def __init__(
        self,
        url: str,
        db: int = 0,
        password: str | None = None,
        pool_max_size: int = 10,
        key_prefix: str = "rate_limit",
        socket_timeout: float = 5.0,
        socket_connect_timeout: float = 5.0,
    ) -> None:
        """Initialize Redis counter store.

        Args:
            url: Redis connection URL
            db: Redis database number (0-15)
            password: Optional Redis password
            pool_max_size: Maximum connections in pool
            key_prefix: Prefix for Redis keys (namespace)
            socket_timeout: Socket timeout in seconds
            socket_connect_timeout: Connection timeout in seconds

        Raises:
            ImportError: If redis is not installed
            ValueError: If key_prefix is empty
        """
        if not REDIS_AVAILABLE:
            raise ImportError(
                "\nRedis store requires redis to be installed.\n"
                "Install with one of these commands:\n"
                "  pip install 'rate-window[redis]'\n"
                "  pip install 'rate-window[all]'\n"
                "  pip install redis"
            )

        if not key_prefix or not key_prefix.strip():
            raise ValueError("key_prefix cannot be empty")

        self._url = url
        self._db = db
        self._password = password
        self._pool_max_size = pool_max_size
        self._key_prefix = key_prefix.strip()
        self._socket_timeout = socket_timeout
        self._socket_connect_timeout = socket_connect_timeout

        self._pool = None
        self._client = None
        self._incr_script = None
        self._initialized = False

    @classmethod
    def from_config(cls, config: RedisStoreConfig) -> "RedisCounterStore":
        """Create Redis counter store from configuration."""
        if not isinstance(config, RedisStoreConfig):
            raise ValueError(f"Expected RedisStoreConfig, got {type(config)}")

        return cls(
            url=config.url,
            db=config.db,
            password=config.password,
            pool_max_size=config.pool_max_size,
            key_prefix=config.key_prefix,
            socket_timeout=config.socket_timeout,
            socket_connect_timeout=config.socket_connect_timeout,
        )

    @property
    def engine(self) -> str:
        return "redis"

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    def _key(self, key: str) -> str:
        return f"{self._key_prefix}:{key}"

    async def initialize(self) -> None:
        """Create the connection pool, check connectivity and register the script.

        This operation is idempotent - can be called multiple times.

        Raises:
            BackendUnavailableError: If Redis cannot be reached
        """
        if self._initialized:
            return

        try:
            self._pool = ConnectionPool.from_url(
                self._url,
                db=self._db,
                password=self._password,
                max_connections=self._pool_max_size,
                socket_timeout=self._socket_timeout,
                socket_connect_timeout=self._socket_connect_timeout,
                decode_responses=False,
            )
            self._client = redis_asyncio.Redis(connection_pool=self._pool)

            await self._client.ping()

            self._incr_script = self._client.register_script(INCR_SCRIPT)
            self._initialized = True

            logger.info(
                "Redis counter store initialized (max=%d, url=%s, db=%d, prefix=%s)",
                self._pool_max_size,
                self._url,
                self._db,
                self._key_prefix,
            )

        except (RedisError, OSError, ValueError) as e:
            logger.error("Failed to initialize Redis counter store at %s: %s", self._url, e)
            await self.close()
            raise BackendUnavailableError(
                f"Cannot connect to Redis at {self._url}: {e}", store=self.engine
            ) from e

    async def _run(self, operation: str, key: str | None, call: Callable[[], Awaitable[T]]) -> T:
        """Run one Redis call, translating client errors and recording latency."""
        if not self._initialized:
            await self.initialize()

        start = time.perf_counter()
        try:
            return await call()
        except (RedisConnectionError, RedisTimeoutError, OSError) as e:
            raise BackendUnavailableError(
                f"Redis unavailable during {operation}: {e}", store=self.engine, key=key
            ) from e
        except RedisError as e:
            raise BackendError(
                f"Redis {operation} failed: {e}", store=self.engine, key=key
            ) from e
        finally:
            record_store_operation(self.engine, operation, time.perf_counter() - start)

    async def get(self, key: str) -> int | None:
        value = await self._run("get", key, lambda: self._client.get(self._key(key)))
        return None if value is None else int(value)

    async def set(self, key: str, value: int, ttl: float) -> None:
        validate_counter_args(value, ttl, name="value")
        await self._run(
            "set", key, lambda: self._client.set(self._key(key), value, px=_to_ms(ttl))
        )

    async def incr(self, key: str, amount: int, ttl: float) -> int:
        validate_counter_args(amount, ttl)
        result: Any = await self._run(
            "incr",
            key,
            lambda: self._incr_script(keys=[self._key(key)], args=[amount, _to_ms(ttl)]),
        )
        return int(result)

    async def ttl(self, key: str) -> float | None:
        remaining_ms = await self._run("ttl", key, lambda: self._client.pttl(self._key(key)))
        # -2: no such key, -1: no expiry
        if remaining_ms is None or remaining_ms < 0:
            return None
        return remaining_ms / 1000.0

    async def delete(self, key: str) -> bool:
        removed = await self._run("delete", key, lambda: self._client.delete(self._key(key)))
        return bool(removed)

    async def clear(self) -> int:
        """Delete every key under this store's prefix (SCAN + DEL, not atomic)."""

        async def _clear() -> int:
            removed = 0
            batch: list[bytes] = []
            async for redis_key in self._client.scan_iter(match=f"{self._key_prefix}:*", count=500):
                batch.append(redis_key)
                if len(batch) >= 500:
                    removed += await self._client.delete(*batch)
                    batch = []
            if batch:
                removed += await self._client.delete(*batch)
            return removed

        return await self._run("clear", None, _clear)

    async def close(self) -> None:
        """Close Redis client and connection pool."""
        if self._client is not None:
            try:
                await self._client.aclose()
                logger.info("Closed Redis client (url=%s)", self._url)
            except (RedisError, OSError, RuntimeError) as e:
                logger.warning("Error closing Redis client (url=%s): %s", self._url, e)
            finally:
                self._client = None

        if self._pool is not None:
            try:
                await self._pool.disconnect()
            except (RedisError, OSError, RuntimeError) as e:
                logger.warning("Error closing Redis pool (url=%s): %s", self._url, e)
            finally:
                self._pool = None

        self._incr_script = None
        self._initialized = False
