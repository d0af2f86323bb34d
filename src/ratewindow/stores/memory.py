"""
In-memory counter store.

This store is useful for:
- Development and testing (no external dependencies)
- Single-process applications
- Applications that don't need to share counters across processes

Note: counters live in this process only. Multiple store instances in one
process are fully independent.
"""

import asyncio
import contextlib
import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

from ratewindow.core import CounterStore, validate_counter_args
from ratewindow.exceptions import BackendError
from ratewindow.schemas import MemoryStoreConfig

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class CounterRecord:
    """A counter and the instant its window ends."""

    count: int
    expires_at: float

    def is_expired(self, now: float) -> bool:
        """A record is expired from the exact instant its window ends."""
        return now >= self.expires_at


class MemoryCounterStore(CounterStore):
    """Concurrent-safe in-memory counter store.

    Records are split across ``lock_stripes`` shards, each guarded by its own
    ``threading.Lock``. The full read-check-write-expiry sequence for a key
    runs under the lock of the key's shard, so:

    - increments of the same key are serialized (no lost updates),
    - unrelated keys only contend when they hash to the same stripe,
    - the store is safe for tasks on one event loop and for threads each
      running their own loop.

    ``lock_stripes=1`` turns this into a single global lock: simpler, but it
    serializes every key and bounds throughput.

    Expired records are evicted lazily on access. When ``cleanup_interval``
    is set, ``initialize()`` also starts a background sweep.

    Attributes:
        _locks: One lock per shard
        _shards: key -> CounterRecord mappings, one per lock
        _size: Number of stored records (expired ones included until evicted)
        _max_keys: Optional capacity bound
        _clock: Monotonic time source
    """

    def __init__(
        self,
        lock_stripes: int = 64,
        max_keys: int | None = None,
        cleanup_interval: float | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        """Initialize memory counter store.

        Args:
            lock_stripes: Number of lock stripes (1 = single global lock)
            max_keys: Maximum number of records kept (None = unbounded)
            cleanup_interval: Seconds between background sweeps of expired
                records (None = lazy eviction only)
            clock: Time source returning seconds (default: time.monotonic)

        Raises:
            ValueError: If lock_stripes, max_keys or cleanup_interval is not positive
        """
        if lock_stripes <= 0:
            raise ValueError(f"lock_stripes must be > 0, got {lock_stripes}")

        if max_keys is not None and max_keys <= 0:
            raise ValueError(f"max_keys must be > 0, got {max_keys}")

        if cleanup_interval is not None and cleanup_interval <= 0:
            raise ValueError(f"cleanup_interval must be > 0, got {cleanup_interval}")

        self._stripes = lock_stripes
        self._locks = [threading.Lock() for _ in range(lock_stripes)]
        self._shards: list[dict[str, CounterRecord]] = [{} for _ in range(lock_stripes)]
        self._size = 0
        self._size_lock = threading.Lock()
        self._max_keys = max_keys
        self._cleanup_interval = cleanup_interval
        self._clock = clock or time.monotonic
        self._sweeper: asyncio.Task | None = None

    @classmethod
    def from_config(cls, config: MemoryStoreConfig, **kwargs) -> "MemoryCounterStore":
        """Create memory counter store from configuration.

        Args:
            config: Memory store configuration
            **kwargs: Runtime parameters (``clock``)
        """
        if not isinstance(config, MemoryStoreConfig):
            raise ValueError(f"Expected MemoryStoreConfig, got {type(config)}")

        return cls(
            lock_stripes=config.lock_stripes,
            max_keys=config.max_keys,
            cleanup_interval=config.cleanup_interval,
            clock=kwargs.get("clock"),
        )

    @property
    def engine(self) -> str:
        return "memory"

    @property
    def size(self) -> int:
        """Number of stored records, including expired ones not yet evicted."""
        return self._size

    def _stripe(self, key: str) -> int:
        return hash(key) % self._stripes

    def _forget(self, count: int) -> None:
        if count:
            with self._size_lock:
                self._size -= count

    def _drop_expired(self, shard: dict[str, CounterRecord], now: float) -> int:
        """Remove expired records from a shard. Caller holds the shard lock."""
        expired = [key for key, record in shard.items() if record.is_expired(now)]
        for key in expired:
            del shard[key]
        self._forget(len(expired))
        return len(expired)

    def _reserve(self, shard: dict[str, CounterRecord], now: float) -> bool:
        """Account for a new key, evicting expired records of the shard when full.

        Caller holds the shard lock.

        Returns:
            False if the store is still full
        """
        with self._size_lock:
            if self._max_keys is None or self._size < self._max_keys:
                self._size += 1
                return True

        if not self._drop_expired(shard, now):
            return False

        with self._size_lock:
            if self._size < self._max_keys:
                self._size += 1
                return True
        return False

    def _full(self, key: str) -> BackendError:
        return BackendError(
            f"Memory store is full ({self._max_keys} keys), cannot create '{key}'",
            store=self.engine,
            key=key,
        )

    async def get(self, key: str) -> int | None:
        index = self._stripe(key)
        with self._locks[index]:
            shard = self._shards[index]
            record = shard.get(key)
            if record is None:
                return None
            if record.is_expired(self._clock()):
                del shard[key]
                self._forget(1)
                return None
            return record.count

    async def set(self, key: str, value: int, ttl: float) -> None:
        validate_counter_args(value, ttl, name="value")

        index = self._stripe(key)
        # Second pass runs after a sweep of every shard
        for swept in (False, True):
            with self._locks[index]:
                shard = self._shards[index]
                now = self._clock()
                if key in shard or self._reserve(shard, now):
                    shard[key] = CounterRecord(count=value, expires_at=now + ttl)
                    return
            if not swept:
                self.purge_expired()

        raise self._full(key)

    async def incr(self, key: str, amount: int, ttl: float) -> int:
        validate_counter_args(amount, ttl)

        index = self._stripe(key)
        for swept in (False, True):
            with self._locks[index]:
                shard = self._shards[index]
                now = self._clock()
                record = shard.get(key)

                if record is not None and not record.is_expired(now):
                    record.count += amount
                    return record.count

                if record is not None or self._reserve(shard, now):
                    shard[key] = CounterRecord(count=amount, expires_at=now + ttl)
                    return amount
            # The shard lock is released here: purge_expired() takes every stripe lock
            if not swept:
                self.purge_expired()

        raise self._full(key)

    async def ttl(self, key: str) -> float | None:
        index = self._stripe(key)
        with self._locks[index]:
            shard = self._shards[index]
            record = shard.get(key)
            if record is None:
                return None
            now = self._clock()
            if record.is_expired(now):
                del shard[key]
                self._forget(1)
                return None
            return record.expires_at - now

    async def delete(self, key: str) -> bool:
        index = self._stripe(key)
        with self._locks[index]:
            removed = self._shards[index].pop(key, None) is not None
        if removed:
            self._forget(1)
        return removed

    async def clear(self) -> int:
        removed = 0
        for lock, shard in zip(self._locks, self._shards):
            with lock:
                count = len(shard)
                shard.clear()
            self._forget(count)
            removed += count
        return removed

    def purge_expired(self) -> int:
        """Evict every expired record now.

        Returns:
            Number of records evicted
        """
        removed = 0
        for lock, shard in zip(self._locks, self._shards):
            with lock:
                removed += self._drop_expired(shard, self._clock())
        return removed

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self._cleanup_interval)
            removed = self.purge_expired()
            if removed:
                logger.debug("Memory store sweep evicted %d expired records", removed)

    async def initialize(self) -> None:
        """Start the background sweep if cleanup_interval is set.

        This is idempotent and can be called multiple times.
        """
        if self._cleanup_interval is None or self._sweeper is not None:
            return

        self._sweeper = asyncio.create_task(self._sweep_loop())
        logger.info(
            "Memory store sweep started (interval=%.2fs, max_keys=%s)",
            self._cleanup_interval,
            self._max_keys if self._max_keys else "unbounded",
        )

    async def close(self) -> None:
        """Stop the background sweep. Stored records are kept."""
        if self._sweeper is None:
            return

        self._sweeper.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._sweeper
        self._sweeper = None
        logger.info("Memory store sweep stopped")
