"""NATS JetStream Key-Value counter store.

Counters are KV entries updated with Compare-And-Set (CAS) on the entry
revision, which gives per-key atomic increments across every process
connected to the same bucket.

Requirements:
    pip install 'rate-window[nats]'  or  pip install nats-py
"""

import asyncio
import base64
import logging
import re
import time
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, TypeVar

# Lazy import: only fail if NATS store is actually used
try:
    from nats import connect
    from nats import errors as nats_errors
    from nats.js import errors as js_errors

    NATS_AVAILABLE = True
except ImportError:
    NATS_AVAILABLE = False
    connect = None  # type: ignore
    nats_errors = None  # type: ignore
    js_errors = None  # type: ignore

from ratewindow.contrib.prometheus.metrics import record_store_operation
from ratewindow.core import CounterStore, validate_counter_args
from ratewindow.exceptions import BackendError, BackendUnavailableError
from ratewindow.schemas import NatsStoreConfig

if TYPE_CHECKING:
    from nats.js import JetStreamContext

logger = logging.getLogger(__name__)

T = TypeVar("T")

# NATS KV keys allow only these characters; "." separates tokens
_PREFIX_RE = re.compile(r"^[-_=A-Za-z0-9]+$")


def encode_key(prefix: str, key: str) -> str:
    """Map an arbitrary counter key to a valid KV key.

    Counter keys contain characters NATS rejects (":" or spaces), so the key
    is base64url-encoded under the prefix token.
    """
    encoded = base64.urlsafe_b64encode(key.encode()).decode().rstrip("=")
    return f"{prefix}.{encoded}"


def encode_record(count: int, expires_at: float) -> bytes:
    """Serialize a counter record as ``b"<count>:<expires_at>"``."""
    return f"{count}:{expires_at:.6f}".encode()


def decode_record(value: bytes) -> tuple[int, float]:
    """Parse a value written by encode_record().

    Raises:
        ValueError: If the value is malformed
    """
    count, _, expires_at = value.decode().partition(":")
    return int(count), float(expires_at)


def _unavailable_errors() -> tuple[type[BaseException], ...]:
    """nats-py exceptions meaning the server cannot be reached."""
    return (
        nats_errors.TimeoutError,
        nats_errors.ConnectionClosedError,
        nats_errors.NoServersError,
        nats_errors.NoRespondersError,
        js_errors.ServiceUnavailableError,
        OSError,
        TimeoutError,
    )


class NatsKvCounterStore(CounterStore):
    """NATS KV-backed counter store shared across processes.

    Each counter is one KV entry holding ``count:expires_at``, with
    ``expires_at`` in wall-clock seconds. Hosts sharing a bucket must keep
    their clocks in sync (NTP); skew shifts window boundaries by the same amount.

    Increments read the entry and write it back with ``last=revision``. A
    revision mismatch means another writer won the race, so the loop reads
    again, up to ``max_retries`` times.

    Supports two modes:
    1. **Pre-connected mode**: pass ``jetstream=js`` with an existing connection
    2. **Auto-connect mode**: pass ``url``; the connection is opened by
       initialize() and closed by close()

    Example:
        >>> store = NatsKvCounterStore(url="nats://localhost:4222", auto_create=True)
        >>> await store.initialize()
        >>> await store.incr("api:10.0.0.1", 1, ttl=60)
        1
    """

    def __init__(
        self,
        url: str | None = None,
        token: str | None = None,
        bucket_name: str = "rate_window",
        auto_create: bool = False,
        bucket_ttl: float = 3600.0,
        retry_interval: float = 0.005,
        max_retries: int = 100,
        key_prefix: str = "rate_limit",
        jetstream: "JetStreamContext | None" = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        """Initialize NATS KV counter store.

        Args:
            url: NATS server URL (auto-connect mode)
            token: Optional authentication token
            bucket_name: KV bucket name
            auto_create: If True, create bucket on initialize(); if False, bucket must exist
            bucket_ttl: Max age in seconds of bucket entries (applied when the
                bucket is auto-created). Must cover the longest window: set()
                and incr() reject a larger ttl with ValueError.
            retry_interval: Interval between CAS retry attempts in seconds
            max_retries: Maximum CAS attempts per increment
            key_prefix: First token of every KV key (namespace)
            jetstream: Pre-connected JetStream context (pre-connected mode)
            clock: Wall-clock time source (default: time.time)

        Raises:
            ImportError: If nats-py is not installed
            ValueError: If neither url nor jetstream is given, or values are invalid
        """
        if not NATS_AVAILABLE:
            raise ImportError(
                "\nNATS store requires nats-py to be installed.\n"
                "Install with one of these commands:\n"
                "  pip install 'rate-window[nats]'\n"
                "  pip install 'rate-window[all]'\n"
                "  pip install nats-py"
            )

        if jetstream is None and not url:
            raise ValueError(
                "Either provide 'jetstream' (pre-connected mode) "
                "or 'url' (auto-connect mode)"
            )

        if not _PREFIX_RE.match(key_prefix or ""):
            raise ValueError(
                f"key_prefix must contain only letters, digits, '-', '_' or '=', got '{key_prefix}'"
            )

        if max_retries <= 0:
            raise ValueError(f"max_retries must be > 0, got {max_retries}")

        if bucket_ttl <= 0:
            raise ValueError(f"bucket_ttl must be > 0, got {bucket_ttl}")

        self._url = url
        self._token = token
        self._bucket_name = bucket_name
        self._auto_create = auto_create
        self._bucket_ttl = bucket_ttl
        self._retry_interval = retry_interval
        self._max_retries = max_retries
        self._key_prefix = key_prefix
        self._clock = clock or time.time

        self._js = jetstream
        self._kv = None
        self._owned_connection = None
        self._initialized = False

    @classmethod
    def from_config(cls, config: NatsStoreConfig, **kwargs) -> "NatsKvCounterStore":
        """Create NATS KV counter store from configuration.

        Args:
            config: NATS store configuration
            **kwargs: Runtime parameters (``jetstream`` for pre-connected mode)
        """
        if not isinstance(config, NatsStoreConfig):
            raise ValueError(f"Expected NatsStoreConfig, got {type(config)}")

        return cls(
            url=config.url,
            token=config.token,
            bucket_name=config.bucket_name,
            auto_create=config.auto_create,
            bucket_ttl=config.bucket_ttl,
            retry_interval=config.retry_interval,
            max_retries=config.max_retries,
            key_prefix=config.key_prefix,
            jetstream=kwargs.get("jetstream"),
        )

    @property
    def engine(self) -> str:
        return "nats"

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    def _key(self, key: str) -> str:
        return encode_key(self._key_prefix, key)

    def _check_window(self, ttl: float) -> None:
        # JetStream drops entries older than the bucket max age, active window or not
        if ttl > self._bucket_ttl:
            raise ValueError(
                f"ttl ({ttl}s) exceeds bucket_ttl ({self._bucket_ttl}s) of bucket "
                f"'{self._bucket_name}'; raise bucket_ttl to the longest window"
            )

    async def initialize(self) -> None:
        """Connect (auto-connect mode) and bind the KV bucket.

        This operation is idempotent - can be called multiple times.

        Raises:
            BackendUnavailableError: If the server cannot be reached
            BackendError: If the bucket does not exist and auto_create is False
        """
        if self._initialized:
            return

        try:
            if self._js is None:
                connect_opts = {"servers": [self._url]}
                if self._token:
                    connect_opts["token"] = self._token

                nc = await connect(**connect_opts)
                self._js = nc.jetstream()
                self._owned_connection = nc
                logger.info("Connected to NATS server at %s", self._url)

            if self._auto_create:
                try:
                    self._kv = await self._js.create_key_value(
                        bucket=self._bucket_name,
                        history=1,
                        ttl=self._bucket_ttl,
                    )
                    logger.info(
                        "KV bucket '%s' created for counters (ttl=%.0fs)",
                        self._bucket_name,
                        self._bucket_ttl,
                    )
                except js_errors.BadRequestError:
                    self._kv = await self._js.key_value(self._bucket_name)
                    logger.info("KV bucket '%s' obtained for counters", self._bucket_name)
            else:
                try:
                    self._kv = await self._js.key_value(self._bucket_name)
                except js_errors.BucketNotFoundError as e:
                    raise BackendError(
                        f"KV bucket '{self._bucket_name}' not found. "
                        f"Set auto_create=true or create bucket manually.",
                        store=self.engine,
                    ) from e
                logger.info("KV bucket '%s' obtained for counters", self._bucket_name)

            self._initialized = True

        except _unavailable_errors() as e:
            logger.error("Failed to initialize NATS counter store: %s", e)
            await self.close()
            raise BackendUnavailableError(
                f"Cannot connect to NATS at {self._url}: {e}", store=self.engine
            ) from e

    async def _run(self, operation: str, key: str | None, call: Callable[[], Awaitable[T]]) -> T:
        """Run one KV operation, translating nats-py errors and recording latency."""
        if not self._initialized:
            await self.initialize()

        start = time.perf_counter()
        try:
            return await call()
        except _unavailable_errors() as e:
            raise BackendUnavailableError(
                f"NATS unavailable during {operation}: {e}", store=self.engine, key=key
            ) from e
        except nats_errors.Error as e:
            raise BackendError(
                f"NATS {operation} failed: {e}", store=self.engine, key=key
            ) from e
        finally:
            record_store_operation(self.engine, operation, time.perf_counter() - start)

    async def _read(self, kv_key: str):
        """Return (entry, count, expires_at) for an active record, or None."""
        try:
            entry = await self._kv.get(kv_key)
        except js_errors.KeyNotFoundError:
            return None
        if entry.value is None:
            return None
        try:
            count, expires_at = decode_record(entry.value)
        except ValueError as e:
            raise BackendError(
                f"Malformed counter value in KV key '{kv_key}': {entry.value!r}",
                store=self.engine,
                key=kv_key,
            ) from e
        return entry, count, expires_at

    async def get(self, key: str) -> int | None:
        async def _get() -> int | None:
            record = await self._read(self._key(key))
            if record is None:
                return None
            _, count, expires_at = record
            return None if self._clock() >= expires_at else count

        return await self._run("get", key, _get)

    async def set(self, key: str, value: int, ttl: float) -> None:
        validate_counter_args(value, ttl, name="value")
        self._check_window(ttl)
        await self._run(
            "set",
            key,
            lambda: self._kv.put(self._key(key), encode_record(value, self._clock() + ttl)),
        )

    async def incr(self, key: str, amount: int, ttl: float) -> int:
        validate_counter_args(amount, ttl)
        self._check_window(ttl)
        kv_key = self._key(key)

        async def _incr() -> int:
            for attempt in range(self._max_retries):
                record = await self._read(kv_key)
                now = self._clock()

                try:
                    if record is None:
                        await self._kv.create(kv_key, encode_record(amount, now + ttl))
                        return amount

                    entry, count, expires_at = record
                    if now >= expires_at:
                        count, expires_at = amount, now + ttl
                    else:
                        count += amount
                    await self._kv.update(
                        kv_key, encode_record(count, expires_at), last=entry.revision
                    )
                    return count

                except js_errors.KeyWrongLastSequenceError:
                    logger.debug(
                        "CAS conflict on '%s' (attempt %d/%d)",
                        kv_key,
                        attempt + 1,
                        self._max_retries,
                    )
                    await asyncio.sleep(self._retry_interval)

            raise BackendError(
                f"Unable to increment '{key}' after {self._max_retries} CAS attempts",
                store=self.engine,
                key=key,
            )

        return await self._run("incr", key, _incr)

    async def ttl(self, key: str) -> float | None:
        async def _ttl() -> float | None:
            record = await self._read(self._key(key))
            if record is None:
                return None
            remaining = record[2] - self._clock()
            return remaining if remaining > 0 else None

        return await self._run("ttl", key, _ttl)

    async def delete(self, key: str) -> bool:
        kv_key = self._key(key)

        async def _delete() -> bool:
            if await self._read(kv_key) is None:
                return False
            await self._kv.purge(kv_key)
            return True

        return await self._run("delete", key, _delete)

    async def clear(self) -> int:
        """Purge every KV key under this store's prefix."""

        async def _clear() -> int:
            try:
                keys = await self._kv.keys()
            except js_errors.NoKeysError:
                return 0
            removed = 0
            for kv_key in keys:
                if kv_key.startswith(f"{self._key_prefix}."):
                    await self._kv.purge(kv_key)
                    removed += 1
            return removed

        return await self._run("clear", None, _clear)

    async def close(self) -> None:
        """Disconnect from NATS if the connection is owned by this store.

        In pre-connected mode the caller manages the connection lifecycle.
        """
        if self._owned_connection is not None:
            try:
                await self._owned_connection.close()
                logger.info("Closed NATS connection (url=%s)", self._url)
            except (OSError, RuntimeError) as e:
                logger.warning("Error closing NATS connection (url=%s): %s", self._url, e)
            finally:
                self._owned_connection = None
                self._js = None

        self._kv = None
        self._initialized = False
