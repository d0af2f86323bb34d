"""PostgreSQL counter store.

Counters are rows of a single table shared by every process connected to the
database. Increments are one ``INSERT ... ON CONFLICT DO UPDATE`` statement,
so the row lock taken by the upsert makes them atomic per key without
explicit transactions or advisory locks.

Requires PostgreSQL 9.5+ for INSERT ... ON CONFLICT.

Requirements:
    pip install 'rate-window[postgres]'  or  pip install asyncpg
"""

import logging
import re
import time
from collections.abc import Awaitable, Callable
from typing import TypeVar

# Lazy import: only fail if PostgreSQL store is actually used
try:
    import asyncpg as asyncpg_module

    POSTGRES_AVAILABLE = True
except ImportError:
    POSTGRES_AVAILABLE = False
    asyncpg_module = None  # type: ignore

from ratewindow.contrib.prometheus.metrics import record_store_operation
from ratewindow.core import CounterStore, validate_counter_args
from ratewindow.exceptions import BackendError, BackendUnavailableError
from ratewindow.schemas import PostgresStoreConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def _unavailable_errors() -> tuple[type[BaseException], ...]:
    """asyncpg exceptions meaning the database cannot be reached."""
    return (
        asyncpg_module.exceptions.PostgresConnectionError,
        asyncpg_module.exceptions.InterfaceError,
        asyncpg_module.exceptions.CannotConnectNowError,
        OSError,
        TimeoutError,
    )


class PostgresCounterStore(CounterStore):
    """PostgreSQL-backed counter store shared across processes.

    Table layout::

        key        TEXT PRIMARY KEY
        count      BIGINT NOT NULL
        expires_at TIMESTAMPTZ NOT NULL

    Expiry is evaluated against the database clock (``now()``), so clock skew
    between application hosts does not matter. Expired rows are ignored by
    reads, reused by the next increment and can be deleted in bulk with
    ``purge_expired()``.

    Example:
        >>> store = PostgresCounterStore(url="postgresql://localhost/app", auto_create=True)
        >>> await store.initialize()
        >>> await store.incr("api:10.0.0.1", 1, ttl=60)
        1
    """

    def __init__(
        self,
        url: str,
        table_name: str = "rate_window_counters",
        schema_name: str = "public",
        auto_create: bool = False,
        pool_min_size: int = 2,
        pool_max_size: int = 10,
        key_prefix: str = "rate_limit",
    ) -> None:
        """Initialize PostgreSQL counter store.

        Args:
            url: PostgreSQL connection URL
            table_name: Name of the counters table
            schema_name: Schema holding the table
            auto_create: If True, create the table on initialize()
            pool_min_size: Minimum connections in pool
            pool_max_size: Maximum connections in pool
            key_prefix: Prefix for counter keys (namespace)

        Raises:
            ImportError: If asyncpg is not installed
            ValueError: If table_name or schema_name is not a plain SQL identifier
        """
        if not POSTGRES_AVAILABLE:
            raise ImportError(
                "\nPostgreSQL store requires asyncpg to be installed.\n"
                "Install with one of these commands:\n"
                "  pip install 'rate-window[postgres]'\n"
                "  pip install 'rate-window[all]'\n"
                "  pip install asyncpg"
            )

        for label, name in (("table_name", table_name), ("schema_name", schema_name)):
            if not _IDENTIFIER_RE.match(name):
                raise ValueError(
                    f"{label} must be a plain SQL identifier "
                    f"(letters, digits, underscores), got '{name}'"
                )

        if not key_prefix or not key_prefix.strip():
            raise ValueError("key_prefix cannot be empty")

        self._url = url
        self._table_name = table_name
        self._schema_name = schema_name
        self._auto_create = auto_create
        self._pool_min_size = pool_min_size
        self._pool_max_size = pool_max_size
        self._key_prefix = key_prefix.strip()

        self._pool = None
        self._initialized = False

    @classmethod
    def from_config(cls, config: PostgresStoreConfig) -> "PostgresCounterStore":
        """Create PostgreSQL counter store from configuration."""
        if not isinstance(config, PostgresStoreConfig):
            raise ValueError(f"Expected PostgresStoreConfig, got {type(config)}")

        return cls(
            url=config.url,
            table_name=config.table_name,
            schema_name=config.schema_name,
            auto_create=config.auto_create,
            pool_min_size=config.pool_min_size,
            pool_max_size=config.pool_max_size,
            key_prefix=config.key_prefix,
        )

    @property
    def engine(self) -> str:
        return "postgres"

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @property
    def _full_table_name(self) -> str:
        return f"{self._schema_name}.{self._table_name}"

    def _key(self, key: str) -> str:
        return f"{self._key_prefix}:{key}"

    async def initialize(self) -> None:
        """Create the connection pool and, with auto_create, the counters table.

        This operation is idempotent - can be called multiple times.

        Raises:
            BackendUnavailableError: If the database cannot be reached
            BackendError: If the table cannot be created
        """
        if self._initialized:
            return

        try:
            self._pool = await asyncpg_module.create_pool(
                self._url,
                min_size=self._pool_min_size,
                max_size=self._pool_max_size,
            )
            logger.info(
                "Created PostgreSQL connection pool (min=%d, max=%d, table=%s)",
                self._pool_min_size,
                self._pool_max_size,
                self._full_table_name,
            )

            if self._auto_create:
                await self._create_table()

            self._initialized = True

        except _unavailable_errors() as e:
            logger.error("Failed to initialize PostgreSQL counter store: %s", e)
            await self.close()
            raise BackendUnavailableError(
                f"Cannot connect to PostgreSQL: {e}", store=self.engine
            ) from e
        except asyncpg_module.exceptions.PostgresError as e:
            logger.error("Failed to initialize PostgreSQL counter store: %s", e)
            await self.close()
            raise BackendError(
                f"Cannot prepare table {self._full_table_name}: {e}", store=self.engine
            ) from e

    async def _create_table(self) -> None:
        async with self._pool.acquire() as conn:
            await conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {self._full_table_name} (
                    key TEXT PRIMARY KEY,
                    count BIGINT NOT NULL,
                    expires_at TIMESTAMPTZ NOT NULL
                );
                CREATE INDEX IF NOT EXISTS idx_{self._table_name}_expires_at
                ON {self._full_table_name}(expires_at);
                """
            )
        logger.info("Counters table %s ready", self._full_table_name)

    async def _run(self, operation: str, key: str | None, call: Callable[[], Awaitable[T]]) -> T:
        """Run one statement, translating asyncpg errors and recording latency."""
        if not self._initialized:
            await self.initialize()

        start = time.perf_counter()
        try:
            return await call()
        except _unavailable_errors() as e:
            raise BackendUnavailableError(
                f"PostgreSQL unavailable during {operation}: {e}", store=self.engine, key=key
            ) from e
        except asyncpg_module.exceptions.PostgresError as e:
            raise BackendError(
                f"PostgreSQL {operation} failed: {e}", store=self.engine, key=key
            ) from e
        finally:
            record_store_operation(self.engine, operation, time.perf_counter() - start)

    async def get(self, key: str) -> int | None:
        value = await self._run(
            "get",
            key,
            lambda: self._pool.fetchval(
                f"SELECT count FROM {self._full_table_name} "
                f"WHERE key = $1 AND expires_at > now()",
                self._key(key),
            ),
        )
        return None if value is None else int(value)

    async def set(self, key: str, value: int, ttl: float) -> None:
        validate_counter_args(value, ttl, name="value")
        await self._run(
            "set",
            key,
            lambda: self._pool.execute(
                f"""
                INSERT INTO {self._full_table_name} (key, count, expires_at)
                VALUES ($1, $2, now() + make_interval(secs => $3))
                ON CONFLICT (key) DO UPDATE
                SET count = EXCLUDED.count, expires_at = EXCLUDED.expires_at
                """,
                self._key(key),
                value,
                float(ttl),
            ),
        )

    async def incr(self, key: str, amount: int, ttl: float) -> int:
        validate_counter_args(amount, ttl)
        count = await self._run(
            "incr",
            key,
            lambda: self._pool.fetchval(
                f"""
                INSERT INTO {self._full_table_name} AS c (key, count, expires_at)
                VALUES ($1, $2, now() + make_interval(secs => $3))
                ON CONFLICT (key) DO UPDATE SET
                    count = CASE WHEN c.expires_at <= now()
                                 THEN EXCLUDED.count
                                 ELSE c.count + EXCLUDED.count END,
                    expires_at = CASE WHEN c.expires_at <= now()
                                      THEN EXCLUDED.expires_at
                                      ELSE c.expires_at END
                RETURNING count
                """,
                self._key(key),
                amount,
                float(ttl),
            ),
        )
        return int(count)

    async def ttl(self, key: str) -> float | None:
        remaining = await self._run(
            "ttl",
            key,
            lambda: self._pool.fetchval(
                f"SELECT EXTRACT(EPOCH FROM (expires_at - now()))::float8 "
                f"FROM {self._full_table_name} WHERE key = $1 AND expires_at > now()",
                self._key(key),
            ),
        )
        return None if remaining is None else float(remaining)

    async def delete(self, key: str) -> bool:
        status = await self._run(
            "delete",
            key,
            lambda: self._pool.execute(
                f"DELETE FROM {self._full_table_name} WHERE key = $1", self._key(key)
            ),
        )
        return _affected_rows(status) > 0

    async def clear(self) -> int:
        """Delete every row under this store's prefix."""
        prefix = f"{self._key_prefix}:"
        status = await self._run(
            "clear",
            None,
            lambda: self._pool.execute(
                f"DELETE FROM {self._full_table_name} WHERE left(key, length($1)) = $1",
                prefix,
            ),
        )
        return _affected_rows(status)

    async def purge_expired(self) -> int:
        """Delete rows whose window has ended. Returns the number deleted."""
        status = await self._run(
            "purge",
            None,
            lambda: self._pool.execute(
                f"DELETE FROM {self._full_table_name} WHERE expires_at <= now()"
            ),
        )
        removed = _affected_rows(status)
        if removed:
            logger.debug("Purged %d expired counters from %s", removed, self._full_table_name)
        return removed

    async def close(self) -> None:
        """Close the connection pool."""
        if self._pool is not None:
            try:
                await self._pool.close()
                logger.info("Closed PostgreSQL connection pool (table=%s)", self._full_table_name)
            except (OSError, RuntimeError) as e:
                logger.warning("Error closing PostgreSQL pool: %s", e)
            finally:
                self._pool = None

        self._initialized = False


def _affected_rows(status: str) -> int:
    """Row count from a command status tag such as ``"DELETE 3"``."""
    try:
        return int(status.rsplit(" ", 1)[-1])
    except (AttributeError, ValueError):
        return 0
