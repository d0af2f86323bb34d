"""Counter store implementations.

Available engines:
- Memory: In-process counters for local/development use and single-process apps
- Redis: Shared counters using Redis with a Lua increment script
- PostgreSQL: Shared counters using an upsert on a counters table
- NATS: Shared counters using NATS JetStream Key-Value Store with CAS

Remote store modules import without their client library; constructing a
store whose library is missing raises ImportError with install instructions.
"""

from __future__ import annotations

from ratewindow.stores.memory import CounterRecord, MemoryCounterStore
from ratewindow.stores.nats import NatsKvCounterStore
from ratewindow.stores.postgres import PostgresCounterStore
from ratewindow.stores.redis import RedisCounterStore

STORE_CLASSES: dict[str, type] = {
    "memory": MemoryCounterStore,
    "redis": RedisCounterStore,
    "postgres": PostgresCounterStore,
    "nats": NatsKvCounterStore,
}

__all__ = [
    "CounterRecord",
    "MemoryCounterStore",
    "RedisCounterStore",
    "PostgresCounterStore",
    "NatsKvCounterStore",
    "STORE_CLASSES",
]
