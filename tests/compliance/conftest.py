"""Fixtures for counter store compliance tests.

This module provides factory fixtures that create store instances for testing.
Every store created by a factory is isolated (unique prefix, table or key
namespace) and removed again after the test.

Usage:
    @pytest.mark.parametrize("store_factory", get_test_engines(), indirect=True)
    async def test_something(store):
        # test...
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncIterator

import pytest

from compliance.utils import StoreFactory
from conftest import NATS_AVAILABLE, POSTGRES_AVAILABLE, REDIS_AVAILABLE
from ratewindow.core import CounterStore
from ratewindow.exceptions import BackendError


# =============================================================================
# MEMORY STORE FACTORY
# =============================================================================


@pytest.fixture
async def memory_store_factory() -> AsyncIterator[StoreFactory]:
    """Factory for MemoryCounterStore instances.

    Memory store requires no infrastructure and supports all features.
    """
    from ratewindow.stores.memory import MemoryCounterStore

    created: list[MemoryCounterStore] = []

    async def factory() -> CounterStore:
        store = MemoryCounterStore()
        await store.initialize()
        created.append(store)
        return store

    yield factory

    for store in created:
        await store.close()


# =============================================================================
# REDIS STORE FACTORY
# =============================================================================


@pytest.fixture
async def redis_store_factory(redis_url: str) -> AsyncIterator[StoreFactory]:
    """Factory for RedisCounterStore instances.

    Skips tests if the Redis library is missing or Redis is not accessible.
    """
    if not REDIS_AVAILABLE:
        pytest.skip("Redis library not installed")

    from ratewindow.stores.redis import RedisCounterStore

    created: list[RedisCounterStore] = []

    async def factory() -> CounterStore:
        store = RedisCounterStore(url=redis_url, key_prefix=f"test_{uuid.uuid4().hex[:8]}")
        try:
            await store.initialize()
        except BackendError as e:
            pytest.skip(f"Redis not accessible: {e}")
        created.append(store)
        return store

    yield factory

    for store in created:
        await store.clear()
        await store.close()


# =============================================================================
# POSTGRES STORE FACTORY
# =============================================================================


@pytest.fixture
async def postgres_store_factory(postgres_url: str) -> AsyncIterator[StoreFactory]:
    """Factory for PostgresCounterStore instances, one table per store.

    Skips tests if asyncpg is missing or PostgreSQL is not accessible.
    """
    if not POSTGRES_AVAILABLE:
        pytest.skip("asyncpg library not installed")

    from ratewindow.stores.postgres import PostgresCounterStore

    created: list[PostgresCounterStore] = []
    table_names: list[str] = []

    async def factory() -> CounterStore:
        table_name = f"rate_window_test_{uuid.uuid4().hex[:8]}"
        store = PostgresCounterStore(url=postgres_url, table_name=table_name, auto_create=True)
        try:
            await store.initialize()
        except BackendError as e:
            pytest.skip(f"PostgreSQL not accessible: {e}")
        created.append(store)
        table_names.append(table_name)
        return store

    yield factory

    for store in created:
        await store.close()

    if table_names:
        import asyncpg

        conn = await asyncpg.connect(postgres_url)
        try:
            for table_name in table_names:
                await conn.execute(f'DROP TABLE IF EXISTS "public"."{table_name}"')
        finally:
            await conn.close()


# =============================================================================
# NATS STORE FACTORY
# =============================================================================


@pytest.fixture
async def nats_store_factory(nats_url: str) -> AsyncIterator[StoreFactory]:
    """Factory for NatsKvCounterStore instances sharing one test bucket.

    Skips tests if nats-py is missing or NATS is not accessible.
    """
    if not NATS_AVAILABLE:
        pytest.skip("nats-py library not installed")

    from ratewindow.stores.nats import NatsKvCounterStore

    created: list[NatsKvCounterStore] = []

    async def factory() -> CounterStore:
        store = NatsKvCounterStore(
            url=nats_url,
            bucket_name="rate_window_test",
            auto_create=True,
            key_prefix=f"test_{uuid.uuid4().hex[:8]}",
        )
        try:
            await store.initialize()
        except BackendError as e:
            pytest.skip(f"NATS not accessible: {e}")
        created.append(store)
        return store

    yield factory

    for store in created:
        await store.clear()
        await store.close()


# =============================================================================
# PARAMETRIZED STORE FIXTURES
# =============================================================================


@pytest.fixture
def store_factory(request) -> StoreFactory:
    """Parametrized store factory.

    The engine name is set via indirect parametrization, so infrastructure
    fixtures only run (or skip) for the engines a test is parametrized with:

        @pytest.mark.parametrize("store_factory", get_test_engines(), indirect=True)
        async def test_something(store_factory):
            store = await store_factory()
    """
    engine_name = getattr(request, "param", "memory")
    if engine_name not in ("memory", "redis", "postgres", "nats"):
        pytest.fail(f"Unknown engine: {engine_name}")
    return request.getfixturevalue(f"{engine_name}_store_factory")


@pytest.fixture
async def store(store_factory: StoreFactory) -> CounterStore:
    """A single initialized store from the parametrized factory."""
    return await store_factory()
