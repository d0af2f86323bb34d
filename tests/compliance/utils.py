"""Utility functions and types for compliance tests.

This module contains non-fixture utilities that can be imported directly.
Fixtures are defined in conftest.py and automatically available.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from ratewindow.core import CounterStore


# =============================================================================
# STORE FACTORY PROTOCOL
# =============================================================================


class StoreFactory(Protocol):
    """Protocol for store factory functions.

    Each engine provides a factory that creates initialized, isolated stores.
    This allows compliance tests to parametrize over engine types.
    """

    async def __call__(self) -> CounterStore:
        """Create an initialized counter store with no counters."""
        ...


# =============================================================================
# ENGINE CAPABILITIES
# =============================================================================


@dataclass(frozen=True)
class EngineCapabilities:
    """Capabilities of a counter store engine."""

    name: str
    shared_across_processes: bool
    requires_infrastructure: bool
    markers: tuple[str, ...]


ENGINE_CAPABILITIES: dict[str, EngineCapabilities] = {
    "memory": EngineCapabilities(
        name="memory",
        shared_across_processes=False,
        requires_infrastructure=False,
        markers=(),
    ),
    "redis": EngineCapabilities(
        name="redis",
        shared_across_processes=True,
        requires_infrastructure=True,
        markers=("redis", "integration"),
    ),
    "postgres": EngineCapabilities(
        name="postgres",
        shared_across_processes=True,
        requires_infrastructure=True,
        markers=("postgres", "integration"),
    ),
    "nats": EngineCapabilities(
        name="nats",
        shared_across_processes=True,
        requires_infrastructure=True,
        markers=("nats", "integration"),
    ),
}


def get_all_engines() -> list[str]:
    """Get all engine names."""
    return list(ENGINE_CAPABILITIES.keys())


def get_unit_test_engines() -> list[str]:
    """Get engines that can run without infrastructure (for CI)."""
    return [name for name, caps in ENGINE_CAPABILITIES.items() if not caps.requires_infrastructure]


def get_test_engines() -> list[str]:
    """Engines to run compliance tests against.

    Unit test engines always run. Infrastructure engines are added through
    the COMPLIANCE_ENGINES environment variable, e.g. ``COMPLIANCE_ENGINES=redis,nats``.
    """
    engines = get_unit_test_engines()
    for name in os.environ.get("COMPLIANCE_ENGINES", "").split(","):
        name = name.strip()
        if name in ENGINE_CAPABILITIES and name not in engines:
            engines.append(name)
    return engines
