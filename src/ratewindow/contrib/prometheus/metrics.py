"""Prometheus metrics definitions for rate-window.

This module defines all Prometheus metrics used by rate-window and provides
functions to record metric values. Metrics are lazily initialized to avoid
import errors when prometheus-client is not installed.

Metrics:
    ratewindow_decisions_total: Counter of admission decisions by outcome
    ratewindow_backend_failures_total: Counter of counter store failures by kind
    ratewindow_fallback_activations_total: Counter of decisions taken by the failure policy
    ratewindow_store_operation_duration_seconds: Histogram of store operation latencies
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from prometheus_client import CollectorRegistry, Counter, Histogram

logger = logging.getLogger(__name__)

# Try to import prometheus_client classes at module level
try:
    from prometheus_client import Counter as _Counter
    from prometheus_client import Histogram as _Histogram
    from prometheus_client import REGISTRY as _REGISTRY

    _PROMETHEUS_CLASSES: dict[str, Any] | None = {
        "Counter": _Counter,
        "Histogram": _Histogram,
        "REGISTRY": _REGISTRY,
    }
except ImportError:
    _PROMETHEUS_CLASSES = None


NAMESPACE = "ratewindow"

# Store round trips are typically well under 100ms
STORE_LATENCY_BUCKETS = (
    0.0001,
    0.0005,
    0.001,
    0.005,
    0.01,
    0.025,
    0.05,
    0.1,
    0.25,
    0.5,
    1.0,
)


class _MetricsState:
    """Encapsulates metrics state to avoid global variables."""

    def __init__(self) -> None:
        self.initialized: bool = False
        self.decisions_total: Counter | None = None
        self.backend_failures_total: Counter | None = None
        self.fallback_activations: Counter | None = None
        self.store_duration: Histogram | None = None
        self.registry: CollectorRegistry | None = None


_state = _MetricsState()


def is_enabled() -> bool:
    """Check if Prometheus metrics are enabled.

    Returns:
        True if metrics have been initialized and are being recorded.
    """
    return _state.initialized


def _init_metrics(registry: CollectorRegistry | None = None) -> None:
    """Create the Prometheus collectors (once).

    Args:
        registry: Registry the collectors are registered with (default: the
            global prometheus_client REGISTRY). Ignored once initialized.
    """
    if _state.initialized:
        if registry is not None and registry is not _state.registry:
            logger.warning("Prometheus metrics already registered, ignoring new registry")
        return

    if _PROMETHEUS_CLASSES is None:
        logger.debug("prometheus-client not installed, metrics disabled")
        return

    counter_cls = _PROMETHEUS_CLASSES["Counter"]
    histogram_cls = _PROMETHEUS_CLASSES["Histogram"]
    target = registry if registry is not None else _PROMETHEUS_CLASSES["REGISTRY"]

    _state.decisions_total = counter_cls(
        f"{NAMESPACE}_decisions_total",
        "Total number of admission decisions",
        ["limiter_id", "store", "decision"],
        registry=target,
    )

    _state.backend_failures_total = counter_cls(
        f"{NAMESPACE}_backend_failures_total",
        "Total number of counter store failures seen by rate limiters",
        ["limiter_id", "store", "kind"],
        registry=target,
    )

    _state.fallback_activations = counter_cls(
        f"{NAMESPACE}_fallback_activations_total",
        "Number of decisions taken by the store failure policy",
        ["limiter_id", "policy"],
        registry=target,
    )

    _state.store_duration = histogram_cls(
        f"{NAMESPACE}_store_operation_duration_seconds",
        "Counter store operation latency",
        ["store", "operation"],
        buckets=STORE_LATENCY_BUCKETS,
        registry=target,
    )

    _state.registry = target
    _state.initialized = True
    logger.info("Prometheus metrics initialized for rate-window")


def get_metrics_registry() -> CollectorRegistry | None:
    """Return the registry holding the rate-window collectors, if enabled."""
    return _state.registry


def record_decision(limiter_id: str, store: str, decision: str) -> None:
    """Record an admission decision.

    Args:
        limiter_id: The rate limiter identifier
        store: The store engine (e.g., "redis", "memory", "postgres", "nats")
        decision: Decision reason ("allowed", "limit_exceeded",
            "backend_unavailable", "backend_error")
    """
    if not _state.initialized:
        return
    if _state.decisions_total is not None:
        _state.decisions_total.labels(limiter_id=limiter_id, store=store, decision=decision).inc()


def record_backend_failure(limiter_id: str, store: str, kind: str) -> None:
    """Record a counter store failure.

    Args:
        limiter_id: The rate limiter identifier
        store: The store engine
        kind: "unavailable" or "error"
    """
    if not _state.initialized:
        return
    if _state.backend_failures_total is not None:
        _state.backend_failures_total.labels(limiter_id=limiter_id, store=store, kind=kind).inc()


def record_fallback_activation(limiter_id: str, policy: str) -> None:
    """Record a decision taken by the failure policy.

    Args:
        limiter_id: The rate limiter identifier
        policy: "fail_open" or "fail_closed"
    """
    if not _state.initialized:
        return
    if _state.fallback_activations is not None:
        _state.fallback_activations.labels(limiter_id=limiter_id, policy=policy).inc()


def record_store_operation(store: str, operation: str, duration_seconds: float) -> None:
    """Record counter store operation latency.

    Args:
        store: The store engine
        operation: The operation ("get", "set", "incr", "ttl", "delete", "clear")
        duration_seconds: Operation duration in seconds
    """
    if not _state.initialized:
        return
    if _state.store_duration is not None:
        _state.store_duration.labels(store=store, operation=operation).observe(duration_seconds)
