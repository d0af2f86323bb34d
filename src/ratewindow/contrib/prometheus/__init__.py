"""Optional Prometheus export of rate-window decisions and store latencies.

Requires the `prometheus-client` package:
    pip install 'rate-window[prometheus]'

Nothing is recorded until enable_metrics() is called. Collectors go to the
default prometheus_client registry unless another one is passed:

    from prometheus_client import CollectorRegistry
    from ratewindow.contrib.prometheus import enable_metrics

    registry = CollectorRegistry()
    enable_metrics(registry)

Serving them from FastAPI:
    from ratewindow.contrib.prometheus.fastapi import add_metrics_endpoint
    add_metrics_endpoint(app)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from ratewindow.contrib.prometheus.metrics import (
    _init_metrics,
    get_metrics_registry,
    is_enabled,
)

if TYPE_CHECKING:
    from prometheus_client import CollectorRegistry

try:
    import prometheus_client  # noqa: F401

    PROMETHEUS_AVAILABLE = True
except ImportError:
    PROMETHEUS_AVAILABLE = False


def enable_metrics(registry: CollectorRegistry | None = None) -> bool:
    """Start recording rate-window metrics.

    Safe to call more than once; the first call decides the registry.

    Args:
        registry: Registry for the collectors (default: prometheus_client.REGISTRY)

    Returns:
        False if prometheus-client is not installed, True otherwise.
    """
    if not PROMETHEUS_AVAILABLE:
        return False
    _init_metrics(registry)
    return True


__all__ = ["enable_metrics", "is_enabled", "get_metrics_registry", "PROMETHEUS_AVAILABLE"]
