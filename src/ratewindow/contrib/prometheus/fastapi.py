"""Expose rate-window metrics from a FastAPI application.

    app = FastAPI()
    add_metrics_endpoint(app)  # GET /metrics

Applications that already serve the default registry only need enable_metrics().
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from ratewindow.contrib.prometheus import PROMETHEUS_AVAILABLE, enable_metrics
from ratewindow.contrib.prometheus.metrics import get_metrics_registry

if TYPE_CHECKING:
    from fastapi import FastAPI
    from prometheus_client import CollectorRegistry

try:
    from starlette.responses import Response

    STARLETTE_AVAILABLE = True
except ImportError:
    Response = None  # type: ignore[misc, assignment]
    STARLETTE_AVAILABLE = False


def add_metrics_endpoint(
    app: FastAPI,
    path: str = "/metrics",
    include_in_schema: bool = False,
    registry: CollectorRegistry | None = None,
) -> bool:
    """Enable metrics and serve them in the Prometheus text format.

    The endpoint renders the registry the rate-window collectors live in, so
    everything else registered there is exported too.

    Args:
        app: FastAPI application
        path: Route of the endpoint
        include_in_schema: List the route in the OpenAPI schema
        registry: Passed to enable_metrics() on first use

    Returns:
        True if the route was added; False when prometheus-client or
        Starlette is missing.
    """
    if not PROMETHEUS_AVAILABLE or not STARLETTE_AVAILABLE:
        return False

    from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

    enable_metrics(registry)
    exported = get_metrics_registry()

    @app.get(path, include_in_schema=include_in_schema)
    def prometheus_metrics():
        return Response(content=generate_latest(exported), media_type=CONTENT_TYPE_LATEST)

    return True
