"""Tests for Prometheus metrics integration.

These tests verify that Prometheus metrics are recorded when rate limiters
decide, when stores fail, and that they are exported through the FastAPI
endpoint.
"""

from unittest.mock import patch

import pytest

# Ensure prometheus-client is available for tests
pytest.importorskip("prometheus_client")

from prometheus_client import REGISTRY

from ratewindow.contrib.prometheus import PROMETHEUS_AVAILABLE, enable_metrics
from ratewindow.contrib.prometheus.metrics import (
    NAMESPACE,
    get_metrics_registry,
    is_enabled,
    record_backend_failure,
    record_decision,
    record_fallback_activation,
    record_store_operation,
)
from ratewindow.limiter import RateLimiter
from ratewindow.stores.memory import MemoryCounterStore
from ratewindow.testing import FailingCounterStore


def _sample(name: str, labels: dict[str, str]) -> float:
    return REGISTRY.get_sample_value(f"{NAMESPACE}_{name}", labels=labels) or 0.0


class TestPrometheusAvailability:
    """Test Prometheus availability detection."""

    def test_prometheus_available(self):
        assert PROMETHEUS_AVAILABLE is True

    def test_enable_metrics_is_idempotent(self):
        assert enable_metrics() is True
        assert enable_metrics() is True
        assert is_enabled() is True
        assert get_metrics_registry() is REGISTRY

    def test_enable_metrics_without_client(self):
        with patch("ratewindow.contrib.prometheus.PROMETHEUS_AVAILABLE", False):
            assert enable_metrics() is False


class TestMetricsRecording:
    """Direct recording functions."""

    def test_record_decision(self):
        enable_metrics()
        labels = {"limiter_id": "rec_decision", "store": "memory", "decision": "allowed"}
        before = _sample("decisions_total", labels)

        record_decision("rec_decision", "memory", "allowed")

        assert _sample("decisions_total", labels) == before + 1

    def test_record_backend_failure(self):
        enable_metrics()
        labels = {"limiter_id": "rec_failure", "store": "redis", "kind": "unavailable"}

        record_backend_failure("rec_failure", "redis", "unavailable")

        assert _sample("backend_failures_total", labels) >= 1

    def test_record_fallback_activation(self):
        enable_metrics()
        labels = {"limiter_id": "rec_fallback", "policy": "fail_closed"}

        record_fallback_activation("rec_fallback", "fail_closed")

        assert _sample("fallback_activations_total", labels) >= 1

    def test_record_store_operation(self):
        enable_metrics()
        labels = {"store": "postgres", "operation": "incr"}
        before = _sample("store_operation_duration_seconds_count", labels)

        record_store_operation("postgres", "incr", 0.002)

        assert _sample("store_operation_duration_seconds_count", labels) == before + 1


class TestLimiterMetrics:
    """Metrics recorded by RateLimiter decisions."""

    async def test_decisions_by_outcome(self):
        enable_metrics()
        limiter = RateLimiter(MemoryCounterStore(), limit=1, window_seconds=60, name="prom_api")
        allowed = {"limiter_id": "prom_api", "store": "memory", "decision": "allowed"}
        exceeded = {"limiter_id": "prom_api", "store": "memory", "decision": "limit_exceeded"}
        allowed_before = _sample("decisions_total", allowed)
        exceeded_before = _sample("decisions_total", exceeded)

        await limiter.allow("client")
        await limiter.allow("client")

        assert _sample("decisions_total", allowed) == allowed_before + 1
        assert _sample("decisions_total", exceeded) == exceeded_before + 1

    async def test_store_failure_metrics(self):
        enable_metrics()
        limiter = RateLimiter(
            FailingCounterStore.unavailable(),
            limit=5,
            window_seconds=60,
            name="prom_outage",
            fail_closed=True,
        )

        assert await limiter.allow("client") is False

        assert _sample(
            "backend_failures_total",
            {"limiter_id": "prom_outage", "store": "failing", "kind": "unavailable"},
        ) >= 1
        assert _sample(
            "fallback_activations_total",
            {"limiter_id": "prom_outage", "policy": "fail_closed"},
        ) >= 1


class TestFastAPIEndpoint:
    """GET /metrics exposes the collected metrics."""

    def test_metrics_endpoint(self):
        pytest.importorskip("fastapi")
        from fastapi import FastAPI
        from fastapi.testclient import TestClient

        from ratewindow.contrib.prometheus.fastapi import add_metrics_endpoint

        app = FastAPI()
        assert add_metrics_endpoint(app) is True
        record_decision("prom_endpoint", "memory", "allowed")

        response = TestClient(app).get("/metrics")

        assert response.status_code == 200
        assert f"{NAMESPACE}_decisions_total" in response.text
        assert 'limiter_id="prom_endpoint"' in response.text
