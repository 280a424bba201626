from __future__ import annotations

import pytest

from backend.fieldops.observability import MetricsRegistry


def test_metrics_endpoint_exposes_counters(client) -> None:
    health = client.get("/health")
    assert health.status_code == 200

    metrics = client.get("/metrics")
    assert metrics.status_code == 200
    body = metrics.text
    assert "fieldops_requests_total" in body
    assert "fieldops_requests_5xx_total" in body
    assert "# TYPE fieldops_duplicates_blocked_total counter" in body


def test_readiness_endpoint(client) -> None:
    response = client.get("/health/ready")
    assert response.status_code == 200
    assert response.json()["status"] == "ready"


def test_registry_rejects_unknown_events() -> None:
    registry = MetricsRegistry()
    registry.increment("documents_numbered", kind="quote", count=2)
    assert registry.event_count("documents_numbered", kind="quote") == 2
    with pytest.raises(KeyError):
        registry.increment("not_a_counter", kind="quote")
