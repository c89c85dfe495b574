"""Unit tests for health endpoints."""

import pytest
from fastapi.testclient import TestClient

from product_refresh.api.v1 import health


@pytest.fixture(autouse=True)
def no_redis(monkeypatch: pytest.MonkeyPatch) -> None:
    async def unavailable() -> None:
        return None

    monkeypatch.setattr(health, "get_redis_client", unavailable)


def test_health_check(client: TestClient) -> None:
    """Test basic health check returns healthy status."""
    response = client.get("/api/v1/health")
    assert response.status_code == 200

    data = response.json()
    assert data["status"] == "healthy"
    assert "version" in data
    assert data["environment"] == "test"
    assert "timestamp" in data
    assert data["circuit_breaker"]["state"] == "CLOSED"
    assert data["circuit_breaker"]["retry_after_ms"] == 0
    assert "total_requests" in data["circuit_breaker"]["metrics"]


def test_liveness_check(client: TestClient) -> None:
    """Test liveness check returns alive status."""
    response = client.get("/api/v1/health/live")
    assert response.status_code == 200

    data = response.json()
    assert data["status"] == "alive"


def test_readiness_check(client: TestClient) -> None:
    """Test readiness check returns expected structure."""
    response = client.get("/api/v1/health/ready")
    assert response.status_code == 200

    data = response.json()
    assert "ready" in data
    assert data["checks"]["paapi_credentials"] is True
    assert data["checks"]["redis"] is False
