"""
Tests for health check endpoints.
"""
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from orderdesk.domain.exceptions import CacheUnavailableError


def test_root_endpoint(client: TestClient):
    """Test the root endpoint returns API info."""
    response = client.get("/")

    assert response.status_code == 200
    data = response.json()
    assert data["name"] == "OrderDesk API"
    assert "version" in data
    assert data["status"] == "running"


def test_health_check(client: TestClient):
    """Test the basic health check endpoint."""
    response = client.get("/health")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert "timestamp" in data


def test_liveness_probe(client: TestClient):
    """Test the liveness probe endpoint."""
    response = client.get("/health/live")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "alive"


@pytest.mark.asyncio
async def test_readiness_probe(async_client):
    """Test the readiness probe endpoint."""
    response = await async_client.get("/health/ready")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ready"
    assert data["checks"]["database"] == "in-memory"
    assert data["checks"]["cache"] == "connected"


@pytest.mark.asyncio
async def test_readiness_with_cache_down(async_client, memory_cache):
    """Cache outage is reported but does not make the service unready."""
    memory_cache.ping = AsyncMock(side_effect=CacheUnavailableError("redis down"))

    response = await async_client.get("/health/ready")

    data = response.json()
    assert data["status"] == "ready"
    assert data["checks"]["cache"].startswith("error")
