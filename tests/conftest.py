"""
Shared test fixtures.
"""
import os

# Must be set before orderdesk settings are first loaded
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("STORAGE_BACKEND", "memory")
os.environ.setdefault("CACHE_BACKEND", "memory")

from collections.abc import AsyncIterator  # noqa: E402

import pytest  # noqa: E402
from fastapi import FastAPI  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402

from orderdesk.core.config import Settings  # noqa: E402
from orderdesk.main import create_app  # noqa: E402
from orderdesk.repositories.memory import InMemoryOrderStore  # noqa: E402
from orderdesk.schemas.order import CreateOrderRequest  # noqa: E402
from orderdesk.services.cache import MemoryCache  # noqa: E402
from orderdesk.services.order_service import OrderService  # noqa: E402
from tests.factories import make_order_request  # noqa: E402


@pytest.fixture
def test_settings() -> Settings:
    """Settings with no retry delays."""
    return Settings(
        environment="test",
        storage_backend="memory",
        cache_backend="memory",
        read_retry_attempts=3,
        read_retry_backoff_seconds=0,
        create_retry_attempts=3,
    )


@pytest.fixture
def order_store() -> InMemoryOrderStore:
    return InMemoryOrderStore()


@pytest.fixture
def memory_cache() -> MemoryCache:
    return MemoryCache(max_entries=100)


@pytest.fixture
def order_service(
    order_store: InMemoryOrderStore,
    memory_cache: MemoryCache,
    test_settings: Settings,
) -> OrderService:
    return OrderService(order_store.scope, memory_cache, test_settings)


@pytest.fixture
def app(order_service: OrderService, memory_cache: MemoryCache) -> FastAPI:
    """App wired to in-memory storage; lifespan is not run."""
    application = create_app()
    application.state.order_service = order_service
    application.state.cache = memory_cache
    return application


@pytest.fixture
def client(app: FastAPI) -> TestClient:
    return TestClient(app)


@pytest.fixture
async def async_client(app: FastAPI) -> AsyncIterator[AsyncClient]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def order_request() -> CreateOrderRequest:
    return make_order_request()
