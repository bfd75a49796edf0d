"""
Tests for cache backends and cache key builders.
"""
from datetime import date
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch
from uuid import uuid4

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from orderdesk.core.config import Settings
from orderdesk.domain.exceptions import CacheUnavailableError
from orderdesk.domain.order import OrderStatus
from orderdesk.repositories.base import PageRequest
from orderdesk.services import cache_keys
from orderdesk.services.cache import (
    EVICT_TAG_SCRIPT,
    ORDER_SEARCH,
    ORDERS,
    MemoryCache,
    RedisCache,
    TieredCache,
    build_cache,
)


class TestMemoryCache:
    """Tests for the in-process cache."""

    async def test_put_and_get(self):
        cache = MemoryCache()
        await cache.put("order:1", {"total": "10.00"}, ttl=60)

        assert await cache.get("order:1") == {"total": "10.00"}

    async def test_values_are_copies(self):
        cache = MemoryCache()
        await cache.put("k", {"items": [1]}, ttl=60)

        value = await cache.get("k")
        value["items"].append(2)

        assert await cache.get("k") == {"items": [1]}

    async def test_expiry(self):
        cache = MemoryCache()
        with patch("orderdesk.services.cache.time.monotonic", return_value=1000.0):
            await cache.put("k", 1, ttl=10)
        with patch("orderdesk.services.cache.time.monotonic", return_value=1011.0):
            assert await cache.get("k") is None

    async def test_evict_tag_only_drops_tagged_entries(self):
        cache = MemoryCache()
        await cache.put("search:a", 1, ttl=60, tags=[ORDER_SEARCH])
        await cache.put("search:b", 2, ttl=60, tags=[ORDER_SEARCH])
        await cache.put("order:1", 3, ttl=60, tags=[ORDERS])

        await cache.evict_tag(ORDER_SEARCH)

        assert await cache.get("search:a") is None
        assert await cache.get("search:b") is None
        assert await cache.get("order:1") == 3

    async def test_evict_key(self):
        cache = MemoryCache()
        await cache.put("order:1", 3, ttl=60, tags=[ORDERS])

        await cache.evict("order:1")

        assert await cache.get("order:1") is None

    async def test_bounded_size_drops_least_recent(self):
        cache = MemoryCache(max_entries=2)
        await cache.put("a", 1, ttl=60)
        await cache.put("b", 2, ttl=60)
        await cache.get("a")
        await cache.put("c", 3, ttl=60)

        assert len(cache) == 2
        assert await cache.get("b") is None
        assert await cache.get("a") == 1


class TestRedisCache:
    """Tests for the Redis backend with a mocked client."""

    @pytest.fixture
    def evict_script(self):
        return AsyncMock(return_value=2)

    @pytest.fixture
    def client(self, evict_script):
        client = MagicMock()
        client.get = AsyncMock(return_value=None)
        client.delete = AsyncMock(return_value=1)
        client.smembers = AsyncMock(return_value=set())
        client.register_script.return_value = evict_script
        pipeline = MagicMock()
        pipeline.execute = AsyncMock(return_value=[True])
        client.pipeline.return_value = pipeline
        return client

    async def test_get_decodes_json(self, client):
        client.get.return_value = '{"value": {"status": "PENDING"}, "tags": ["orders"]}'
        cache = RedisCache(client)

        assert await cache.get("order:1") == {"status": "PENDING"}
        assert await cache.get_entry("order:1") == ({"status": "PENDING"}, (ORDERS,))
        client.get.assert_awaited_with("orderdesk:order:1")

    async def test_put_sets_ttl_and_tags(self, client):
        cache = RedisCache(client)

        await cache.put("order:1", {"a": 1}, ttl=300, tags=[ORDERS])

        pipeline = client.pipeline.return_value
        pipeline.set.assert_called_once_with(
            "orderdesk:order:1", '{"value": {"a": 1}, "tags": ["orders"]}', ex=300
        )
        pipeline.sadd.assert_called_once_with("orderdesk:cache-tag:orders", "orderdesk:order:1")
        pipeline.execute.assert_awaited_once()

    async def test_evict_tag_is_a_single_server_side_step(self, client, evict_script):
        cache = RedisCache(client)

        await cache.evict_tag(ORDER_SEARCH)

        client.register_script.assert_called_once_with(EVICT_TAG_SCRIPT)
        evict_script.assert_awaited_once_with(keys=["orderdesk:cache-tag:order-search"])
        client.smembers.assert_not_awaited()
        client.delete.assert_not_awaited()

    async def test_evict_tag_script_covers_members_and_set(self):
        assert "SMEMBERS" in EVICT_TAG_SCRIPT
        assert "redis.call('DEL', KEYS[1])" in EVICT_TAG_SCRIPT

    async def test_errors_become_cache_unavailable(self, client):
        client.get.side_effect = RedisConnectionError("refused")
        cache = RedisCache(client)

        with pytest.raises(CacheUnavailableError):
            await cache.get("order:1")

    async def test_evict_tag_errors_become_cache_unavailable(self, client, evict_script):
        evict_script.side_effect = RedisConnectionError("refused")
        cache = RedisCache(client)

        with pytest.raises(CacheUnavailableError):
            await cache.evict_tag(ORDERS)


class TestTieredCache:
    """Tests for the local-in-front-of-remote cache."""

    async def test_read_fills_local(self):
        local, remote = MemoryCache(), MemoryCache()
        await remote.put("k", "v", ttl=60)
        cache = TieredCache(local, remote, local_ttl=30)

        assert await cache.get("k") == "v"
        assert await local.get("k") == "v"

    async def test_local_fill_keeps_tags(self):
        local, remote = MemoryCache(), MemoryCache()
        await remote.put("search:page0", {"v": "stale"}, ttl=600, tags=[ORDER_SEARCH])
        cache = TieredCache(local, remote, local_ttl=60)

        assert await cache.get("search:page0") == {"v": "stale"}
        assert await local.get_entry("search:page0") == ({"v": "stale"}, (ORDER_SEARCH,))

        await cache.evict_tag(ORDER_SEARCH)

        assert await cache.get("search:page0") is None
        assert await local.get("search:page0") is None

    async def test_write_and_evict_reach_both(self):
        local, remote = MemoryCache(), MemoryCache()
        cache = TieredCache(local, remote)

        await cache.put("k", "v", ttl=60, tags=[ORDERS])
        assert await local.get("k") == "v"
        assert await remote.get("k") == "v"

        await cache.evict_tag(ORDERS)
        assert await local.get("k") is None
        assert await remote.get("k") is None

    async def test_remote_failure_raised_after_local_eviction(self):
        local = MemoryCache()
        remote = MagicMock()
        remote.evict = AsyncMock(side_effect=CacheUnavailableError("down"))
        await local.put("k", "v", ttl=60)
        cache = TieredCache(local, remote)

        with pytest.raises(CacheUnavailableError):
            await cache.evict("k")
        assert await local.get("k") is None


class TestBuildCache:
    """Tests for backend selection."""

    def test_memory_backend(self):
        assert isinstance(build_cache(Settings(cache_backend="memory")), MemoryCache)

    def test_tiered_without_redis_falls_back_to_memory(self):
        assert isinstance(build_cache(Settings(cache_backend="tiered", redis_url=None)), MemoryCache)

    def test_tiered_with_redis(self):
        cache = build_cache(Settings(cache_backend="tiered", redis_url="redis://localhost:6379/0"))
        assert isinstance(cache, TieredCache)
        assert isinstance(cache.remote, RedisCache)


class TestCacheKeys:
    """Tests for key uniqueness."""

    def test_order_key(self):
        order_id = uuid4()
        assert cache_keys.order_key(order_id) == f"order:{order_id}"

    def test_page_parameters_distinguish_keys(self):
        keys = {
            cache_keys.all_orders_key(PageRequest(page=0, size=20)),
            cache_keys.all_orders_key(PageRequest(page=1, size=20)),
            cache_keys.all_orders_key(PageRequest(page=0, size=10)),
            cache_keys.all_orders_key(PageRequest(page=0, size=20, descending=False)),
        }
        assert len(keys) == 4

    def test_components_cannot_collide(self):
        page = PageRequest()
        assert cache_keys.customer_orders_key("a:b", page) != cache_keys.customer_orders_key("a", page)
        assert cache_keys.customer_orders_key("CUST", page) != cache_keys.customer_orders_key(
            "CUST", page, OrderStatus.PENDING
        )

    def test_search_keys_cover_every_filter(self):
        page = PageRequest()
        base = dict(
            customer_id="CUST-001",
            status=OrderStatus.PENDING,
            start_date=date(2024, 1, 1),
            end_date=date(2024, 1, 31),
            min_amount=Decimal("10"),
            max_amount=Decimal("100"),
        )
        variants = [
            {},
            {"customer_id": None},
            {"status": OrderStatus.SHIPPED},
            {"start_date": None},
            {"end_date": date(2024, 2, 1)},
            {"min_amount": None},
            {"max_amount": Decimal("99")},
            {"start_date": date(2024, 1, 31), "end_date": date(2024, 1, 1)},
        ]
        keys = {cache_keys.search_orders_key(**{**base, **variant}, page=page) for variant in variants}
        assert len(keys) == len(variants)

    def test_statistics_key_per_customer(self):
        assert cache_keys.statistics_key("A") != cache_keys.statistics_key("B")
