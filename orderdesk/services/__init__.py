"""
Services package for business logic layer.
"""
from orderdesk.services.cache import Cache, MemoryCache, RedisCache, TieredCache, build_cache
from orderdesk.services.distributed_lock import InMemoryLockProvider, LockProvider, RedisLockProvider
from orderdesk.services.order_service import OrderService

__all__ = [
    "OrderService",
    "Cache",
    "MemoryCache",
    "RedisCache",
    "TieredCache",
    "build_cache",
    "LockProvider",
    "InMemoryLockProvider",
    "RedisLockProvider",
]
