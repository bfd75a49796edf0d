"""
Tag-aware cache used by the order service.

Values are JSON-compatible objects. Every entry is stored under one or
more tags so a whole family of entries (all search pages, all statistics)
can be evicted at once.

Backends:
- MemoryCache: in-process, TTL plus a bounded entry count
- RedisCache: shared across instances via redis.asyncio
- TieredCache: MemoryCache in front of RedisCache
"""
import asyncio
import json
import time
from abc import ABC, abstractmethod
from collections import OrderedDict
from collections.abc import Iterable
from typing import Any, Optional

from redis.asyncio import Redis
from redis.exceptions import RedisError

from orderdesk.core.config import Settings
from orderdesk.core.logging import get_logger
from orderdesk.domain.exceptions import CacheUnavailableError

logger = get_logger(__name__)

# Cache namespaces, one per kind of cached read
ORDERS = "orders"
ORDER_SEARCH = "order-search"
ORDER_STATISTICS = "order-statistics"
ALL_ORDER_TAGS = (ORDERS, ORDER_SEARCH, ORDER_STATISTICS)


class Cache(ABC):
    """Cache contract. Backends raise CacheUnavailableError on infrastructure failure."""

    async def get(self, key: str) -> Optional[Any]:
        entry = await self.get_entry(key)
        return entry[0] if entry is not None else None

    @abstractmethod
    async def get_entry(self, key: str) -> Optional[tuple[Any, tuple[str, ...]]]:
        """Return ``(value, tags)`` for a live entry, or None."""

    @abstractmethod
    async def put(self, key: str, value: Any, ttl: int, tags: Iterable[str] = ()) -> None:
        ...

    @abstractmethod
    async def evict(self, key: str) -> None:
        ...

    @abstractmethod
    async def evict_tag(self, tag: str) -> None:
        ...

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        pass


class MemoryCache(Cache):
    """In-process LRU cache with per-entry expiry."""

    def __init__(self, max_entries: int = 1000) -> None:
        self.max_entries = max_entries
        self._entries: OrderedDict[str, tuple[float, str, tuple[str, ...]]] = OrderedDict()
        self._tags: dict[str, set[str]] = {}
        self._lock = asyncio.Lock()

    async def get_entry(self, key: str) -> Optional[tuple[Any, tuple[str, ...]]]:
        async with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, payload, tags = entry
            if expires_at <= time.monotonic():
                self._drop(key)
                return None
            self._entries.move_to_end(key)
            return json.loads(payload), tags

    async def put(self, key: str, value: Any, ttl: int, tags: Iterable[str] = ()) -> None:
        payload = json.dumps(value, default=str)
        tags = tuple(tags)
        async with self._lock:
            self._drop(key)
            self._entries[key] = (time.monotonic() + ttl, payload, tags)
            for tag in tags:
                self._tags.setdefault(tag, set()).add(key)
            while len(self._entries) > self.max_entries:
                oldest = next(iter(self._entries))
                self._drop(oldest)

    async def evict(self, key: str) -> None:
        async with self._lock:
            self._drop(key)

    async def evict_tag(self, tag: str) -> None:
        async with self._lock:
            for key in self._tags.pop(tag, set()):
                self._drop(key)

    def _drop(self, key: str) -> None:
        entry = self._entries.pop(key, None)
        if entry is None:
            return
        for tag in entry[2]:
            keys = self._tags.get(tag)
            if keys is not None:
                keys.discard(key)
                if not keys:
                    del self._tags[tag]

    def __len__(self) -> int:
        return len(self._entries)


# Deletes every member of the tag set and the set itself in one step, so a
# concurrent put cannot register a member that is then dropped unseen.
EVICT_TAG_SCRIPT = """
local members = redis.call('SMEMBERS', KEYS[1])
for i = 1, #members, 500 do
    redis.call('DEL', unpack(members, i, math.min(i + 499, #members)))
end
redis.call('DEL', KEYS[1])
return #members
"""


class RedisCache(Cache):
    """
    Redis-backed cache. Tags are Redis sets of member keys.

    Each value is stored as ``{"value": ..., "tags": [...]}`` so a reader
    that copies it into a local tier can keep its tag membership.
    """

    def __init__(
        self,
        client: Redis,
        timeout: float = 0.5,
        prefix: str = "orderdesk:",
    ) -> None:
        self.client = client
        self.timeout = timeout
        self.prefix = prefix
        self._evict_tag_script = client.register_script(EVICT_TAG_SCRIPT)

    @classmethod
    def from_url(cls, url: str, timeout: float = 0.5) -> "RedisCache":
        client = Redis.from_url(
            url,
            decode_responses=True,
            socket_timeout=timeout,
            socket_connect_timeout=timeout,
        )
        return cls(client, timeout=timeout)

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    def _tag_key(self, tag: str) -> str:
        return f"{self.prefix}cache-tag:{tag}"

    async def _call(self, awaitable: Any) -> Any:
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout)
        except (RedisError, OSError, asyncio.TimeoutError) as e:
            raise CacheUnavailableError(f"Redis cache unavailable: {e}") from e

    async def get_entry(self, key: str) -> Optional[tuple[Any, tuple[str, ...]]]:
        payload = await self._call(self.client.get(self._key(key)))
        if payload is None:
            return None
        envelope = json.loads(payload)
        return envelope["value"], tuple(envelope["tags"])

    async def put(self, key: str, value: Any, ttl: int, tags: Iterable[str] = ()) -> None:
        full_key = self._key(key)
        tags = list(tags)
        payload = json.dumps({"value": value, "tags": tags}, default=str)
        pipe = self.client.pipeline(transaction=False)
        pipe.set(full_key, payload, ex=ttl)
        for tag in tags:
            pipe.sadd(self._tag_key(tag), full_key)
        await self._call(pipe.execute())

    async def evict(self, key: str) -> None:
        await self._call(self.client.delete(self._key(key)))

    async def evict_tag(self, tag: str) -> None:
        await self._call(self._evict_tag_script(keys=[self._tag_key(tag)]))

    async def ping(self) -> bool:
        return bool(await self._call(self.client.ping()))

    async def close(self) -> None:
        await self.client.aclose()


class TieredCache(Cache):
    """
    Local tier in front of a shared tier.

    Reads fill the local tier from the remote one, keeping the entry's tags
    so local tag eviction still reaches it. Writes and evictions go to
    both; a remote failure is raised after the local tier is updated.
    """

    def __init__(self, local: MemoryCache, remote: Cache, local_ttl: int = 60) -> None:
        self.local = local
        self.remote = remote
        self.local_ttl = local_ttl

    async def get_entry(self, key: str) -> Optional[tuple[Any, tuple[str, ...]]]:
        entry = await self.local.get_entry(key)
        if entry is not None:
            return entry
        entry = await self.remote.get_entry(key)
        if entry is not None:
            value, tags = entry
            await self.local.put(key, value, self.local_ttl, tags)
        return entry

    async def put(self, key: str, value: Any, ttl: int, tags: Iterable[str] = ()) -> None:
        tags = tuple(tags)
        await self.local.put(key, value, min(ttl, self.local_ttl), tags)
        await self.remote.put(key, value, ttl, tags)

    async def evict(self, key: str) -> None:
        await self.local.evict(key)
        await self.remote.evict(key)

    async def evict_tag(self, tag: str) -> None:
        await self.local.evict_tag(tag)
        await self.remote.evict_tag(tag)

    async def ping(self) -> bool:
        return await self.remote.ping()

    async def close(self) -> None:
        await self.remote.close()


def build_cache(settings: Settings) -> Cache:
    """Build the configured cache backend."""
    local = MemoryCache(max_entries=settings.local_cache_max_entries)

    if settings.cache_backend == "memory":
        return local

    if not settings.redis_url:
        logger.warning(
            "Redis not configured - using in-process cache only",
            cache_backend=settings.cache_backend,
        )
        return local

    remote = RedisCache.from_url(str(settings.redis_url), timeout=settings.cache_timeout_seconds)
    if settings.cache_backend == "redis":
        return remote

    return TieredCache(local, remote, local_ttl=settings.local_cache_ttl)
