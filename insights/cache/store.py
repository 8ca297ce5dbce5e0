"""Response cache stores.

``InMemoryCacheStore`` is the default: an OrderedDict kept in LRU order
under an asyncio.Lock, evicting the least recently used entry at
capacity. ``RedisCacheStore`` shares entries across processes, storing
each CacheEntry as JSON with a native Redis TTL.

Redis key layout:
    insights:cache:{analysis_type}:{fingerprint} -> CacheEntry JSON
"""

from __future__ import annotations

import asyncio
from collections import OrderedDict
from typing import Protocol

import redis.asyncio as aioredis

from insights.common.config import get_settings
from insights.common.logging import get_logger
from insights.common.metrics import CACHE_EVICTIONS_TOTAL
from insights.common.schemas import CacheEntry

logger = get_logger("CACHE")

REDIS_KEY_PREFIX = "insights:cache:"


class CacheStore(Protocol):
    """Storage contract for cached insight responses."""

    async def get(self, key: str) -> CacheEntry | None: ...

    async def set(self, key: str, entry: CacheEntry) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def clear(self) -> None: ...

    async def size(self) -> int: ...


class InMemoryCacheStore:
    """Bounded in-process LRU store.

    Args:
        max_entries: Capacity; the least recently used entry is evicted
            when a new key would exceed it.
    """

    def __init__(self, max_entries: int = 1000) -> None:
        self.max_entries = max_entries
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> CacheEntry | None:
        async with self._lock:
            entry = self._entries.get(key)
            if entry is not None:
                self._entries.move_to_end(key)
            return entry

    async def set(self, key: str, entry: CacheEntry) -> None:
        async with self._lock:
            if key in self._entries:
                self._entries.move_to_end(key)
            self._entries[key] = entry
            while len(self._entries) > self.max_entries:
                evicted, _ = self._entries.popitem(last=False)
                CACHE_EVICTIONS_TOTAL.labels(cause="capacity").inc()
                logger.debug("Evicted cache entry at capacity", extra={"data": {"entry": evicted}})

    async def delete(self, key: str) -> None:
        async with self._lock:
            self._entries.pop(key, None)

    async def clear(self) -> None:
        async with self._lock:
            self._entries.clear()

    async def size(self) -> int:
        return len(self._entries)


class RedisCacheStore:
    """Cache store backed by Redis, one string key per entry.

    Args:
        redis: Async Redis client created with ``decode_responses=True``.
        prefix: Key namespace.
    """

    def __init__(self, redis: aioredis.Redis, prefix: str = REDIS_KEY_PREFIX) -> None:
        self.redis = redis
        self.prefix = prefix

    @classmethod
    def from_url(cls, redis_url: str | None = None) -> RedisCacheStore:
        url = redis_url or get_settings().redis_url
        return cls(aioredis.from_url(url, decode_responses=True))

    async def get(self, key: str) -> CacheEntry | None:
        raw = await self.redis.get(f"{self.prefix}{key}")
        if raw is None:
            return None
        return CacheEntry.model_validate_json(raw)

    async def set(self, key: str, entry: CacheEntry) -> None:
        await self.redis.set(f"{self.prefix}{key}", entry.model_dump_json(), ex=max(1, entry.ttl))

    async def delete(self, key: str) -> None:
        await self.redis.delete(f"{self.prefix}{key}")

    async def clear(self) -> None:
        keys = [k async for k in self.redis.scan_iter(match=f"{self.prefix}*")]
        if keys:
            await self.redis.delete(*keys)

    async def size(self) -> int:
        return len([k async for k in self.redis.scan_iter(match=f"{self.prefix}*")])

    async def close(self) -> None:
        await self.redis.aclose()
