"""Response cache facade used by the insight pipeline.

Looks requests up by ``{analysis_type}:{fingerprint}``, enforces TTL on
read, and absorbs every store fault: a failing store behaves like an
empty cache and never fails the request.

Usage:
    from insights.cache.response_cache import ResponseCache

    cache = ResponseCache(InMemoryCacheStore(), ttl_seconds=300)
    entry = await cache.get(request)
    if entry is None:
        await cache.set(request, response)
"""

from __future__ import annotations

import time
from collections.abc import Callable

from insights.cache.fingerprint import cache_key, fingerprint
from insights.cache.store import CacheStore, InMemoryCacheStore, RedisCacheStore
from insights.common.config import Settings, get_settings
from insights.common.exceptions import CacheFailureError
from insights.common.logging import get_logger
from insights.common.metrics import CACHE_EVICTIONS_TOTAL, CACHE_LOOKUPS_TOTAL
from insights.common.schemas import CacheEntry, InsightRequest, InsightResponse

logger = get_logger("CACHE")


class ResponseCache:
    """TTL cache of insight responses on top of a CacheStore.

    Args:
        store: Where entries live.
        ttl_seconds: Default entry lifetime.
        clock: Returns the current time in epoch seconds (injectable for tests).
    """

    def __init__(
        self,
        store: CacheStore,
        ttl_seconds: int = 300,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.ttl_seconds = ttl_seconds
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> ResponseCache:
        settings = settings or get_settings()
        if settings.cache_backend == "redis":
            store: CacheStore = RedisCacheStore.from_url(settings.redis_url)
        else:
            store = InMemoryCacheStore(max_entries=settings.cache_max_entries)
        return cls(store, ttl_seconds=settings.cache_ttl_seconds)

    async def get(self, request: InsightRequest) -> CacheEntry | None:
        """Fresh entry for ``request`` or None. Expired entries are deleted."""
        key = cache_key(request)
        try:
            entry = await self.store.get(key)
        except Exception as exc:
            self._absorb(CacheFailureError("Cache read failed", {"op": "get"}), exc)
            CACHE_LOOKUPS_TOTAL.labels(result="error").inc()
            return None

        if entry is None:
            CACHE_LOOKUPS_TOTAL.labels(result="miss").inc()
            return None

        if entry.is_expired(self._clock()):
            CACHE_LOOKUPS_TOTAL.labels(result="expired").inc()
            CACHE_EVICTIONS_TOTAL.labels(cause="ttl").inc()
            try:
                await self.store.delete(key)
            except Exception as exc:
                self._absorb(CacheFailureError("Cache delete failed", {"op": "delete"}), exc)
            return None

        CACHE_LOOKUPS_TOTAL.labels(result="hit").inc()
        logger.debug(
            "Cache hit",
            extra={"data": {"fingerprint": entry.fingerprint, "age_s": self.age(entry)}},
        )
        return entry

    async def set(
        self,
        request: InsightRequest,
        response: InsightResponse,
        ttl: int | None = None,
    ) -> None:
        """Store ``response`` for ``request``. Write failures are logged and skipped."""
        entry = CacheEntry(
            fingerprint=fingerprint(request),
            data=response,
            created_at=self._clock(),
            ttl=ttl if ttl is not None else self.ttl_seconds,
        )
        try:
            await self.store.set(cache_key(request), entry)
        except Exception as exc:
            self._absorb(CacheFailureError("Cache write failed", {"op": "set"}), exc)

    async def invalidate(self, request: InsightRequest) -> None:
        try:
            await self.store.delete(cache_key(request))
        except Exception as exc:
            self._absorb(CacheFailureError("Cache delete failed", {"op": "delete"}), exc)

    def age(self, entry: CacheEntry) -> int:
        """Whole seconds since the entry was written."""
        return max(0, int(self._clock() - entry.created_at))

    def _absorb(self, error: CacheFailureError, exc: Exception) -> None:
        logger.warning(str(error), extra={"data": {"error": str(exc)}})
