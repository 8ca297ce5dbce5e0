"""Tests for the in-memory and Redis cache stores."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from insights.cache.store import InMemoryCacheStore, RedisCacheStore
from insights.common.schemas import CacheEntry
from insights.prediction.pipeline import fallback_response


def _entry(fp: str = "f", ttl: int = 300) -> CacheEntry:
    return CacheEntry(fingerprint=fp, data=fallback_response(took_ms=5), created_at=1000.0, ttl=ttl)


# ─── In-Memory LRU ───


class TestInMemoryCacheStore:
    @pytest.mark.asyncio
    async def test_set_and_get(self):
        store = InMemoryCacheStore()
        await store.set("basic:a", _entry("a"))
        entry = await store.get("basic:a")
        assert entry is not None
        assert entry.fingerprint == "a"

    @pytest.mark.asyncio
    async def test_missing_key(self):
        assert await InMemoryCacheStore().get("basic:zzz") is None

    @pytest.mark.asyncio
    async def test_evicts_least_recently_used(self):
        """Reading 'a' makes 'b' the eviction candidate."""
        store = InMemoryCacheStore(max_entries=2)
        await store.set("a", _entry("a"))
        await store.set("b", _entry("b"))
        await store.get("a")
        await store.set("c", _entry("c"))

        assert await store.get("b") is None
        assert await store.get("a") is not None
        assert await store.get("c") is not None
        assert await store.size() == 2

    @pytest.mark.asyncio
    async def test_overwrite_does_not_evict(self):
        store = InMemoryCacheStore(max_entries=2)
        await store.set("a", _entry("a"))
        await store.set("b", _entry("b"))
        await store.set("a", _entry("a2"))
        assert await store.size() == 2
        assert (await store.get("a")).fingerprint == "a2"

    @pytest.mark.asyncio
    async def test_delete_and_clear(self):
        store = InMemoryCacheStore()
        await store.set("a", _entry("a"))
        await store.set("b", _entry("b"))
        await store.delete("a")
        assert await store.get("a") is None
        await store.clear()
        assert await store.size() == 0


# ─── Redis ───


def _mock_redis(keys: list[str] | None = None) -> AsyncMock:
    redis = AsyncMock()

    async def scan_iter(match=None):
        for key in keys or []:
            yield key

    redis.scan_iter = MagicMock(side_effect=scan_iter)
    return redis


class TestRedisCacheStore:
    @pytest.mark.asyncio
    async def test_set_writes_json_with_ttl(self):
        redis = _mock_redis()
        store = RedisCacheStore(redis)
        entry = _entry("a", ttl=120)

        await store.set("basic:a", entry)

        redis.set.assert_awaited_once_with(
            "insights:cache:basic:a", entry.model_dump_json(), ex=120
        )

    @pytest.mark.asyncio
    async def test_get_round_trips_entry(self):
        redis = _mock_redis()
        entry = _entry("a")
        redis.get.return_value = entry.model_dump_json()

        result = await RedisCacheStore(redis).get("basic:a")

        redis.get.assert_awaited_once_with("insights:cache:basic:a")
        assert result == entry

    @pytest.mark.asyncio
    async def test_get_missing(self):
        redis = _mock_redis()
        redis.get.return_value = None
        assert await RedisCacheStore(redis).get("basic:a") is None

    @pytest.mark.asyncio
    async def test_clear_deletes_prefixed_keys(self):
        keys = ["insights:cache:basic:a", "insights:cache:advanced:b"]
        redis = _mock_redis(keys)

        await RedisCacheStore(redis).clear()

        redis.scan_iter.assert_called_once_with(match="insights:cache:*")
        redis.delete.assert_awaited_once_with(*keys)

    @pytest.mark.asyncio
    async def test_clear_empty_skips_delete(self):
        redis = _mock_redis([])
        await RedisCacheStore(redis).clear()
        redis.delete.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_size_counts_keys(self):
        redis = _mock_redis(["insights:cache:basic:a"])
        assert await RedisCacheStore(redis).size() == 1

    @pytest.mark.asyncio
    async def test_close(self):
        redis = _mock_redis()
        await RedisCacheStore(redis).close()
        redis.aclose.assert_awaited_once()
