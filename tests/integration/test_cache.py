"""
Integration tests for core/cache.py

Tests the Redis analytics cache, its pass-through behaviour when Redis is
unavailable, and invalidation driven by sync events.
"""
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from core.cache import CacheStats, RedisCache, analytics_key, register_cache_invalidation_handlers
from core.events import EventBus, SyncEvent


def connected_cache(fake_redis, bus=None) -> RedisCache:
    cache = RedisCache(url="redis://test", enabled=True, default_ttl=300, bus=bus or EventBus())
    cache._client = fake_redis
    cache._connected = True
    return cache


class TestAnalyticsKey:
    """Tests for cache key construction."""

    def test_params_sorted_and_none_skipped(self):
        key = analytics_key("s1", "sales", startDate="2026-01-01", period=None, endDate="2026-01-31")
        assert key == "analytics:s1:sales:endDate=2026-01-31:startDate=2026-01-01"

    def test_no_params(self):
        assert analytics_key("s1", "summary") == "analytics:s1:summary"

    def test_long_keys_hashed(self):
        key = analytics_key("s1", "sales", search="x" * 300)
        assert key.startswith("analytics:s1:sales:")
        assert len(key) < 60


class TestCacheStats:
    """Tests for CacheStats class."""

    def test_hit_rate(self):
        stats = CacheStats(hits=3, misses=1)
        assert stats.hit_rate == 75.0
        assert stats.to_dict()["hit_rate_percent"] == 75.0

    def test_zero_division(self):
        assert CacheStats().hit_rate == 0.0

    def test_reset(self):
        stats = CacheStats(hits=1, misses=2, errors=3, sets=4, invalidations=5)
        stats.reset()
        assert stats.to_dict()["hits"] == 0
        assert stats.invalidations == 0


class TestDisabledCache:
    """Without Redis every read misses and writes are no-ops."""

    @pytest.mark.asyncio
    async def test_connect_disabled(self):
        cache = RedisCache(enabled=False)
        assert await cache.connect() is False
        assert not cache.is_connected

    @pytest.mark.asyncio
    async def test_get_or_set_always_computes(self):
        cache = RedisCache(enabled=False)
        factory = AsyncMock(return_value={"total_orders": 3})

        assert await cache.get_or_set("analytics:s1:summary", factory) == {"total_orders": 3}
        assert await cache.get_or_set("analytics:s1:summary", factory) == {"total_orders": 3}
        assert factory.await_count == 2

    @pytest.mark.asyncio
    async def test_writes_are_noops(self):
        cache = RedisCache(enabled=False)
        assert await cache.set("k", 1) is False
        assert await cache.delete("k") is False
        assert await cache.invalidate_store("s1") == 0

    @pytest.mark.asyncio
    async def test_connect_failure_degrades(self):
        client = MagicMock()
        client.ping = AsyncMock(side_effect=RedisConnectionError("refused"))
        with patch("core.cache.redis.from_url", return_value=client):
            cache = RedisCache(url="redis://nowhere", enabled=True)
            assert await cache.connect() is False
        assert cache.client is None
        assert await cache.get("k") is None


class TestConnectedCache:
    """Tests against an in-memory Redis double."""

    @pytest.mark.asyncio
    async def test_set_get_with_ttl(self, fake_redis):
        cache = connected_cache(fake_redis)
        assert await cache.set("analytics:s1:summary", {"total_orders": 3}, ttl=60)
        assert fake_redis.ttls["analytics:s1:summary"] == 60
        assert await cache.get("analytics:s1:summary") == {"total_orders": 3}

        stats = cache.get_stats()
        assert stats["hits"] == 1
        assert stats["sets"] == 1
        assert stats["connected"] is True

    @pytest.mark.asyncio
    async def test_default_ttl(self, fake_redis):
        cache = connected_cache(fake_redis)
        await cache.set("k", [1, 2])
        assert fake_redis.ttls["k"] == 300

    @pytest.mark.asyncio
    async def test_get_or_set_caches(self, fake_redis):
        cache = connected_cache(fake_redis)
        factory = MagicMock(return_value=[{"date": "2026-01-01", "sales": 10, "orders": 1}])

        first = await cache.get_or_set("analytics:s1:sales", factory)
        second = await cache.get_or_set("analytics:s1:sales", factory)
        assert first == second
        assert factory.call_count == 1

    @pytest.mark.asyncio
    async def test_datetime_values_serialized(self, fake_redis):
        from datetime import datetime

        cache = connected_cache(fake_redis)
        await cache.set("k", {"at": datetime(2026, 1, 1, 12, 0)})
        assert await cache.get("k") == {"at": "2026-01-01T12:00:00"}

    @pytest.mark.asyncio
    async def test_invalidate_store_only_touches_that_store(self, fake_redis):
        bus = EventBus()
        cache = connected_cache(fake_redis, bus)
        await cache.set(analytics_key("s1", "summary"), 1)
        await cache.set(analytics_key("s1", "sales", period="week"), 2)
        await cache.set(analytics_key("s2", "summary"), 3)

        assert await cache.invalidate_store("s1") == 2
        assert await cache.get(analytics_key("s2", "summary")) == 3
        history = bus.get_history(SyncEvent.CACHE_INVALIDATED)
        assert history[-1]["data"]["count"] == 2

    @pytest.mark.asyncio
    async def test_redis_errors_count_as_misses(self):
        client = MagicMock()
        client.get = AsyncMock(side_effect=RedisConnectionError("gone"))
        cache = connected_cache(client)
        assert await cache.get("k") is None
        assert cache.get_stats()["errors"] == 1


class TestInvalidationHandlers:
    """A finished sync drops the store's cached analytics."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("event_type", [
        SyncEvent.SYNC_COMPLETED,
        SyncEvent.SYNC_FAILED,
        SyncEvent.STORE_DISCONNECTED,
    ])
    async def test_invalidates_on(self, fake_redis, event_type):
        bus = EventBus()
        cache = connected_cache(fake_redis, bus)
        register_cache_invalidation_handlers(cache, bus)
        await cache.set(analytics_key("s1", "summary"), 1)

        await bus.emit(event_type, {"store_id": "s1", "job_id": "j1"})
        assert await cache.get(analytics_key("s1", "summary")) is None

    @pytest.mark.asyncio
    async def test_other_events_ignored(self, fake_redis):
        bus = EventBus()
        cache = connected_cache(fake_redis, bus)
        register_cache_invalidation_handlers(cache, bus)
        await cache.set(analytics_key("s1", "summary"), 1)

        await bus.emit(SyncEvent.SYNC_STARTED, {"store_id": "s1"})
        assert await cache.get(analytics_key("s1", "summary")) == 1
