"""
Redis cache for dashboard analytics.

Results are stored as JSON under ``analytics:{store_id}:{metric}:...`` so
that one ``SCAN`` clears a store after its data changes. The cache is
optional: when Redis is disabled or down every read misses and the
dashboard queries DuckDB directly.

    cache = RedisCache()
    await cache.connect()
    register_cache_invalidation_handlers(cache)

    key = analytics_key(store_id, "sales", period="week")
    rows = await cache.get_or_set(key, lambda: store.get_sales(...))
"""
import asyncio
import hashlib
from dataclasses import asdict, dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

import orjson
import redis.asyncio as redis
from redis.exceptions import RedisError

from core.config import config
from core.events import EventBus, SyncEvent, emit_cache_invalidated, events
from core.observability import Timer, get_logger

logger = get_logger(__name__)

ANALYTICS_PREFIX = "analytics"
MAX_KEY_LENGTH = 200

_MISSING = object()


def analytics_key(store_id: str, metric: str, /, **params: Any) -> str:
    """
    Cache key for one analytics query.

    Parameters are appended as sorted ``name=value`` pairs, skipping
    ``None``. Keys past ``MAX_KEY_LENGTH`` keep the store and metric
    prefix and replace the parameters with a digest.
    """
    prefix = f"{ANALYTICS_PREFIX}:{store_id}:{metric}"
    suffix = ":".join(f"{name}={value}" for name, value in sorted(params.items()) if value is not None)
    if not suffix:
        return prefix

    key = f"{prefix}:{suffix}"
    if len(key) > MAX_KEY_LENGTH:
        key = f"{prefix}:{hashlib.md5(suffix.encode()).hexdigest()[:12]}"
    return key


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    errors: int = 0
    sets: int = 0
    invalidations: int = 0

    @property
    def hit_rate(self) -> float:
        lookups = self.hits + self.misses
        return self.hits * 100 / lookups if lookups else 0.0

    def to_dict(self) -> dict:
        return {**asdict(self), "hit_rate_percent": round(self.hit_rate, 2)}

    def reset(self) -> None:
        self.hits = self.misses = self.errors = self.sets = self.invalidations = 0


class RedisCache:
    """Best-effort Redis cache; Redis failures are counted and logged, never raised."""

    def __init__(
        self,
        url: str = None,
        enabled: bool = None,
        default_ttl: int = None,
        bus: EventBus = None,
    ):
        self.url = url or config.redis.url
        self.enabled = config.redis.cache_enabled if enabled is None else enabled
        self.default_ttl = default_ttl or config.redis.cache_ttl_seconds
        self.bus = bus or events
        self._client: Optional[redis.Redis] = None
        self._connected = False
        self._stats = CacheStats()
        self._lock = asyncio.Lock()

    async def connect(self) -> bool:
        """Open the connection pool and ping; False leaves the cache inert."""
        if not self.enabled:
            logger.info("Analytics cache disabled (CACHE_ENABLED=false)")
            return False

        async with self._lock:
            if self._connected:
                return True
            self._client = redis.from_url(
                self.url,
                encoding="utf-8",
                decode_responses=True,
                socket_timeout=5.0,
                socket_connect_timeout=5.0,
            )
            try:
                await self._client.ping()
            except (RedisError, OSError) as e:
                logger.warning(f"Redis at {self.url} unreachable, analytics will not be cached: {e}")
                self._connected = False
                return False
            self._connected = True
            logger.info(f"Analytics cache connected to {self.url}")
            return True

    async def disconnect(self) -> None:
        if self._client is None:
            return
        await self._client.aclose()
        self._client = None
        self._connected = False
        logger.info("Analytics cache disconnected")

    @property
    def is_connected(self) -> bool:
        return self._connected and self._client is not None

    @property
    def client(self) -> Optional[redis.Redis]:
        return self._client if self.is_connected else None

    async def _guarded(self, op: str, key: str, call: Callable[[], Awaitable[Any]]) -> Any:
        """Run one Redis command; on failure count it and return ``_MISSING``."""
        try:
            with Timer(f"cache_{op}"):
                return await call()
        except (RedisError, OSError) as e:
            self._stats.errors += 1
            logger.debug(f"Cache {op} failed for {key}: {e}")
            return _MISSING

    async def get(self, key: str) -> Optional[Any]:
        """Decoded value, or None on a miss or when Redis is unavailable."""
        if not self.is_connected:
            self._stats.misses += 1
            return None

        raw = await self._guarded("get", key, lambda: self._client.get(key))
        if raw is _MISSING:
            return None
        if raw is None:
            self._stats.misses += 1
            return None
        self._stats.hits += 1
        return orjson.loads(raw)

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        if not self.is_connected:
            return False

        payload = orjson.dumps(value, default=str).decode()
        result = await self._guarded(
            "set", key, lambda: self._client.setex(key, ttl or self.default_ttl, payload)
        )
        if result is _MISSING:
            return False
        self._stats.sets += 1
        return True

    async def delete(self, key: str) -> bool:
        if not self.is_connected:
            return False
        if await self._guarded("delete", key, lambda: self._client.delete(key)) is _MISSING:
            return False
        self._stats.invalidations += 1
        return True

    async def invalidate_pattern(self, pattern: str, reason: str = "pattern_invalidation") -> int:
        """Delete keys matching a glob pattern (via SCAN); returns how many went."""
        if not self.is_connected:
            return 0

        async def sweep() -> int:
            removed = 0
            async for key in self._client.scan_iter(match=pattern, count=100):
                removed += await self._client.delete(key)
            return removed

        deleted = await self._guarded("invalidate", pattern, sweep)
        if deleted is _MISSING or not deleted:
            return 0

        self._stats.invalidations += deleted
        logger.debug(f"Dropped {deleted} cached entries matching {pattern}")
        await emit_cache_invalidated(keys=[pattern], reason=reason, count=deleted, bus=self.bus)
        return deleted

    async def invalidate_store(self, store_id: str, reason: str = "sync") -> int:
        return await self.invalidate_pattern(f"{ANALYTICS_PREFIX}:{store_id}:*", reason=reason)

    async def get_or_set(self, key: str, factory: Callable[[], Any], ttl: Optional[int] = None) -> Any:
        """Cached value for ``key``; otherwise call ``factory`` (sync or async) and store its result."""
        cached = await self.get(key)
        if cached is not None:
            return cached

        value = factory()
        if asyncio.iscoroutine(value):
            value = await value
        await self.set(key, value, ttl)
        return value

    def get_stats(self) -> Dict[str, Any]:
        return {"enabled": self.enabled, "connected": self.is_connected, **self._stats.to_dict()}

    def reset_stats(self) -> None:
        self._stats.reset()


def register_cache_invalidation_handlers(cache: RedisCache, bus: EventBus = None) -> None:
    """Clear a store's cached analytics when a sync ends or the store is disconnected."""
    bus = bus or cache.bus

    async def drop_store_entries(data: dict):
        store_id = data.get("store_id")
        if not store_id:
            return
        deleted = await cache.invalidate_store(store_id)
        logger.debug(
            f"Cleared {deleted} cached analytics entries",
            extra={"store_id": store_id, "job_id": data.get("job_id")},
        )

    for event_type in (SyncEvent.SYNC_COMPLETED, SyncEvent.SYNC_FAILED, SyncEvent.STORE_DISCONNECTED):
        bus.subscribe(event_type, drop_store_entries)
