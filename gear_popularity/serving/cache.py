"""
Redis Cache Module

Caches the windowed trending baseline between rollups. Keys carry the
snapshot date, and the whole namespace is dropped after every successful
rollup, so a cached entry never outlives the snapshot it was read from.

Redis is optional. When it is disabled or not initialized every cache
operation is a no-op, and Redis errors degrade to a cache miss.
"""

import json
from typing import Any, Awaitable, Callable, Optional

import structlog
from prometheus_client import Counter
from redis.asyncio import Redis, ConnectionPool
from redis.exceptions import RedisError

from gear_popularity.config import get_settings

logger = structlog.get_logger(__name__)
settings = get_settings()

CACHE_LOOKUPS = Counter(
    "popularity_cache_lookups_total",
    "Trending cache lookups",
    ["namespace", "outcome"],
)

_redis_pool: Optional[ConnectionPool] = None
_redis_client: Optional[Redis] = None


async def init_redis() -> Redis:
    """Open the connection pool; raises RedisError when the server is unreachable"""
    global _redis_pool, _redis_client

    if _redis_client is not None:
        return _redis_client

    redis_settings = settings.redis
    pool = ConnectionPool.from_url(
        redis_settings.get_url(),
        max_connections=redis_settings.max_connections,
        socket_timeout=redis_settings.socket_timeout,
        decode_responses=redis_settings.decode_responses,
    )
    client = Redis(connection_pool=pool)

    try:
        await client.ping()
    except RedisError as e:
        logger.error("Redis connection failed", url=redis_settings.host, error=str(e))
        await pool.disconnect()
        raise

    _redis_pool, _redis_client = pool, client
    logger.info("Redis connection established")
    return client


async def close_redis() -> None:
    global _redis_pool, _redis_client

    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None
    if _redis_pool is not None:
        await _redis_pool.disconnect()
        _redis_pool = None


def get_redis() -> Redis:
    if _redis_client is None:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return _redis_client


def is_redis_ready() -> bool:
    return _redis_client is not None


class CacheManager:
    """
    JSON values under a key namespace.

    Example:
        cache = CacheManager("trending", default_ttl=3600)
        rows = await cache.get_or_set("30d:*:*:*:2025-01-09", load_rows)
        await cache.invalidate_all()
    """

    def __init__(self, namespace: str, default_ttl: int = 3600):
        self.namespace = namespace
        self.default_ttl = default_ttl

    def _key(self, key: str) -> str:
        return f"{self.namespace}:{key}"

    @property
    def enabled(self) -> bool:
        return settings.redis.enabled and is_redis_ready()

    async def get(self, key: str) -> Optional[Any]:
        """Cached value, or None on a miss or when Redis is unavailable"""
        if not self.enabled:
            return None
        try:
            raw = await get_redis().get(self._key(key))
        except RedisError as e:
            logger.warning("Cache read failed", namespace=self.namespace, error=str(e))
            return None
        return None if raw is None else json.loads(raw)

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        if not self.enabled:
            return False
        try:
            await get_redis().setex(
                self._key(key),
                ttl or self.default_ttl,
                json.dumps(value, default=str),
            )
        except RedisError as e:
            logger.warning("Cache write failed", namespace=self.namespace, error=str(e))
            return False
        return True

    async def invalidate_all(self) -> int:
        """Drop every key in the namespace"""
        if not self.enabled:
            return 0
        client = get_redis()
        try:
            keys = [k async for k in client.scan_iter(match=self._key("*"))]
            removed = await client.delete(*keys) if keys else 0
        except RedisError as e:
            logger.warning("Cache invalidation failed", namespace=self.namespace, error=str(e))
            return 0
        logger.info("Cache namespace invalidated", namespace=self.namespace, keys=removed)
        return removed

    async def get_or_set(
        self,
        key: str,
        factory: Callable[[], Awaitable[Any]],
        ttl: Optional[int] = None,
    ) -> Any:
        """Cached value, else the factory's result (stored for next time)"""
        value = await self.get(key)
        if value is not None:
            CACHE_LOOKUPS.labels(namespace=self.namespace, outcome="hit").inc()
            return value

        CACHE_LOOKUPS.labels(
            namespace=self.namespace,
            outcome="miss" if self.enabled else "bypass",
        ).inc()
        value = await factory()
        await self.set(key, value, ttl)
        return value


trending_cache = CacheManager(
    "trending",
    default_ttl=settings.popularity.trending_cache_ttl_seconds,
)
