"""
Redis Cache Module

Snapshot caching layer with:
- Connection pooling
- JSON serialization
- TTL management
"""

import json
from datetime import timedelta
from typing import Any, Optional, Union

import structlog
from redis.asyncio import ConnectionPool, Redis
from redis.exceptions import RedisError

from attribution_engine.config import get_settings

logger = structlog.get_logger(__name__)

# Global Redis connection
_redis_pool: Optional[ConnectionPool] = None
_redis_client: Optional[Redis] = None


async def init_redis(url: Optional[str] = None) -> Redis:
    """Initialize Redis connection pool"""
    global _redis_pool, _redis_client

    if _redis_client is not None:
        return _redis_client

    settings = get_settings()
    _redis_pool = ConnectionPool.from_url(
        url or settings.redis.get_url(),
        max_connections=settings.redis.max_connections,
        socket_timeout=settings.redis.socket_timeout,
        decode_responses=settings.redis.decode_responses,
    )
    _redis_client = Redis(connection_pool=_redis_pool)

    try:
        await _redis_client.ping()
    except RedisError as e:
        logger.error("Redis connection failed", error=str(e))
        raise
    logger.info("Redis connection established")
    return _redis_client


async def close_redis() -> None:
    """Close Redis connection pool"""
    global _redis_pool, _redis_client

    if _redis_client:
        await _redis_client.aclose()
        _redis_client = None

    if _redis_pool:
        await _redis_pool.disconnect()
        _redis_pool = None

    logger.info("Redis connection closed")


def get_redis() -> Redis:
    """Get Redis client instance"""
    if _redis_client is None:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return _redis_client


class CacheManager:
    """
    Namespaced JSON cache.

    Example:
        cache = CacheManager("conversion")
        await cache.set("site-1", snapshot.to_payload(), ttl=3600)
        payload = await cache.get("site-1")

    ``client`` overrides the global connection.
    """

    def __init__(self, namespace: str, default_ttl: int = 3600, client: Optional[Redis] = None):
        self.namespace = namespace
        self.default_ttl = default_ttl
        self.client = client

    def _redis(self) -> Redis:
        return self.client if self.client is not None else get_redis()

    def key(self, key: str) -> str:
        """Namespaced key, e.g. ``conversion:site-1``"""
        return f"{self.namespace}:{key}"

    async def get(self, key: str) -> Optional[Any]:
        value = await self._redis().get(self.key(key))
        if value is None:
            return None
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            logger.warning("Discarding undecodable cache entry", key=self.key(key))
            return None

    async def set(
        self,
        key: str,
        value: Any,
        ttl: Optional[Union[int, timedelta]] = None,
    ) -> bool:
        """Serialize ``value`` to JSON and store it with a TTL."""
        try:
            serialized = json.dumps(value, default=str)
        except (TypeError, ValueError) as e:
            logger.warning("Failed to serialize value for cache", key=self.key(key), error=str(e))
            return False

        ttl = ttl or self.default_ttl
        if isinstance(ttl, timedelta):
            ttl = int(ttl.total_seconds())
        await self._redis().setex(self.key(key), ttl, serialized)
        return True


def snapshot_cache(client: Optional[Redis] = None) -> CacheManager:
    """Cache for conversion snapshots, keyed ``conversion:<websiteId>``."""
    return CacheManager(
        "conversion",
        default_ttl=get_settings().engine.snapshot_cache_ttl_seconds,
        client=client,
    )
