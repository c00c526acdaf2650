"""Redis client configuration and utilities."""

import json
from typing import Any, cast

import redis
import redis.asyncio as aioredis
import structlog

from app.config import settings

logger = structlog.get_logger()

# Global Redis client instances
_redis_client: redis.Redis | None = None
_async_redis_client: aioredis.Redis | None = None


def _connection_kwargs() -> dict[str, Any]:
    return {
        "host": settings.redis_host,
        "port": settings.redis_port,
        "username": settings.redis_username,
        "password": settings.redis_password,
        "decode_responses": settings.redis_decode_responses,
        "socket_connect_timeout": 5,
        "socket_keepalive": True,
        "health_check_interval": 30,
    }


def get_redis_client() -> redis.Redis:
    """
    Get or create the synchronous Redis client used for caching.

    Returns:
        Redis client instance
    """
    global _redis_client

    if _redis_client is None:
        _redis_client = redis.Redis(**_connection_kwargs())

    return _redis_client


def get_async_redis_client() -> aioredis.Redis:
    """
    Get or create the asyncio Redis client used by the event bus.

    Returns:
        Async Redis client instance
    """
    global _async_redis_client

    if _async_redis_client is None:
        _async_redis_client = aioredis.Redis(**_connection_kwargs())

    return _async_redis_client


async def check_redis_connection() -> bool:
    """
    Check if Redis connection is healthy.

    Returns:
        True if connection is healthy, False otherwise
    """
    try:
        client = get_async_redis_client()
        await client.ping()
        return True
    except Exception:
        return False


async def close_redis_connection() -> None:
    """Close Redis connections."""
    global _redis_client, _async_redis_client

    if _redis_client is not None:
        _redis_client.close()
        _redis_client = None

    if _async_redis_client is not None:
        await _async_redis_client.aclose()
        _async_redis_client = None


def get_cache_manager() -> "CacheManager | None":
    """Cache manager for the current process, or None when caching is disabled."""
    if not settings.cache_enabled:
        return None
    return CacheManager(get_redis_client())


class CacheManager:
    """
    JSON cache over the synchronous Redis client.

    The cache is an optimization only: every Redis failure degrades to a miss
    (or a no-op write) and is logged at debug level.
    """

    def __init__(self, redis_client: redis.Redis):
        self.redis = redis_client

    def get_json(self, key: str) -> Any | None:
        try:
            value = cast(str | None, self.redis.get(key))
        except Exception as e:
            logger.debug("cache_read_failed", key=key, error=str(e))
            return None
        return json.loads(value) if value else None

    def set_json(self, key: str, value: Any, ttl: int | None = None) -> bool:
        """
        Serialize and store a value.

        Args:
            key: Cache key
            value: JSON-serializable value (dates and datetimes become ISO strings)
            ttl: Time to live in seconds; None keeps the key until deleted

        Returns:
            True if stored
        """
        payload = json.dumps(value, default=str)
        try:
            if ttl:
                self.redis.setex(key, ttl, payload)
            else:
                self.redis.set(key, payload)
        except Exception as e:
            logger.debug("cache_write_failed", key=key, error=str(e))
            return False
        return True

    def delete(self, key: str) -> bool:
        try:
            self.redis.delete(key)
        except Exception as e:
            logger.debug("cache_delete_failed", key=key, error=str(e))
            return False
        return True
