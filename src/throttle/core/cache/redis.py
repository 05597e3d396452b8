"""Redis client configuration and connection management.

Provides the pooled async Redis client behind the Redis counter store.
"""

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

import redis.asyncio as redis
from redis.asyncio.connection import ConnectionPool

from throttle.config import settings
from throttle.constants import REDIS_MAX_CONNECTIONS
from throttle.core.errors import ConfigurationError


if TYPE_CHECKING:
    from collections.abc import AsyncGenerator


class RedisPoolHolder:
    """Holder for the Redis connection pool.

    Uses a class attribute to manage module-level state without
    global statements.
    """

    pool: "ConnectionPool | None" = None


def _get_pool() -> "ConnectionPool":
    """Get or create the Redis connection pool.

    Raises:
        ConfigurationError: If no Redis URL is configured
    """
    if RedisPoolHolder.pool is None:
        if settings.redis_url is None:
            raise ConfigurationError(
                "REDIS_URL is not configured",
                errors=[{"field": "redis_url", "message": "required"}],
            )
        RedisPoolHolder.pool = ConnectionPool.from_url(
            str(settings.redis_url),
            max_connections=REDIS_MAX_CONNECTIONS,
            decode_responses=True,
        )
    return RedisPoolHolder.pool


@asynccontextmanager
async def redis_client() -> "AsyncGenerator[redis.Redis[Any], None]":
    """Context manager for a pooled Redis client.

    Usage:
        async with redis_client() as client:
            await client.incr("key")
    """
    client = redis.Redis(connection_pool=_get_pool())
    try:
        yield client
    finally:
        await client.aclose()


async def close_redis_pool() -> None:
    """Close the Redis connection pool.

    Call this during application shutdown.
    """
    if RedisPoolHolder.pool is not None:
        await RedisPoolHolder.pool.disconnect()
        RedisPoolHolder.pool = None
