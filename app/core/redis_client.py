# core/redis_client.py
"""
Redis connection factory for the build log channels.

Each build session opens its own connection, holds it for the life of the
log subscription and closes it at session end. Pub/sub connections are
long-lived and blocking, so they are not shared through a pool.
"""

from typing import Any, Dict

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from core.config import settings
from core.logger import logger


def _connection_kwargs() -> Dict[str, Any]:
    """
    Connection settings shared by log subscribers and the health check.
    No socket read timeout: a subscriber may legitimately wait a long time
    for the next build log line.
    """
    kwargs: Dict[str, Any] = {
        "host": settings.REDIS_HOST,
        "port": settings.REDIS_PORT,
        "db": settings.REDIS_DB,
        "decode_responses": True,
        "socket_connect_timeout": settings.REDIS_SOCKET_CONNECT_TIMEOUT,
        "health_check_interval": 30,
    }

    """
    TLS/SSL configuration for ElastiCache encryption in-transit
    """
    if settings.REDIS_SSL:
        kwargs["ssl"] = True
        kwargs["ssl_cert_reqs"] = None  # AWS manages certificates

    if settings.REDIS_PASSWORD:
        kwargs["password"] = settings.REDIS_PASSWORD

    return kwargs


def create_redis_connection() -> aioredis.Redis:
    """
    Create a dedicated Redis connection for one build session.

    Returns:
        redis.asyncio.Redis: Unconnected client; the first command connects
    """
    logger.debug(
        "Creating Redis connection",
        extra={
            "host": settings.REDIS_HOST,
            "port": settings.REDIS_PORT,
            "ssl": settings.REDIS_SSL,
        }
    )
    return aioredis.Redis(**_connection_kwargs())


async def redis_health_check() -> bool:
    """
    Check Redis health for /health endpoint.

    Returns:
        bool: True if Redis is healthy
    """
    conn = create_redis_connection()
    try:
        await conn.ping()
        return True
    except RedisError as e:
        logger.error(f"Redis health check failed: {e}")
        return False
    finally:
        await conn.aclose()
