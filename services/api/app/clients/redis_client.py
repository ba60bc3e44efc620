"""
Redis client wrapper.

Responsibilities:
  • Feed listings — STRING (JSON) keyed by feed:global:{filter} or
                    feed:community:{community_id}:{filter}, TTL 60s
  • Single posts  — STRING (JSON) keyed by post:{post_id}, TTL 300s

Only the connection lifecycle lives here; reads and writes go through
app.cache.store.RedisCacheStore.
"""
import logging
from typing import Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from app.config import settings

logger = logging.getLogger(__name__)

_redis: Optional[aioredis.Redis] = None


async def init_redis() -> None:
    global _redis
    _redis = aioredis.Redis(
        host=settings.redis_host,
        port=settings.redis_port,
        decode_responses=True,
        socket_timeout=settings.redis_socket_timeout,
        socket_connect_timeout=settings.redis_socket_timeout,
    )
    try:
        await _redis.ping()
        logger.info("Redis connected at %s:%s", settings.redis_host, settings.redis_port)
    except RedisError as exc:
        # Reads fall through to the database until Redis comes back
        logger.warning(
            "Redis unreachable at %s:%s (%s) — feed cache degraded",
            settings.redis_host, settings.redis_port, exc,
        )


async def close_redis() -> None:
    global _redis
    if _redis is not None:
        await _redis.aclose()
        _redis = None


def get_redis() -> aioredis.Redis:
    if _redis is None:
        raise RuntimeError("Redis not initialised — call init_redis() at startup")
    return _redis
