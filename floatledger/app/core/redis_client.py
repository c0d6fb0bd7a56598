"""
Redis connection for the per-line correction locks.

One client per process, created at import and closed by the application
lifespan.
"""

import logging

import redis.asyncio as redis
from redis.exceptions import RedisError

from floatledger.app.core.config import settings

logger = logging.getLogger(__name__)

redis_client = redis.from_url(
    settings.redis_url,
    decode_responses=settings.redis_decode_responses,
)


async def get_redis():
    """FastAPI dependency; tests override it with an in-memory double."""
    return redis_client


async def ping_redis() -> bool:
    """Reachability probe for /health. Lock acquisition fails loudly on its own."""
    try:
        return bool(await redis_client.ping())
    except (RedisError, OSError) as exc:
        logger.warning("Redis unreachable", extra={"error": str(exc)})
        return False


async def close_redis() -> None:
    await redis_client.aclose()
