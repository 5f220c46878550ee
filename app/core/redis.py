"""Redis client lifecycle management."""

import redis.asyncio as redis
import structlog

from app.core.config import settings

logger = structlog.get_logger()

redis_client: redis.Redis | None = None  # type: ignore[type-arg]


async def init_redis() -> redis.Redis | None:  # type: ignore[type-arg]
    """Initialize the Redis connection.

    An unreachable Redis aborts startup unless ``REDIS_REQUIRED=false``, in
    which case the service runs single-worker without it.
    """
    global redis_client  # noqa: PLW0603
    client = redis.from_url(settings.redis.url, decode_responses=True)
    try:
        await client.ping()
    except (redis.ConnectionError, redis.TimeoutError) as e:
        await client.aclose()
        if settings.redis.required:
            raise
        logger.warning("Redis unavailable, running without it", error=str(e))
        return None
    redis_client = client
    return redis_client


async def close_redis() -> None:
    """Close the Redis connection."""
    global redis_client  # noqa: PLW0603
    if redis_client:
        await redis_client.aclose()
        redis_client = None


def get_optional_redis() -> redis.Redis | None:  # type: ignore[type-arg]
    """Get the Redis client if one is connected."""
    return redis_client
