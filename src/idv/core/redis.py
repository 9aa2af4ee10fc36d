"""
Redis Configuration

Async Redis client used for rate limiting.
"""

from redis.asyncio import Redis, from_url

from idv.core.config import settings

# Redis client instance
redis_client: Redis | None = None


async def init_redis() -> Redis:
    """
    Initialize Redis connection.

    Call this on application startup.
    """
    global redis_client
    client = from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
    )
    await client.ping()
    redis_client = client
    return redis_client


def get_redis() -> Redis | None:
    """Get the Redis client, or None when Redis is not available."""
    return redis_client


async def close_redis() -> None:
    """Close Redis connection."""
    global redis_client
    if redis_client:
        await redis_client.aclose()
        redis_client = None
