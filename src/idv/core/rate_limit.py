"""
Rate Limiting Module

Sliding-window rate limiting for API endpoints backed by Redis.
Falls back to in-memory storage if Redis is unavailable.

Applied to the endpoints that mutate verification records:
- Application submission (prevents flooding the review queue)
- Auditor approval/rejection (prevents mass operations)
"""

import logging
import time

from fastapi import HTTPException, status
from redis.asyncio import Redis
from redis.exceptions import RedisError

from idv.core.redis import get_redis

logger = logging.getLogger(__name__)

# In-memory rate limit storage (fallback when Redis unavailable)
# Format: {key: [timestamp, ...]}
_memory_store: dict[str, list[float]] = {}
_memory_windows: dict[str, int] = {}
_last_sweep: float = 0.0

# Keys with no hit inside their window are dropped at most this often
SWEEP_INTERVAL_SECONDS = 60


class RateLimitExceeded(HTTPException):
    """Exception raised when rate limit is exceeded."""

    def __init__(self, limit: int, window_seconds: int):
        super().__init__(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail={
                "success": False,
                "error": "RATE_LIMIT_EXCEEDED",
                "message": f"Rate limit exceeded. Maximum {limit} requests per {window_seconds} seconds.",
                "retry_after_seconds": window_seconds,
            },
            headers={"Retry-After": str(window_seconds)},
        )


async def _check_rate_limit_redis(
    client: Redis,
    key: str,
    limit: int,
    window_seconds: int,
) -> bool:
    """
    Check rate limit using Redis sorted sets.

    Args:
        client: Redis client
        key: Rate limit key (e.g., "rate_limit:approve:<user_id>")
        limit: Maximum requests allowed
        window_seconds: Time window in seconds

    Returns:
        True if request is allowed, False if rate limit exceeded
    """
    now = time.time()
    window_start = now - window_seconds

    pipe = client.pipeline()
    pipe.zremrangebyscore(key, 0, window_start)
    pipe.zcard(key)
    pipe.zadd(key, {str(now): now})
    pipe.expire(key, window_seconds)

    results = await pipe.execute()
    current_count = results[1]

    return current_count < limit


def _sweep_memory_store(now: float) -> None:
    """Forget keys whose hits have all left their window."""
    global _last_sweep
    if now - _last_sweep < SWEEP_INTERVAL_SECONDS:
        return
    _last_sweep = now

    expired = [
        key
        for key, hits in _memory_store.items()
        if not hits or hits[-1] <= now - _memory_windows.get(key, 0)
    ]
    for key in expired:
        _memory_store.pop(key, None)
        _memory_windows.pop(key, None)


def _check_rate_limit_memory(key: str, limit: int, window_seconds: int) -> bool:
    """
    Check rate limit using in-memory storage.

    Only accurate for a single server process.
    """
    now = time.time()
    _sweep_memory_store(now)
    window_start = now - window_seconds

    hits = [ts for ts in _memory_store.get(key, []) if ts > window_start]
    _memory_windows[key] = window_seconds

    if len(hits) >= limit:
        _memory_store[key] = hits
        return False

    hits.append(now)
    _memory_store[key] = hits
    return True


def reset_memory_store() -> None:
    """Clear the in-memory fallback counters."""
    global _last_sweep
    _memory_store.clear()
    _memory_windows.clear()
    _last_sweep = 0.0


async def check_rate_limit(key: str, limit: int, window_seconds: int) -> bool:
    """
    Check if a request is within rate limits.

    Tries Redis first, falls back to in-memory storage.

    Args:
        key: Unique key for this rate limit
        limit: Maximum requests allowed in the window
        window_seconds: Time window in seconds

    Returns:
        True if request is allowed, False if rate limit exceeded
    """
    client = get_redis()

    if client is not None:
        try:
            return await _check_rate_limit_redis(client, key, limit, window_seconds)
        except RedisError as e:
            logger.warning(f"Redis rate limit check failed, using memory: {e}")

    return _check_rate_limit_memory(key, limit, window_seconds)


async def enforce_rate_limit(key: str, limit: int, window_seconds: int) -> None:
    """
    Raise RateLimitExceeded (HTTP 429) when ``key`` is over its limit.
    """
    if not await check_rate_limit(key, limit, window_seconds):
        logger.warning(f"Rate limit exceeded for {key}: {limit}/{window_seconds}s")
        raise RateLimitExceeded(limit, window_seconds)


__all__ = [
    "RateLimitExceeded",
    "check_rate_limit",
    "enforce_rate_limit",
    "reset_memory_store",
]
