"""Redis connection pool — shared by the rate limiter and health check.

Learn: Redis is optional. The pool is opened in the app lifespan; if
that fails the app still serves requests, only rate limiting is off.
Nothing auth-related is stored in Redis, PostgreSQL is the source of
truth for users, keys, and magic links.
"""

from typing import Optional

import redis.asyncio as aioredis

from authkit.config import settings

# Global Redis connection pool (initialized in lifespan)
_redis: Optional[aioredis.Redis] = None


async def init_redis(url: Optional[str] = None) -> aioredis.Redis:
    """Initialize the Redis connection pool."""
    global _redis
    _redis = aioredis.from_url(
        url or settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
    )
    # Verify connection
    await _redis.ping()
    return _redis


async def close_redis() -> None:
    """Close the Redis connection pool."""
    global _redis
    if _redis:
        await _redis.aclose()
        _redis = None


def get_redis() -> aioredis.Redis:
    """Get the Redis connection (must be initialized first)."""
    if _redis is None:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return _redis
