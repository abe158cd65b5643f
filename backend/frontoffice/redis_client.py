from redis.asyncio import Redis
from typing import Optional
from frontoffice.config import settings

_redis_client: Optional[Redis] = None


async def get_redis() -> Redis:
    """
    Get Redis client instance (singleton pattern)

    Responses are decoded to str so counters come back as plain strings.
    """
    global _redis_client

    if _redis_client is None:
        _redis_client = Redis.from_url(
            settings.REDIS_URL,
            encoding="utf-8",
            decode_responses=True
        )

    return _redis_client


async def close_redis():
    """Close Redis connection (called on app shutdown)"""
    global _redis_client
    if _redis_client:
        await _redis_client.aclose()
        _redis_client = None
