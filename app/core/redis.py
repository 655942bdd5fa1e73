import logging

from redis.asyncio import Redis

logger = logging.getLogger(__name__)

# Global Redis client instance
redis_client: Redis | None = None


async def connect_redis(url: str) -> Redis:
    """
    Create the global client and check that the server answers.

    A failed ping is logged, not raised; ``/health`` then reports Redis
    as unhealthy.
    """
    global redis_client
    redis_client = Redis.from_url(url, decode_responses=True, encoding="utf-8")
    try:
        await redis_client.ping()
        logger.info("Redis connected")
    except Exception as e:
        logger.error("Redis connection failed: %s", e)
    return redis_client


async def close_redis() -> None:
    global redis_client
    if redis_client is not None:
        await redis_client.aclose()
        redis_client = None
