# cartsync/db/redis.py
import logging

import redis.asyncio as redis
from cartsync.core.config import get_settings

logger = logging.getLogger(__name__)

redis_client: redis.Redis | None = None


async def connect() -> bool:
    """
    Open the shared client when REDIS_URL is set and answers a ping.
    Returns False otherwise; search caching is then off and gift decline
    memory lives in each engine's process.
    """
    global redis_client
    settings = get_settings()
    if not settings.REDIS_URL:
        logger.info("redis not configured, caches and decline memory stay in process")
        redis_client = None
        return False

    client = redis.from_url(settings.REDIS_URL, decode_responses=True, socket_timeout=2.0)
    try:
        await client.ping()
    except (redis.ConnectionError, redis.TimeoutError, OSError) as e:
        logger.warning("redis ping failed url=%s err=%s, continuing without redis", settings.REDIS_URL, e)
        await client.aclose()
        redis_client = None
        return False
    redis_client = client
    logger.info("redis connected url=%s", settings.REDIS_URL)
    return True


async def disconnect() -> None:
    global redis_client
    if redis_client is not None:
        await redis_client.aclose()
        logger.info("redis disconnected")
    redis_client = None


def get_redis() -> redis.Redis | None:
    """Shared client or None; every caller has an in-process fallback."""
    return redis_client
