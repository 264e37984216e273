import hashlib
import json
import logging
from typing import Any

from redis.asyncio import Redis

logger = logging.getLogger(__name__)


def cache_key(prefix: str, data: dict) -> str:
    """Stable key: prefix + md5 of the sorted JSON payload."""
    return f"{prefix}:" + hashlib.md5(json.dumps(data, sort_keys=True, default=str).encode()).hexdigest()


async def cache_get(redis: Redis | None, key: str) -> Any:
    """Best-effort read; a missing client or a Redis error is a miss."""
    if redis is None:
        return None
    try:
        if val := await redis.get(key):
            return json.loads(val)
    except Exception as e:
        logger.warning("cache get error key=%s err=%s", key, e)
    return None


async def cache_set(redis: Redis | None, key: str, value, ex: int = 60) -> None:
    if redis is None:
        return
    try:
        await redis.set(key, json.dumps(value, default=str), ex=ex)
    except Exception as e:
        logger.warning("cache set error key=%s err=%s", key, e)
