from __future__ import annotations

import json
import logging
from typing import Any

import redis
import redis.asyncio as aioredis
from ..core.config import get_settings

logger = logging.getLogger(__name__)


def _get_redis() -> aioredis.Redis:
    """
    Create a fresh asyncio Redis client per call so Celery workers
    don't hold onto closed event loops.
    """
    return aioredis.from_url(
        get_settings().REDIS_URL,
        decode_responses=True,
        socket_timeout=5,
        socket_connect_timeout=5,
    )


def comment_cache_key(platform: str, target: str, limit: int) -> str:
    return f"pulse:comments:{platform}:{limit}:{target}"


async def cached_get(
    key: str,
    set_value: Any | None = None,
    ttl: int | None = None,
) -> Any:
    """
    Best-effort TTL cache backed by Redis.

        value = await cached_get("k")                  # read
        await cached_get("k", set_value=value, ttl=60) # write with TTL

    Reads return the decoded JSON value or None. Writes return the value.
    Redis being unavailable is never an error for the caller: reads miss
    and writes are dropped.
    """
    client = _get_redis()
    try:
        if set_value is None:
            val = await client.get(key)
            if val is not None:
                return json.loads(val)
            return None

        serialized = json.dumps(set_value, default=str)
        if ttl is not None:
            await client.set(key, serialized, ex=ttl)
        else:
            await client.set(key, serialized)
        return set_value

    except redis.RedisError as e:
        logger.debug("Redis cache unavailable for %s: %s", key, e)
        return None if set_value is None else set_value
    finally:
        try:
            await client.aclose()
        except redis.RedisError:
            pass
