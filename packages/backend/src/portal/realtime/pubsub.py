"""Redis pub/sub — broadcasting change events to WebSocket handlers.

Learn: pub/sub is fire-and-forget. A client that is not connected when an
event is published never sees it; that is fine because clients resync by
snapshot on reconnect. The messages table stays the source of truth.
"""

import json
from typing import Any, Optional

import redis.asyncio as aioredis

from portal.config import settings

# Global Redis connection pool (initialized in lifespan)
_redis: Optional[aioredis.Redis] = None


async def init_redis() -> aioredis.Redis:
    """Initialize the Redis connection pool."""
    global _redis
    _redis = aioredis.from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
    )
    await _redis.ping()
    return _redis


async def close_redis() -> None:
    global _redis
    if _redis:
        await _redis.aclose()
        _redis = None


def get_redis() -> aioredis.Redis:
    """Get the Redis connection (must be initialized first)."""
    if _redis is None:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return _redis


def redis_available() -> bool:
    return _redis is not None


async def publish_change(payload: dict[str, Any]) -> int:
    """Publish one change payload. Returns the number of receivers."""
    r = get_redis()
    return await r.publish(settings.redis_channel, json.dumps(payload, default=str))
