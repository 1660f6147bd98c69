"""
Redis client for the sync lease and order notifications.
"""
import logging
from typing import Optional

import redis.asyncio as aioredis
from redis.asyncio import Redis

from cardsync.core.config import get_settings

logger = logging.getLogger(__name__)

_redis_client: Optional[Redis] = None


def create_redis() -> Redis:
    """New client; Celery tasks open one per event loop."""
    return aioredis.from_url(
        get_settings().REDIS_URL,
        encoding="utf-8",
        decode_responses=True,
        socket_connect_timeout=2,
        socket_timeout=2,
        retry_on_timeout=False,
        health_check_interval=30,
    )


async def get_redis() -> Optional[Redis]:
    """Get or create the shared async Redis client; None when Redis is unreachable."""
    global _redis_client

    if _redis_client is None:
        client = create_redis()
        try:
            await client.ping()
        except Exception as e:
            logger.error(f"Failed to connect to Redis: {e}")
            await client.aclose()
            return None
        _redis_client = client
        logger.info("Redis connection established")

    return _redis_client


async def close_redis() -> None:
    """Close Redis connection."""
    global _redis_client
    if _redis_client:
        await _redis_client.aclose()
        _redis_client = None
        logger.info("Redis connection closed")
