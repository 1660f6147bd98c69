"""
Readiness checks for the database and Redis.
"""
import asyncio
import logging
from typing import Any, Dict

from sqlalchemy import text

from cardsync.core.config import get_settings
from cardsync.core.database import get_db_session_context
from cardsync.core.redis_client import get_redis

logger = logging.getLogger(__name__)


async def check_database() -> Dict[str, Any]:
    try:
        async with get_db_session_context() as session:
            result = await session.execute(text("SELECT 1"))
            result.scalar()
        return {"status": "healthy", "message": "Database connection successful"}
    except Exception as e:
        logger.error(f"Database health check failed: {e}", exc_info=True)
        return {
            "status": "unhealthy",
            "message": f"Database connection failed: {e}",
        }


async def check_redis() -> Dict[str, Any]:
    try:
        redis = await get_redis()
        if not redis:
            return {"status": "unhealthy", "message": "Redis client not available"}
        await redis.ping()
        return {"status": "healthy", "message": "Redis connection successful"}
    except Exception as e:
        logger.error(f"Redis health check failed: {e}", exc_info=True)
        return {
            "status": "unhealthy",
            "message": f"Redis connection failed: {e}",
        }


async def get_health_status() -> Dict[str, Any]:
    """Aggregated status; "healthy" only when every component is."""
    settings = get_settings()
    database_status, redis_status = await asyncio.gather(check_database(), check_redis())

    components = {"database": database_status, "redis": redis_status}
    healthy = all(c["status"] == "healthy" for c in components.values())
    return {
        "status": "healthy" if healthy else "unhealthy",
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "components": components,
    }
