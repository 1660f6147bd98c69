"""
Celery tasks that run CardTrader synchronization in the background.
"""
import asyncio
import logging
from typing import Any, Dict, Optional

from cardsync.core.config import get_settings
from cardsync.core.database import create_engine_for_url, create_session_factory
from cardsync.core.exceptions import SyncInProgressError
from cardsync.core.logging import setup_logging
from cardsync.core.redis_client import create_redis
from cardsync.services.cardtrader_client import CardTraderClient
from cardsync.services.sync_lease import SyncLease
from cardsync.services.sync_orchestrator import SyncOrchestrator, SyncResult, SyncSelection
from cardsync.tasks.celery_app import celery_app

setup_logging()
logger = logging.getLogger(__name__)


def run_async(coro):
    """
    Run a coroutine from a Celery task.

    asyncio.run() gives every task a fresh event loop, so engines and Redis
    clients are created inside the coroutine and disposed before it returns.
    """
    return asyncio.run(coro)


def summarize(result: SyncResult) -> Dict[str, Any]:
    return {
        "status": "completed" if result.success else "completed_with_errors",
        "run_id": result.run_id,
        "duration_seconds": round(result.duration_seconds, 3),
        "error_message": result.error_message,
        **result.totals,
        "entities": {
            name: {
                "was_requested": entity.was_requested,
                "added": entity.added,
                "updated": entity.updated,
                "failed": entity.failed,
                "skipped": entity.skipped,
                "error_message": entity.error_message,
            }
            for name, entity in result.entities.items()
            if entity.was_requested
        },
    }


async def _run_scheduled_sync_async() -> Dict[str, Any]:
    settings = get_settings()
    engine = create_engine_for_url(settings.DATABASE_URL)
    redis = create_redis() if settings.SYNC_LEASE_ENABLED else None
    try:
        lease: Optional[SyncLease] = None
        if redis is not None:
            try:
                await redis.ping()
                lease = SyncLease(redis, ttl_seconds=settings.SYNC_LEASE_TTL_SECONDS)
            except Exception as e:
                logger.warning(f"Redis unavailable ({e}), running scheduled sync without lease")

        async with CardTraderClient(settings.cardtrader_token) as client:
            orchestrator = SyncOrchestrator(
                client,
                create_session_factory(engine),
                lease=lease,
                trigger="scheduled",
            )
            try:
                result = await orchestrator.sync(SyncSelection.full())
            except SyncInProgressError as e:
                logger.info(f"Skipping scheduled sync: {e.detail}")
                return {"status": "skipped", "reason": e.detail}
        return summarize(result)
    finally:
        if redis is not None:
            await redis.aclose()
        await engine.dispose()


@celery_app.task(name="cardsync.tasks.sync_tasks.run_scheduled_sync", bind=True)
def run_scheduled_sync(self) -> Dict[str, Any]:
    """
    Full sync (catalog, inventory and orders) fired by Celery beat.

    A tick that finds another run holding the lease is skipped, not retried;
    the next tick picks up the work.
    """
    logger.info("Starting scheduled sync", extra={"task_id": self.request.id})
    try:
        result = run_async(_run_scheduled_sync_async())
    except Exception as e:
        logger.error(f"Scheduled sync failed: {e}", exc_info=True)
        raise
    logger.info("Scheduled sync finished", extra={"result": result})
    return result
