"""
FastAPI dependencies wiring the gateway, the store and Redis into services.
"""
import logging
from typing import AsyncGenerator, Optional

from fastapi import Depends
from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cardsync.core.config import get_settings
from cardsync.core.database import AsyncSessionLocal, get_db_session
from cardsync.core.exceptions import ConfigurationError
from cardsync.core.redis_client import get_redis
from cardsync.services.cardtrader_client import CardTraderClient
from cardsync.services.inventory_items import InventoryItemService
from cardsync.services.notifications import (
    LoggingNotificationSink,
    NotificationSink,
    RedisNotificationSink,
)
from cardsync.services.pending_listings import PendingListingQueue
from cardsync.services.sync_lease import SyncLease
from cardsync.services.sync_orchestrator import SyncOrchestrator
from cardsync.services.webhook_processor import WebhookProcessor

logger = logging.getLogger(__name__)


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    return AsyncSessionLocal


async def get_redis_client() -> Optional[Redis]:
    return await get_redis()


async def get_cardtrader_client() -> AsyncGenerator[CardTraderClient, None]:
    """One client per request; the rate limiter and breaker behind it are shared."""
    try:
        token = get_settings().cardtrader_token
    except ValueError as e:
        raise ConfigurationError(str(e), setting="CARDTRADER_API_TOKEN") from e

    client = CardTraderClient(token)
    try:
        yield client
    finally:
        await client.close()


async def get_sync_lease(
    redis: Optional[Redis] = Depends(get_redis_client),
) -> Optional[SyncLease]:
    settings = get_settings()
    if not settings.SYNC_LEASE_ENABLED:
        return None
    if redis is None:
        logger.warning("Redis unavailable, running sync without lease")
        return None
    return SyncLease(redis, ttl_seconds=settings.SYNC_LEASE_TTL_SECONDS)


def get_sync_orchestrator(
    client: CardTraderClient = Depends(get_cardtrader_client),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    lease: Optional[SyncLease] = Depends(get_sync_lease),
) -> SyncOrchestrator:
    return SyncOrchestrator(client, session_factory, lease=lease, trigger="api")


def get_notification_sink(
    redis: Optional[Redis] = Depends(get_redis_client),
) -> NotificationSink:
    if redis is None:
        return LoggingNotificationSink()
    return RedisNotificationSink(redis, get_settings().NOTIFICATION_CHANNEL)


def get_webhook_processor(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    notifier: NotificationSink = Depends(get_notification_sink),
) -> WebhookProcessor:
    settings = get_settings()
    return WebhookProcessor(
        session_factory,
        notifier,
        shared_secret=settings.webhook_secret,
        require_signature=settings.WEBHOOK_REQUIRE_SIGNATURE,
    )


def get_pending_listing_queue(
    session: AsyncSession = Depends(get_db_session),
) -> PendingListingQueue:
    return PendingListingQueue(session)


def get_publishing_queue(
    session: AsyncSession = Depends(get_db_session),
    client: CardTraderClient = Depends(get_cardtrader_client),
) -> PendingListingQueue:
    return PendingListingQueue(session, client)


def get_inventory_item_service(
    session: AsyncSession = Depends(get_db_session),
    client: CardTraderClient = Depends(get_cardtrader_client),
) -> InventoryItemService:
    return InventoryItemService(session, client)
