"""
Order notifications for downstream consumers.

Fire-and-forget: a failing sink logs the problem and never raises into the
webhook or sync path that produced the event.
"""
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Protocol

from redis.asyncio import Redis

logger = logging.getLogger(__name__)

ORDER_CREATED = "OrderCreated"
ORDER_UPDATED = "OrderUpdated"


class NotificationSink(Protocol):
    async def notify(self, event: str, payload: Dict[str, Any]) -> None:
        ...


def _envelope(event: str, payload: Dict[str, Any]) -> str:
    return json.dumps(
        {
            "event": event,
            "emitted_at": datetime.now(timezone.utc).isoformat(),
            "payload": payload,
        },
        default=str,
    )


class RedisNotificationSink:
    """Publishes events as JSON on a Redis pub/sub channel."""

    def __init__(self, redis: Optional[Redis], channel: str):
        self.redis = redis
        self.channel = channel

    async def notify(self, event: str, payload: Dict[str, Any]) -> None:
        if self.redis is None:
            logger.warning(f"Redis unavailable, dropping {event} notification", extra={"event": event})
            return
        try:
            receivers = await self.redis.publish(self.channel, _envelope(event, payload))
            logger.debug(f"Published {event} to {self.channel} ({receivers} receiver(s))")
        except Exception as e:
            logger.error(
                f"Failed to publish {event} notification: {e}",
                extra={"event": event, "channel": self.channel},
            )


class LoggingNotificationSink:
    """Sink for environments without Redis: events only go to the log."""

    async def notify(self, event: str, payload: Dict[str, Any]) -> None:
        logger.info(f"Notification {event}", extra={"event": event, "payload": payload})
