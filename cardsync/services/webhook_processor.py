"""
Webhook processor for CardTrader order notifications.

Lifecycle of one delivery:
    RECEIVED -> VERIFIED -> DISPATCHED -> DONE
    RECEIVED -> REJECTED              (bad or required-but-missing signature)
    DISPATCHED -> RETAINED            (order.destroy of a known order)

order.create / order.update go through the same order upsert path as the
scheduled sync, so replaying a delivery leaves the Order row unchanged.
"""
import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cardsync.core.exceptions import (
    ConfigurationError,
    SyncError,
    WebhookPayloadError,
    WebhookValidationError,
)
from cardsync.core.logging import LogContext
from cardsync.core.prometheus_metrics import webhooks_total
from cardsync.core.webhook_validator import verify_webhook
from cardsync.services.cardtrader_dtos import OrderDTO, WebhookDTO
from cardsync.services.notifications import ORDER_CREATED, ORDER_UPDATED, NotificationSink
from cardsync.services.upsert_engine import EntityUpsertEngine

logger = logging.getLogger(__name__)

ORDER_CREATE = "order.create"
ORDER_UPDATE = "order.update"
ORDER_DESTROY = "order.destroy"


class WebhookState(str, Enum):
    RECEIVED = "received"
    VERIFIED = "verified"
    REJECTED = "rejected"
    DISPATCHED = "dispatched"
    DONE = "done"
    RETAINED = "retained"


@dataclass
class WebhookOutcome:
    webhook_id: Optional[str]
    cause: Optional[str]
    state: WebhookState
    order_id: Optional[int] = None
    message: Optional[str] = None


class WebhookProcessor:
    """Processes CardTrader webhook notifications."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        notifier: NotificationSink,
        shared_secret: Optional[str],
        require_signature: bool = False,
    ):
        self.session_factory = session_factory
        self.notifier = notifier
        self.shared_secret = shared_secret
        self.require_signature = require_signature

    def verify(self, body: bytes, signature: Optional[str]) -> None:
        """
        Check the X-Signature header against the raw body.

        Raises:
            WebhookValidationError: signature invalid, or missing while required
            ConfigurationError: a signature was sent but no secret is configured
        """
        if not signature:
            if self.require_signature:
                raise WebhookValidationError("Missing signature header")
            logger.warning("Webhook received without signature header, processing anyway")
            return
        if not self.shared_secret:
            logger.error("Signed webhook received but no webhook secret is configured")
            raise ConfigurationError(
                "Webhook secret is not configured, cannot verify X-Signature",
                setting="CARDTRADER_WEBHOOK_SECRET",
            )
        verify_webhook(body, signature, self.shared_secret)

    @staticmethod
    def parse(body: bytes) -> WebhookDTO:
        try:
            payload = json.loads(body)
        except ValueError as e:
            raise WebhookPayloadError(f"Webhook body is not valid JSON: {e}") from e
        if not isinstance(payload, dict):
            raise WebhookPayloadError("Webhook body must be a JSON object")
        try:
            return WebhookDTO.model_validate(payload)
        except PydanticValidationError as e:
            raise WebhookPayloadError(
                "Webhook body is missing required fields",
                context={"errors": e.errors(include_url=False, include_input=False)},
            ) from e

    async def process(self, body: bytes, signature: Optional[str]) -> WebhookOutcome:
        """
        Verify, parse and dispatch one delivery.

        Raises:
            WebhookValidationError: rejected signature (401)
            WebhookPayloadError: malformed body (400)
        """
        try:
            self.verify(body, signature)
        except WebhookValidationError:
            webhooks_total.labels(cause="unknown", state=WebhookState.REJECTED.value).inc()
            logger.warning("Webhook rejected: signature verification failed")
            raise

        webhook = self.parse(body)
        with LogContext(webhook_id=webhook.id):
            logger.debug(f"Webhook {webhook.id} {WebhookState.VERIFIED.value}")
            logger.info(
                f"Processing webhook {webhook.id}: cause={webhook.cause}, mode={webhook.mode}",
                extra={"cause": webhook.cause, "object_id": webhook.object_id},
            )
            outcome = await self._dispatch(webhook)
            logger.debug(f"Webhook {webhook.id} {WebhookState.DISPATCHED.value} -> {outcome.state.value}")
            webhooks_total.labels(cause=webhook.cause, state=outcome.state.value).inc()
            return outcome

    async def _dispatch(self, webhook: WebhookDTO) -> WebhookOutcome:
        if webhook.cause in (ORDER_CREATE, ORDER_UPDATE):
            return await self._handle_order_upsert(webhook)
        if webhook.cause == ORDER_DESTROY:
            return await self._handle_order_destroy(webhook)

        logger.info(f"Ignoring webhook with unsupported cause {webhook.cause!r}")
        return WebhookOutcome(
            webhook_id=webhook.id,
            cause=webhook.cause,
            state=WebhookState.DONE,
            message="Unsupported webhook cause",
        )

    @staticmethod
    def _order_payload(webhook: WebhookDTO) -> Dict[str, Any]:
        data = dict(webhook.data or {})
        if "id" not in data and webhook.object_id is not None:
            data["id"] = webhook.object_id
        return data

    async def _handle_order_upsert(self, webhook: WebhookDTO) -> WebhookOutcome:
        try:
            order = OrderDTO.model_validate(self._order_payload(webhook))
        except PydanticValidationError as e:
            raise WebhookPayloadError(
                f"Webhook {webhook.id} carries an invalid order",
                context={"errors": e.errors(include_url=False, include_input=False)},
            ) from e

        async with self.session_factory() as session:
            stats = await EntityUpsertEngine(session).upsert_orders([order])
            if stats.failed:
                await session.rollback()
                raise SyncError(
                    f"Failed to persist order {order.id} from webhook {webhook.id}",
                    context={"order_id": order.id},
                )
            await session.commit()

        event = ORDER_CREATED if webhook.cause == ORDER_CREATE else ORDER_UPDATED
        await self.notifier.notify(event, {"order_id": order.id, "state": order.state})
        logger.info(
            f"Order {order.id} applied from webhook (added={stats.added}, updated={stats.updated})"
        )
        return WebhookOutcome(
            webhook_id=webhook.id,
            cause=webhook.cause,
            state=WebhookState.DONE,
            order_id=order.id,
        )

    async def _handle_order_destroy(self, webhook: WebhookDTO) -> WebhookOutcome:
        order_id = self._order_payload(webhook).get("id")
        if order_id is None:
            raise WebhookPayloadError(f"Webhook {webhook.id} does not name an order")

        async with self.session_factory() as session:
            existing = await EntityUpsertEngine(session).get_order(int(order_id))

        if existing is None:
            logger.info(f"order.destroy for unknown order {order_id}, nothing to do")
            return WebhookOutcome(
                webhook_id=webhook.id,
                cause=webhook.cause,
                state=WebhookState.DONE,
                order_id=int(order_id),
            )

        logger.warning(
            f"order.destroy received for order {order_id}; order retained locally",
            extra={"order_id": order_id, "status": existing.status},
        )
        return WebhookOutcome(
            webhook_id=webhook.id,
            cause=webhook.cause,
            state=WebhookState.RETAINED,
            order_id=int(order_id),
            message="Order retained",
        )
