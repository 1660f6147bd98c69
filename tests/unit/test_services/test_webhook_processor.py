"""
Unit tests for CardTrader webhook processing.
"""
import json
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import func, select

from cardsync.core.exceptions import ConfigurationError, WebhookPayloadError, WebhookValidationError
from cardsync.core.webhook_validator import compute_webhook_signature
from cardsync.models.orders import Order
from cardsync.services.notifications import ORDER_CREATED, ORDER_UPDATED
from cardsync.services.upsert_engine import EntityUpsertEngine
from cardsync.services.webhook_processor import WebhookProcessor, WebhookState

SECRET = "webhook-secret"


@pytest.fixture
def notifier():
    sink = AsyncMock()
    sink.notify = AsyncMock()
    return sink


@pytest.fixture
def processor(session_factory, notifier):
    return WebhookProcessor(session_factory, notifier, shared_secret=SECRET)


def webhook_body(cause: str, order: dict = None, object_id: int = 5001, webhook_id: str = "wh-1") -> bytes:
    payload = {
        "id": webhook_id,
        "time": 1732097700,
        "cause": cause,
        "object_class": "Order",
        "object_id": object_id,
        "mode": "live",
        "data": order,
    }
    return json.dumps(payload).encode()


def signed(body: bytes) -> str:
    return compute_webhook_signature(body, SECRET)


async def _orders(session_factory) -> int:
    async with session_factory() as session:
        return (await session.execute(select(func.count()).select_from(Order))).scalar_one()


@pytest.mark.asyncio
async def test_order_create_persists_and_notifies(processor, notifier, session_factory, catalog_rows, order_payload):
    body = webhook_body("order.create", order_payload())

    outcome = await processor.process(body, signed(body))

    assert outcome.state is WebhookState.DONE
    assert outcome.order_id == 5001
    notifier.notify.assert_awaited_once_with(ORDER_CREATED, {"order_id": 5001, "state": "paid"})
    async with session_factory() as session:
        order = await EntityUpsertEngine(session).get_order(5001)
    assert order.items[0].blueprint_id == catalog_rows["blueprint"].id


@pytest.mark.asyncio
async def test_replayed_delivery_is_idempotent(processor, session_factory, order_payload):
    body = webhook_body("order.create", order_payload())

    await processor.process(body, signed(body))
    async with session_factory() as session:
        before = await EntityUpsertEngine(session).get_order(5001)
    await processor.process(body, signed(body))

    assert await _orders(session_factory) == 1
    async with session_factory() as session:
        after = await EntityUpsertEngine(session).get_order(5001)
    assert after.status == before.status
    assert [i.id for i in after.items] == [i.id for i in before.items]


@pytest.mark.asyncio
async def test_order_update_changes_status(processor, notifier, session_factory, order_payload):
    created = webhook_body("order.create", order_payload())
    await processor.process(created, signed(created))

    updated = webhook_body("order.update", order_payload(state="sent"), webhook_id="wh-2")
    outcome = await processor.process(updated, signed(updated))

    assert outcome.state is WebhookState.DONE
    assert notifier.notify.await_args.args[0] == ORDER_UPDATED
    async with session_factory() as session:
        order = await EntityUpsertEngine(session).get_order(5001)
    assert order.status == "sent"


@pytest.mark.asyncio
async def test_order_id_taken_from_object_id(processor, session_factory, order_payload):
    order = order_payload()
    del order["id"]
    body = webhook_body("order.create", order, object_id=6006)

    outcome = await processor.process(body, signed(body))

    assert outcome.order_id == 6006
    assert await _orders(session_factory) == 1


@pytest.mark.asyncio
async def test_destroy_of_known_order_is_retained(processor, session_factory, order_payload):
    created = webhook_body("order.create", order_payload())
    await processor.process(created, signed(created))

    destroy = webhook_body("order.destroy", None, webhook_id="wh-3")
    outcome = await processor.process(destroy, signed(destroy))

    assert outcome.state is WebhookState.RETAINED
    assert await _orders(session_factory) == 1


@pytest.mark.asyncio
async def test_destroy_of_unknown_order_is_done(processor, notifier):
    body = webhook_body("order.destroy", None, object_id=404)

    outcome = await processor.process(body, signed(body))

    assert outcome.state is WebhookState.DONE
    notifier.notify.assert_not_awaited()


@pytest.mark.asyncio
async def test_unknown_cause_is_acknowledged(processor, notifier, session_factory):
    body = webhook_body("product.update", {"id": 1})

    outcome = await processor.process(body, signed(body))

    assert outcome.state is WebhookState.DONE
    assert outcome.message == "Unsupported webhook cause"
    notifier.notify.assert_not_awaited()
    assert await _orders(session_factory) == 0


@pytest.mark.asyncio
async def test_bad_signature_is_rejected(processor, session_factory, order_payload):
    body = webhook_body("order.create", order_payload())
    tampered = body.replace(b'"paid"', b'"sent"')

    with pytest.raises(WebhookValidationError):
        await processor.process(tampered, signed(body))

    assert await _orders(session_factory) == 0


@pytest.mark.asyncio
async def test_missing_signature_processed_when_optional(processor, order_payload):
    body = webhook_body("order.create", order_payload())

    outcome = await processor.process(body, None)

    assert outcome.state is WebhookState.DONE


@pytest.mark.asyncio
async def test_missing_signature_rejected_when_required(session_factory, notifier, order_payload):
    processor = WebhookProcessor(session_factory, notifier, shared_secret=SECRET, require_signature=True)
    body = webhook_body("order.create", order_payload())

    with pytest.raises(WebhookValidationError):
        await processor.process(body, None)


@pytest.mark.asyncio
async def test_signature_without_configured_secret_is_refused(session_factory, notifier, order_payload):
    processor = WebhookProcessor(session_factory, notifier, shared_secret=None)
    body = webhook_body("order.create", order_payload())

    with pytest.raises(ConfigurationError) as exc_info:
        await processor.process(body, signed(body))

    assert exc_info.value.status_code == 500
    assert await _orders(session_factory) == 0

@pytest.mark.asyncio
async def test_unsigned_delivery_accepted_without_secret(session_factory, notifier, order_payload):
    processor = WebhookProcessor(session_factory, notifier, shared_secret=None)

    outcome = await processor.process(webhook_body("order.create", order_payload()), None)

    assert outcome.state is WebhookState.DONE


@pytest.mark.asyncio
@pytest.mark.parametrize("body", [
    b"not json",
    b"[1, 2]",
    json.dumps({"id": "wh-9"}).encode(),
])
async def test_malformed_body(processor, body):
    with pytest.raises(WebhookPayloadError) as exc_info:
        await processor.process(body, signed(body))

    assert exc_info.value.status_code == 400


@pytest.mark.asyncio
async def test_order_without_id_is_malformed(processor):
    body = webhook_body("order.create", {"state": "paid"}, object_id=None)

    with pytest.raises(WebhookPayloadError):
        await processor.process(body, signed(body))
