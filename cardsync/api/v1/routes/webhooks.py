"""
Inbound CardTrader webhooks.
"""
import logging
import time
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request, Response, status

from cardsync.api.dependencies import get_webhook_processor
from cardsync.services.webhook_processor import WebhookProcessor

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/cardtrader", status_code=status.HTTP_204_NO_CONTENT)
async def receive_cardtrader_webhook(
    request: Request,
    x_signature: Optional[str] = Header(None, alias="X-Signature"),
    processor: WebhookProcessor = Depends(get_webhook_processor),
) -> Response:
    """
    Receive an order notification from CardTrader.

    The signature is computed over the raw body, so the body is read as
    bytes before any JSON decoding.

    Returns:
        204 once processed; 400 malformed payload, 401 bad signature,
        500 processing error
    """
    start_time = time.time()
    body = await request.body()

    outcome = await processor.process(body, x_signature)

    elapsed = (time.time() - start_time) * 1000
    logger.info(
        f"Webhook {outcome.webhook_id} handled in {elapsed:.2f}ms ({outcome.state.value})",
        extra={"cause": outcome.cause, "order_id": outcome.order_id},
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)
