"""
Webhook signature validator for CardTrader webhooks.
Validates the base64 HMAC-SHA256 signature computed over the raw request body.
"""
import base64
import hashlib
import hmac
import logging

from cardsync.core.exceptions import WebhookValidationError

logger = logging.getLogger(__name__)


def compute_webhook_signature(body: bytes, shared_secret: str) -> str:
    """Base64-encoded HMAC-SHA256 of ``body`` keyed with ``shared_secret``."""
    digest = hmac.new(
        shared_secret.encode("utf-8"),
        body,
        hashlib.sha256,
    ).digest()
    return base64.b64encode(digest).decode("ascii")


def validate_webhook_signature(
    body: bytes,
    signature_header: str,
    shared_secret: str,
) -> bool:
    """
    Validate CardTrader webhook signature.

    Args:
        body: Raw request body bytes, exactly as received
        signature_header: Signature header value (base64 encoded HMAC-SHA256)
        shared_secret: Shared secret from the CardTrader /info endpoint

    Returns:
        True if signature is valid, False otherwise

    Raises:
        WebhookValidationError: If the header or secret is missing
    """
    if not signature_header:
        raise WebhookValidationError("Missing signature header")

    if not shared_secret:
        raise WebhookValidationError("Missing shared_secret")

    computed = compute_webhook_signature(body, shared_secret)

    # Constant-time comparison
    if not hmac.compare_digest(
        computed.encode("ascii"),
        signature_header.strip().encode("utf-8"),
    ):
        logger.warning("Webhook signature validation failed")
        return False

    return True


def verify_webhook(
    body: bytes,
    signature_header: str,
    shared_secret: str,
) -> None:
    """
    Verify webhook signature, raising exception if invalid.

    Raises:
        WebhookValidationError: If signature is missing or invalid
    """
    if not validate_webhook_signature(body, signature_header, shared_secret):
        raise WebhookValidationError("Invalid webhook signature")
