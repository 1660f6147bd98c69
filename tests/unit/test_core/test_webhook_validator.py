"""
Unit tests for CardTrader webhook signature validation.
"""
import base64
import hashlib
import hmac

import pytest

from cardsync.core.exceptions import WebhookValidationError
from cardsync.core.webhook_validator import (
    compute_webhook_signature,
    validate_webhook_signature,
    verify_webhook,
)

SECRET = "shared-secret"
BODY = b'{"id":"abc","cause":"order.create","object_id":5001}'


def test_signature_is_base64_hmac_sha256():
    expected = base64.b64encode(
        hmac.new(SECRET.encode(), BODY, hashlib.sha256).digest()
    ).decode()

    assert compute_webhook_signature(BODY, SECRET) == expected


def test_valid_signature_accepted():
    signature = compute_webhook_signature(BODY, SECRET)

    assert validate_webhook_signature(BODY, signature, SECRET) is True
    verify_webhook(BODY, f"  {signature} ", SECRET)


def test_single_byte_change_rejected():
    signature = compute_webhook_signature(BODY, SECRET)
    tampered = BODY.replace(b"5001", b"5002")

    assert validate_webhook_signature(tampered, signature, SECRET) is False
    with pytest.raises(WebhookValidationError) as exc_info:
        verify_webhook(tampered, signature, SECRET)
    assert exc_info.value.status_code == 401


def test_wrong_secret_rejected():
    signature = compute_webhook_signature(BODY, "other-secret")

    assert validate_webhook_signature(BODY, signature, SECRET) is False


@pytest.mark.parametrize("header,secret", [("", SECRET), ("c2ln", "")])
def test_missing_header_or_secret(header, secret):
    with pytest.raises(WebhookValidationError):
        validate_webhook_signature(BODY, header, secret)
