import hashlib
import hmac
import time

import httpx
import pytest

from kilofly.core.errors import ProviderError
from kilofly.providers.stripe import (
    StripeClient,
    StripeSignatureError,
    flatten_form,
    key_mode,
    verify_webhook_signature,
)
from kilofly.services.http_client import ProviderHttpClient

SECRET = "whsec_unit"
PAYLOAD = b'{"id":"evt_1","type":"payment_intent.succeeded"}'


def _sign(payload: bytes, ts: int, secret: str = SECRET) -> str:
    sig = hmac.new(secret.encode(), f"{ts}.".encode() + payload, hashlib.sha256).hexdigest()
    return f"t={ts},v1={sig}"


def test_valid_signature_passes():
    ts = int(time.time())
    verify_webhook_signature(PAYLOAD, _sign(PAYLOAD, ts), SECRET)


def test_tampered_payload_is_rejected():
    ts = int(time.time())
    with pytest.raises(StripeSignatureError, match="No matching signature"):
        verify_webhook_signature(PAYLOAD + b" ", _sign(PAYLOAD, ts), SECRET)


def test_expired_timestamp_is_rejected():
    ts = 1_700_000_000
    with pytest.raises(StripeSignatureError, match="tolerance"):
        verify_webhook_signature(PAYLOAD, _sign(PAYLOAD, ts), SECRET, now=ts + 301)


@pytest.mark.parametrize("header", [None, "", "v1=abc", "t=notanumber,v1=abc"])
def test_missing_or_malformed_header(header):
    with pytest.raises(StripeSignatureError):
        verify_webhook_signature(PAYLOAD, header, SECRET)


def test_flatten_form_brackets_nested_keys():
    form = flatten_form({
        "amount": 10500,
        "metadata": {"reservation_id": "rsv_1"},
        "line_items": [{"quantity": 1}],
        "automatic_payment_methods": {"enabled": True},
        "description": None,
    })
    assert form == {
        "amount": "10500",
        "metadata[reservation_id]": "rsv_1",
        "line_items[0][quantity]": "1",
        "automatic_payment_methods[enabled]": "true",
    }


def test_key_mode():
    assert key_mode("sk_live_x") == "live"
    assert key_mode("sk_test_x") == "test"
    assert key_mode("") == "unknown"


async def test_client_sends_manual_capture_and_idempotency_key():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["headers"] = request.headers
        seen["body"] = request.content.decode()
        return httpx.Response(200, json={"id": "pi_1", "client_secret": "pi_1_secret", "status": "requires_payment_method"})

    http = ProviderHttpClient(transport=httpx.MockTransport(handler))
    client = StripeClient(http=http, secret_key="sk_test_abc")
    intent = await client.create_payment_intent(
        amount_minor=10500, currency="EUR", metadata={"reservation_id": "rsv_1"}, idempotency_key="k1"
    )
    await http.aclose()

    assert intent["id"] == "pi_1"
    assert seen["headers"]["authorization"] == "Bearer sk_test_abc"
    assert seen["headers"]["idempotency-key"] == "k1"
    assert "capture_method=manual" in seen["body"]
    assert "currency=eur" in seen["body"]


async def test_client_raises_provider_error_with_stripe_message():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(402, json={"error": {"code": "card_declined", "message": "Your card was declined."}})

    http = ProviderHttpClient(transport=httpx.MockTransport(handler))
    client = StripeClient(http=http, secret_key="sk_test_abc")
    with pytest.raises(ProviderError) as exc:
        await client.capture_payment_intent("pi_1")
    await http.aclose()

    assert exc.value.provider == "stripe"
    assert exc.value.message == "Your card was declined."
