"""
Stripe REST client (form-encoded, bearer secret key).

Only the handful of endpoints the escrow flow needs: manual-capture
PaymentIntents and Checkout Sessions.
"""
from __future__ import annotations

import hashlib
import hmac
import logging
import time
from typing import Any, Mapping

from kilofly.core.errors import ProviderError
from kilofly.services.http_client import HttpResult, ProviderHttpClient

log = logging.getLogger(__name__)

STRIPE_API_BASE = "https://api.stripe.com/v1"
SIGNATURE_TOLERANCE_SECONDS = 300


class StripeSignatureError(Exception):
    pass


def flatten_form(data: Mapping[str, Any], prefix: str = "") -> dict[str, str]:
    """
    Stripe expects nested params as bracketed keys:
      {"metadata": {"a": 1}} -> {"metadata[a]": "1"}
      {"line_items": [{"quantity": 1}]} -> {"line_items[0][quantity]": "1"}
    """
    out: dict[str, str] = {}
    for key, value in data.items():
        full = f"{prefix}[{key}]" if prefix else str(key)
        if value is None:
            continue
        if isinstance(value, Mapping):
            out.update(flatten_form(value, full))
        elif isinstance(value, (list, tuple)):
            for i, item in enumerate(value):
                if isinstance(item, Mapping):
                    out.update(flatten_form(item, f"{full}[{i}]"))
                else:
                    out[f"{full}[{i}]"] = str(item)
        elif isinstance(value, bool):
            out[full] = "true" if value else "false"
        else:
            out[full] = str(value)
    return out


def key_mode(secret_key: str) -> str:
    if secret_key.startswith("sk_live_"):
        return "live"
    if secret_key.startswith("sk_test_"):
        return "test"
    return "unknown"


def verify_webhook_signature(
    payload: bytes,
    sig_header: str | None,
    secret: str,
    *,
    tolerance: int = SIGNATURE_TOLERANCE_SECONDS,
    now: int | None = None,
) -> None:
    if not sig_header:
        raise StripeSignatureError("Missing Stripe-Signature header")
    if not secret:
        raise StripeSignatureError("Webhook secret not configured")

    timestamp: str | None = None
    signatures: list[str] = []
    for part in sig_header.split(","):
        k, _, v = part.strip().partition("=")
        if k == "t":
            timestamp = v
        elif k == "v1":
            signatures.append(v)

    if not timestamp or not signatures:
        raise StripeSignatureError("Malformed Stripe-Signature header")

    try:
        ts = int(timestamp)
    except ValueError as e:
        raise StripeSignatureError("Malformed timestamp") from e

    current = int(time.time()) if now is None else now
    if abs(current - ts) > tolerance:
        raise StripeSignatureError("Timestamp outside tolerance")

    signed = f"{timestamp}.".encode("utf-8") + payload
    expected = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    if not any(hmac.compare_digest(expected, s) for s in signatures):
        raise StripeSignatureError("No matching signature")


class StripeClient:
    def __init__(self, *, http: ProviderHttpClient, secret_key: str, base_url: str = STRIPE_API_BASE):
        self._http = http
        self._secret_key = secret_key
        self._base = base_url.rstrip("/")

    @property
    def mode(self) -> str:
        return key_mode(self._secret_key)

    def _headers(self, idempotency_key: str | None = None) -> dict[str, str]:
        h = {"Authorization": f"Bearer {self._secret_key}"}
        if idempotency_key:
            h["Idempotency-Key"] = idempotency_key
        return h

    def _unwrap(self, res: HttpResult, action: str) -> dict[str, Any]:
        if res.ok:
            return res.detail
        err = res.detail.get("error") if isinstance(res.detail.get("error"), dict) else {}
        message = err.get("message") or res.error_message or f"{action} failed"
        log.warning("stripe %s failed: status=%s code=%s", action, res.status_code, err.get("code"))
        raise ProviderError("stripe", message, detail={"status_code": res.status_code, "code": err.get("code")}, status_code=res.status_code)

    async def create_payment_intent(
        self,
        *,
        amount_minor: int,
        currency: str,
        metadata: Mapping[str, str],
        description: str | None = None,
        idempotency_key: str | None = None,
    ) -> dict[str, Any]:
        form = flatten_form({
            "amount": amount_minor,
            "currency": currency.lower(),
            "capture_method": "manual",
            "automatic_payment_methods": {"enabled": True},
            "description": description,
            "metadata": dict(metadata),
        })
        res = await self._http.post_form(
            url=f"{self._base}/payment_intents",
            headers=self._headers(idempotency_key),
            form_body=form,
        )
        return self._unwrap(res, "create_payment_intent")

    async def retrieve_payment_intent(self, intent_id: str) -> dict[str, Any]:
        res = await self._http.get_json(url=f"{self._base}/payment_intents/{intent_id}", headers=self._headers())
        return self._unwrap(res, "retrieve_payment_intent")

    async def capture_payment_intent(self, intent_id: str, *, idempotency_key: str | None = None) -> dict[str, Any]:
        res = await self._http.post_form(
            url=f"{self._base}/payment_intents/{intent_id}/capture",
            headers=self._headers(idempotency_key),
            form_body={},
        )
        return self._unwrap(res, "capture_payment_intent")

    async def cancel_payment_intent(self, intent_id: str, *, idempotency_key: str | None = None) -> dict[str, Any]:
        res = await self._http.post_form(
            url=f"{self._base}/payment_intents/{intent_id}/cancel",
            headers=self._headers(idempotency_key),
            form_body={"cancellation_reason": "requested_by_customer"},
        )
        return self._unwrap(res, "cancel_payment_intent")

    async def create_checkout_session(
        self,
        *,
        amount_minor: int,
        currency: str,
        product_name: str,
        success_url: str,
        cancel_url: str,
        metadata: Mapping[str, str],
        customer_email: str | None = None,
        idempotency_key: str | None = None,
    ) -> dict[str, Any]:
        form = flatten_form({
            "mode": "payment",
            "success_url": success_url,
            "cancel_url": cancel_url,
            "customer_email": customer_email,
            "line_items": [
                {
                    "quantity": 1,
                    "price_data": {
                        "currency": currency.lower(),
                        "unit_amount": amount_minor,
                        "product_data": {"name": product_name},
                    },
                }
            ],
            "payment_intent_data": {
                "capture_method": "manual",
                "metadata": dict(metadata),
            },
            "metadata": dict(metadata),
        })
        res = await self._http.post_form(
            url=f"{self._base}/checkout/sessions",
            headers=self._headers(idempotency_key),
            form_body=form,
        )
        return self._unwrap(res, "create_checkout_session")
