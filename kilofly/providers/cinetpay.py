"""CinetPay checkout (payments) and transfer (payouts) API client."""
from __future__ import annotations

import logging
import re
from typing import Any

from kilofly.services.http_client import HttpResult, ProviderHttpClient
from kilofly.services.redaction import redact_payload

log = logging.getLogger(__name__)

# Payment init succeeded
CODE_CREATED = "201"
# Transfer accepted / queued
TRANSFER_OK_CODES = ("00", "PENDING")


def operator_code(payout_method: str, phone_number: str) -> str:
    """Mobile-money operator code from payout method and phone country prefix."""
    is_senegal = phone_number.startswith("+221") or phone_number.startswith("221")
    is_cote_divoire = phone_number.startswith("+225") or phone_number.startswith("225")

    if payout_method == "wave":
        if is_senegal:
            return "WAVESN"
        if is_cote_divoire:
            return "WAVECI"
        return "WAVE"

    if payout_method == "orange_money":
        if is_senegal:
            return "OMSN"
        if is_cote_divoire:
            return "OMCI"
        return "OM"

    return payout_method.upper()


def format_phone_number(phone: str) -> str:
    return re.sub(r"[\s+\-()]", "", phone)


class CinetPayClient:
    def __init__(self, *, http: ProviderHttpClient, api_key: str, site_id: str, base_url: str):
        self._http = http
        self._api_key = api_key
        self._site_id = site_id
        self._base = base_url.rstrip("/")

    def _auth(self) -> dict[str, str]:
        return {"apikey": self._api_key, "site_id": self._site_id}

    @staticmethod
    def _body(res: HttpResult) -> dict[str, Any]:
        # CinetPay answers JSON with a "code" even on HTTP 4xx
        body = dict(res.detail or {})
        if not res.ok and "code" not in body:
            body["code"] = res.error_code or "HTTP_ERROR"
            body.setdefault("message", res.error_message)
        return body

    async def init_payment(self, payload: dict[str, Any]) -> dict[str, Any]:
        res = await self._http.post_json(url=f"{self._base}/payment", json_body={**self._auth(), **payload})
        body = self._body(res)
        log.info("cinetpay init_payment: code=%s", body.get("code"))
        return body

    async def check_payment(self, transaction_id: str) -> dict[str, Any]:
        res = await self._http.post_json(
            url=f"{self._base}/payment/check",
            json_body={**self._auth(), "transaction_id": transaction_id},
        )
        body = self._body(res)
        log.info("cinetpay check_payment: %s", redact_payload(body))
        return body

    async def send_transfer(self, payload: dict[str, Any]) -> dict[str, Any]:
        res = await self._http.post_json(
            url=f"{self._base}/transfer/money/send/contact",
            json_body={**self._auth(), **payload},
        )
        body = self._body(res)
        log.info("cinetpay send_transfer: code=%s", body.get("code"))
        return body
