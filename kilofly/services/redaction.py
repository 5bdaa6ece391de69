"""
Scrubs provider payloads before they are logged or stored in ledger metadata.

Credentials are replaced outright; phone numbers keep a short prefix so
support can still match a payout to an operator.
"""
from __future__ import annotations
from typing import Any

SECRET_KEYS = {
    "apikey", "api_key", "secret", "secret_key", "client_secret",
    "token", "access_token", "payment_token", "assertion",
    "authorization", "password", "private_key", "signature", "cpm_signature",
}

PHONE_KEYS = {
    "phone", "phone_number", "prefix_phone", "receiver",
    "customer_phone_number", "cel_phone_num", "cpm_phone_prefixe",
}

REDACTED = "**********"
PHONE_VISIBLE_CHARS = 6


def _mask_phone(value: Any) -> Any:
    if not isinstance(value, str) or len(value) <= PHONE_VISIBLE_CHARS:
        return value
    return value[:PHONE_VISIBLE_CHARS] + "***"


def redact_payload(value: Any, *, extra_keys: set[str] | None = None) -> Any:
    secret = SECRET_KEYS | {k.lower() for k in (extra_keys or ())}

    def _walk(v: Any) -> Any:
        if isinstance(v, dict):
            out = {}
            for k, vv in v.items():
                key = k.lower() if isinstance(k, str) else k
                if key in secret:
                    out[k] = REDACTED
                elif key in PHONE_KEYS:
                    out[k] = _mask_phone(vv)
                else:
                    out[k] = _walk(vv)
            return out
        if isinstance(v, (list, tuple)):
            return [_walk(x) for x in v]
        return v

    return _walk(value)
