"""
Firebase Cloud Messaging HTTP v1 client.

Authentication is the service-account flow: a self-signed RS256 JWT is
exchanged at Google's OAuth2 token endpoint for a short-lived access token,
which is cached until shortly before it expires.
"""
from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Mapping

from jose import jwt
from jose.exceptions import JOSEError

from kilofly.core.errors import ProviderError
from kilofly.services.http_client import HttpResult, ProviderHttpClient

log = logging.getLogger(__name__)

GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
FCM_SCOPE = "https://www.googleapis.com/auth/firebase.messaging"
FCM_API_BASE = "https://fcm.googleapis.com/v1"
ASSERTION_LIFETIME_SECONDS = 3600
TOKEN_REFRESH_MARGIN_SECONDS = 60


def normalize_private_key(pem: str) -> str:
    # Env vars usually carry the PEM with literal "\n"
    return pem.replace("\\n", "\n")


def build_service_account_assertion(*, client_email: str, private_key_pem: str, now: int | None = None) -> str:
    issued = int(time.time()) if now is None else now
    claims = {
        "iss": client_email,
        "scope": FCM_SCOPE,
        "aud": GOOGLE_TOKEN_URL,
        "iat": issued,
        "exp": issued + ASSERTION_LIFETIME_SECONDS,
    }
    return jwt.encode(claims, normalize_private_key(private_key_pem), algorithm="RS256")


def stringify_data(data: Mapping[str, Any] | None) -> dict[str, str]:
    # FCM data payload only accepts string values
    out: dict[str, str] = {}
    for k, v in (data or {}).items():
        if v is None:
            continue
        out[str(k)] = v if isinstance(v, str) else json.dumps(v) if isinstance(v, (dict, list)) else str(v)
    return out


def build_message(*, token: str, title: str, body: str, data: Mapping[str, Any] | None = None) -> dict[str, Any]:
    return {
        "message": {
            "token": token,
            "notification": {"title": title, "body": body},
            "data": stringify_data(data),
            "android": {
                "priority": "high",
                "notification": {"sound": "default", "channel_id": "default"},
            },
            "apns": {
                "payload": {"aps": {"sound": "default", "badge": 1}},
            },
        }
    }


@dataclass(frozen=True)
class PushResult:
    ok: bool
    unregistered: bool
    retryable: bool
    status_code: int | None
    detail: dict[str, Any]
    error_code: str | None = None
    error_message: str | None = None


def _is_unregistered(res: HttpResult) -> bool:
    if res.status_code == 404:
        return True
    err = res.detail.get("error") if isinstance(res.detail.get("error"), dict) else {}
    if err.get("status") in ("NOT_FOUND", "UNREGISTERED"):
        return True
    for d in err.get("details") or []:
        if isinstance(d, dict) and d.get("errorCode") == "UNREGISTERED":
            return True
    return False


class FcmClient:
    def __init__(self, *, http: ProviderHttpClient, project_id: str, client_email: str, private_key: str):
        self._http = http
        self._project_id = project_id
        self._client_email = client_email
        self._private_key = private_key
        self._access_token: str | None = None
        self._expires_at: float = 0.0

    @property
    def configured(self) -> bool:
        return bool(self._project_id and self._client_email and self._private_key)

    async def access_token(self) -> str:
        if self._access_token and time.time() < self._expires_at - TOKEN_REFRESH_MARGIN_SECONDS:
            return self._access_token

        try:
            assertion = build_service_account_assertion(
                client_email=self._client_email,
                private_key_pem=self._private_key,
            )
        except JOSEError as e:
            raise ProviderError("fcm", "Invalid service account key", detail={"error": str(e)}) from e
        res = await self._http.post_form(
            url=GOOGLE_TOKEN_URL,
            form_body={
                "grant_type": "urn:ietf:params:oauth:grant-type:jwt-bearer",
                "assertion": assertion,
            },
        )
        token = res.detail.get("access_token") if res.ok else None
        if not token:
            raise ProviderError("fcm", "OAuth2 token exchange failed", detail={"status_code": res.status_code}, status_code=res.status_code)

        self._access_token = token
        self._expires_at = time.time() + int(res.detail.get("expires_in", ASSERTION_LIFETIME_SECONDS))
        return token

    async def send(self, *, token: str, title: str, body: str, data: Mapping[str, Any] | None = None) -> PushResult:
        if not self.configured:
            return PushResult(
                ok=False, unregistered=False, retryable=False, status_code=None, detail={},
                error_code="NOT_CONFIGURED", error_message="FCM service account not configured",
            )

        access = await self.access_token()
        res = await self._http.post_json(
            url=f"{FCM_API_BASE}/projects/{self._project_id}/messages:send",
            headers={"Authorization": f"Bearer {access}"},
            json_body=build_message(token=token, title=title, body=body, data=data),
        )
        if res.ok:
            return PushResult(ok=True, unregistered=False, retryable=False, status_code=res.status_code, detail=res.detail)

        unregistered = _is_unregistered(res)
        if res.status_code == 401:
            # cached token revoked or expired early
            self._access_token = None

        return PushResult(
            ok=False,
            unregistered=unregistered,
            retryable=res.retryable and not unregistered,
            status_code=res.status_code,
            detail=res.detail,
            error_code="UNREGISTERED" if unregistered else res.error_code,
            error_message=res.error_message,
        )
