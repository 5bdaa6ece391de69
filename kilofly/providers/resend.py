from __future__ import annotations

from typing import Any, Sequence

from kilofly.core.errors import ProviderError
from kilofly.services.http_client import ProviderHttpClient

RESEND_API_BASE = "https://api.resend.com"


class ResendClient:
    def __init__(self, *, http: ProviderHttpClient, api_key: str, sender: str, base_url: str = RESEND_API_BASE):
        self._http = http
        self._api_key = api_key
        self._sender = sender
        self._base = base_url.rstrip("/")

    async def send(
        self,
        *,
        to: list[str] | str,
        subject: str,
        html: str,
        attachments: Sequence[dict[str, str]] | None = None,
    ) -> dict[str, Any]:
        recipients = [to] if isinstance(to, str) else list(to)
        body: dict[str, Any] = {"from": self._sender, "to": recipients, "subject": subject, "html": html}
        if attachments:
            # each item: {"filename": ..., "content": <base64>}
            body["attachments"] = [dict(a) for a in attachments]
        res = await self._http.post_json(
            url=f"{self._base}/emails",
            headers={"Authorization": f"Bearer {self._api_key}"},
            json_body=body,
        )
        if not res.ok:
            raise ProviderError(
                "resend",
                str(res.detail.get("message") or res.error_message or "email send failed"),
                detail={"status_code": res.status_code},
                status_code=res.status_code,
            )
        return res.detail
