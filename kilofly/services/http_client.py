from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping, Literal

import httpx

log = logging.getLogger(__name__)

HttpMethod = Literal["GET", "POST", "PUT", "PATCH", "DELETE"]

RETRYABLE_STATUS = frozenset({408, 425, 429, 500, 502, 503, 504})


@dataclass(frozen=True)
class HttpResult:
    ok: bool
    status_code: int | None
    detail: dict[str, Any]

    error_code: str | None = None
    error_message: str | None = None
    retryable: bool = False
    retry_after_seconds: int | None = None

    elapsed_ms: int | None = None
    response_headers: dict[str, str] | None = None


def _is_json_response(resp: httpx.Response) -> bool:
    ct = (resp.headers.get("content-type") or "").lower()
    return "application/json" in ct or ct.endswith("+json")


def _cap_text(s: str, *, max_chars: int) -> str:
    if len(s) <= max_chars:
        return s
    return s[:max_chars] + f"...(truncated, {len(s)} chars)"


def _retry_after(resp: httpx.Response) -> int | None:
    # Only the delta-seconds form; HTTP-date values are ignored
    value = (resp.headers.get("retry-after") or "").strip()
    return int(value) if value.isdigit() else None


def _parse_body(resp: httpx.Response, max_chars: int) -> dict[str, Any]:
    if _is_json_response(resp):
        try:
            parsed = resp.json()
        except ValueError:
            return {"raw": _cap_text(resp.text, max_chars=max_chars)}
        return parsed if isinstance(parsed, dict) else {"data": parsed}
    return {"raw": _cap_text(resp.text, max_chars=max_chars), "content_type": resp.headers.get("content-type")}


class ProviderHttpClient:
    """
    Shared HTTP client for Stripe, CinetPay, FCM, Resend and the rate API.

    One pooled AsyncClient; no retries here (push deliveries are rescheduled
    by the worker, payment calls are retried by the user with the same
    Idempotency-Key). Transport errors never raise: every call returns an
    HttpResult classified as retryable or not.
    """

    def __init__(
        self,
        *,
        timeout_seconds: float = 20.0,
        max_response_body_chars: int = 20_000,
        default_headers: Mapping[str, str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._max_body = max_response_body_chars
        self._default_headers = dict(default_headers or {})
        self._client = httpx.AsyncClient(timeout=httpx.Timeout(timeout_seconds), transport=transport)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def request_json(
        self,
        *,
        method: HttpMethod,
        url: str,
        headers: Mapping[str, str] | None = None,
        params: Mapping[str, str] | None = None,
        json_body: dict[str, Any] | None = None,
        form_body: Mapping[str, str] | None = None,
        request_id: str | None = None,
    ) -> HttpResult:
        h = {**self._default_headers, **dict(headers or {})}
        if request_id and "X-Request-Id" not in h:
            h["X-Request-Id"] = request_id

        try:
            resp = await self._client.request(
                method=method,
                url=url,
                headers=h,
                params=dict(params or {}),
                json=json_body,
                data=dict(form_body) if form_body is not None else None,
            )
        except httpx.TimeoutException as e:
            log.warning("%s %s timed out", method, url)
            return HttpResult(
                ok=False, status_code=None, detail={"error": "timeout"},
                error_code="TIMEOUT", error_message=str(e), retryable=True,
            )
        except httpx.RequestError as e:
            log.warning("%s %s failed: %s", method, url, type(e).__name__)
            return HttpResult(
                ok=False, status_code=None, detail={"error": "request_error"},
                error_code="REQUEST_ERROR", error_message=str(e), retryable=True,
            )

        detail = _parse_body(resp, self._max_body)
        elapsed_ms = int(resp.elapsed.total_seconds() * 1000) if resp.elapsed else None
        response_headers = {
            "content-type": resp.headers.get("content-type", ""),
            "retry-after": resp.headers.get("retry-after", ""),
            "request-id": resp.headers.get("request-id", ""),
        }

        if resp.is_success:
            return HttpResult(
                ok=True,
                status_code=resp.status_code,
                detail=detail,
                elapsed_ms=elapsed_ms,
                response_headers=response_headers,
            )

        log.info("%s %s -> HTTP %d", method, url, resp.status_code)
        return HttpResult(
            ok=False,
            status_code=resp.status_code,
            detail=detail,
            error_code=f"HTTP_{resp.status_code}",
            error_message=f"HTTP {resp.status_code}",
            retryable=resp.status_code in RETRYABLE_STATUS,
            retry_after_seconds=_retry_after(resp),
            elapsed_ms=elapsed_ms,
            response_headers=response_headers,
        )

    async def get_json(self, *, url: str, headers: Mapping[str, str] | None = None, params: Mapping[str, str] | None = None, request_id: str | None = None) -> HttpResult:
        return await self.request_json(method="GET", url=url, headers=headers, params=params, request_id=request_id)

    async def post_json(self, *, url: str, headers: Mapping[str, str] | None = None, params: Mapping[str, str] | None = None, json_body: dict[str, Any] | None = None, request_id: str | None = None) -> HttpResult:
        return await self.request_json(method="POST", url=url, headers=headers, params=params, json_body=json_body, request_id=request_id)

    async def post_form(self, *, url: str, headers: Mapping[str, str] | None = None, form_body: Mapping[str, str] | None = None, request_id: str | None = None) -> HttpResult:
        return await self.request_json(method="POST", url=url, headers=headers, form_body=form_body, request_id=request_id)
