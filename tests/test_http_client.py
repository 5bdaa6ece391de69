import httpx

from kilofly.services.http_client import ProviderHttpClient


async def _call(handler, **kwargs):
    http = ProviderHttpClient(transport=httpx.MockTransport(handler))
    try:
        return await http.post_json(url="https://provider.test/x", json_body={"a": 1}, **kwargs)
    finally:
        await http.aclose()


async def test_success_parses_json():
    res = await _call(lambda r: httpx.Response(200, json={"ok": 1}))
    assert res.ok is True
    assert res.detail == {"ok": 1}


async def test_non_dict_json_is_wrapped():
    res = await _call(lambda r: httpx.Response(200, json=[1, 2]))
    assert res.detail == {"data": [1, 2]}


async def test_rate_limited_is_retryable_with_retry_after():
    res = await _call(lambda r: httpx.Response(429, headers={"Retry-After": "12"}, json={}))
    assert res.ok is False
    assert res.retryable is True
    assert res.retry_after_seconds == 12
    assert res.error_code == "HTTP_429"


async def test_client_errors_are_not_retryable():
    res = await _call(lambda r: httpx.Response(400, text="bad request"))
    assert res.retryable is False
    assert res.detail["raw"] == "bad request"


async def test_transport_errors_become_results():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    res = await _call(handler)
    assert res.ok is False
    assert res.status_code is None
    assert res.error_code == "REQUEST_ERROR"
    assert res.retryable is True


async def test_request_id_header_is_forwarded():
    seen = {}

    def handler(request):
        seen["rid"] = request.headers.get("x-request-id")
        return httpx.Response(204)

    await _call(handler, request_id="req-1")
    assert seen["rid"] == "req-1"
