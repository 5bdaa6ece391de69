from __future__ import annotations

from kilofly.core.errors import ProviderError
from kilofly.services.http_client import ProviderHttpClient


class ExchangeRateApiClient:
    """exchangerate-api.com latest rates (EUR based)."""

    def __init__(self, *, http: ProviderHttpClient, url: str):
        self._http = http
        self._url = url

    async def latest(self) -> dict[str, float]:
        res = await self._http.get_json(url=self._url)
        if not res.ok:
            raise ProviderError("exchangerate-api", res.error_message or "rate fetch failed", status_code=res.status_code)
        rates = res.detail.get("rates")
        if not isinstance(rates, dict):
            raise ProviderError("exchangerate-api", "response has no rates")
        return {str(k).upper(): float(v) for k, v in rates.items()}
