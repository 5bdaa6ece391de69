"""Process-wide provider clients, created on first use and closed at shutdown."""
from __future__ import annotations

from kilofly.core.config import settings
from kilofly.providers.cinetpay import CinetPayClient
from kilofly.providers.exchange_rates import ExchangeRateApiClient
from kilofly.providers.fcm import FcmClient
from kilofly.providers.resend import ResendClient
from kilofly.providers.stripe import StripeClient
from kilofly.services.http_client import ProviderHttpClient

_http: ProviderHttpClient | None = None
_stripe: StripeClient | None = None
_cinetpay: CinetPayClient | None = None
_fcm: FcmClient | None = None
_resend: ResendClient | None = None
_rates: ExchangeRateApiClient | None = None


def _shared_http() -> ProviderHttpClient:
    global _http
    if _http is None:
        _http = ProviderHttpClient(default_headers={"User-Agent": f"{settings.service_name}/0.1"})
    return _http


def get_stripe_client() -> StripeClient:
    global _stripe
    if _stripe is None:
        _stripe = StripeClient(http=_shared_http(), secret_key=settings.stripe_secret_key.get_secret_value())
    return _stripe


def get_cinetpay_client() -> CinetPayClient:
    global _cinetpay
    if _cinetpay is None:
        _cinetpay = CinetPayClient(
            http=_shared_http(),
            api_key=settings.cinetpay_api_key.get_secret_value(),
            site_id=settings.cinetpay_site_id,
            base_url=settings.cinetpay_base_url,
        )
    return _cinetpay


def get_fcm_client() -> FcmClient:
    global _fcm
    if _fcm is None:
        _fcm = FcmClient(
            http=_shared_http(),
            project_id=settings.fcm_project_id,
            client_email=settings.fcm_client_email,
            private_key=settings.fcm_private_key.get_secret_value(),
        )
    return _fcm


def get_resend_client() -> ResendClient:
    global _resend
    if _resend is None:
        _resend = ResendClient(
            http=_shared_http(),
            api_key=settings.resend_api_key.get_secret_value(),
            sender=settings.email_from,
        )
    return _resend


def get_exchange_rate_client() -> ExchangeRateApiClient:
    global _rates
    if _rates is None:
        _rates = ExchangeRateApiClient(http=_shared_http(), url=settings.exchange_rates_url)
    return _rates


async def close_clients() -> None:
    global _http, _stripe, _cinetpay, _fcm, _resend, _rates
    if _http is not None:
        await _http.aclose()
    _http = _stripe = _cinetpay = _fcm = _resend = _rates = None
