from decimal import Decimal

from kilofly.models.exchange_rate import ExchangeRate
from kilofly.services.currency import (
    FALLBACK_EUR_RATES,
    SUPPORTED_CURRENCIES,
    build_rate_table,
    currency_for_country,
    format_price,
    get_exchange_rate,
    merge_with_fallback,
    pivot_rate,
    refresh_exchange_rates,
)


def test_pivot_rate_goes_through_eur():
    assert pivot_rate("EUR", "XOF", FALLBACK_EUR_RATES) == Decimal("656")
    assert pivot_rate("XOF", "EUR", FALLBACK_EUR_RATES) == Decimal("0.0015243902")
    # 656 / 1.08
    assert pivot_rate("USD", "XOF", FALLBACK_EUR_RATES) == Decimal("607.4074074074")


def test_rate_table_covers_every_pair():
    table = build_rate_table(FALLBACK_EUR_RATES)
    assert len(table) == len(SUPPORTED_CURRENCIES) ** 2 == 144
    assert ("EUR", "EUR", Decimal(1)) in table


def test_merge_with_fallback_fills_gaps():
    rates = merge_with_fallback({"USD": 1.1, "XOF": 0})
    assert rates["EUR"] == 1
    assert rates["USD"] == Decimal("1.1")
    assert rates["XOF"] == Decimal("656")
    assert set(rates) == set(SUPPORTED_CURRENCIES)


def test_format_price():
    assert format_price(Decimal("1234.5"), "EUR") == "1\u202f234,50€"
    assert format_price(15000, "XOF") == "15\u202f000 CFA"
    assert format_price(20, "USD") == "$20,00"
    assert format_price(1234.5, "EUR", show_symbol=False) == "1\u202f234,50"


def test_currency_for_country():
    assert currency_for_country("sn") == "XOF"
    assert currency_for_country(None) == "EUR"
    assert currency_for_country("ZZ", default="USD") == "USD"


async def test_get_exchange_rate_prefers_stored_rate(db_session):
    assert await get_exchange_rate(db_session, "EUR", "XOF") == Decimal("656")
    assert await get_exchange_rate(db_session, "xof", "XOF") == 1

    db_session.add(ExchangeRate(base_currency="EUR", target_currency="XOF", rate=Decimal("655.957")))
    await db_session.flush()
    assert await get_exchange_rate(db_session, "EUR", "XOF") == Decimal("655.957")


class FakeRateApi:
    async def latest(self):
        return {"USD": 1.2, "XOF": 655.957, "GBP": None}


async def test_refresh_stores_all_pairs(db_session):
    out = await refresh_exchange_rates(db_session, FakeRateApi())
    await db_session.commit()
    assert out["pairs"] == 144
    assert out["eur_rates"]["GBP"] == "0.84"
    assert await get_exchange_rate(db_session, "EUR", "USD") == Decimal("1.2")

    # second run updates in place
    out = await refresh_exchange_rates(db_session, FakeRateApi())
    assert out["pairs"] == 144


async def test_convert_endpoint(client):
    r = await client.get("/v1/exchange-rates/convert", params={"amount": "100", "from": "EUR", "to": "XOF"})
    assert r.status_code == 200, r.text
    body = r.json()
    assert Decimal(body["converted"]) == Decimal("65600")
    assert body["formatted"] == "65\u202f600 CFA"

    r = await client.get("/v1/exchange-rates/convert", params={"amount": "abc", "from": "EUR", "to": "XOF"})
    assert r.status_code == 400
    r = await client.get("/v1/exchange-rates/convert", params={"amount": "1", "from": "EUR", "to": "JPY"})
    assert r.status_code == 400
