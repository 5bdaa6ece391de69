"""
Currencies, exchange rates and price formatting.

Rates are stored for every (base, target) pair of supported currencies and
are always derived through EUR: rate(base, target) = eur[target] / eur[base].
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from kilofly.models.exchange_rate import ExchangeRate

log = logging.getLogger(__name__)

PIVOT = "EUR"

# Currencies a listing can be priced in
LISTING_CURRENCIES = ("EUR", "USD", "XOF")

SUPPORTED_CURRENCIES = ("EUR", "USD", "XOF", "CAD", "GBP", "GNF", "MAD", "NGN", "XAF", "CDF", "DZD", "CHF")

CURRENCY_SYMBOLS = {
    "EUR": "€",
    "USD": "$",
    "XOF": "CFA",
    "CAD": "CA$",
    "GBP": "£",
    "GNF": "GNF",
    "MAD": "DH",
    "NGN": "₦",
    "XAF": "FCFA",
    "CDF": "FC",
    "DZD": "DA",
    "CHF": "CHF",
}

CURRENCY_NAMES = {
    "EUR": "Euro",
    "USD": "US Dollar",
    "XOF": "Franc CFA (UEMOA)",
    "CAD": "Dollar canadien",
    "GBP": "Livre sterling",
    "GNF": "Franc guinéen",
    "MAD": "Dirham marocain",
    "NGN": "Naira nigérian",
    "XAF": "Franc CFA (CEMAC)",
    "CDF": "Franc congolais",
    "DZD": "Dinar algérien",
    "CHF": "Franc suisse",
}

COUNTRY_CURRENCY_MAP = {
    # Europe
    "FR": "EUR", "BE": "EUR", "DE": "EUR", "ES": "EUR", "IT": "EUR", "PT": "EUR",
    "NL": "EUR", "AT": "EUR", "IE": "EUR", "GR": "EUR", "FI": "EUR",
    "GB": "GBP",
    "CH": "CHF",
    # North America
    "US": "USD",
    "CA": "CAD",
    # UEMOA
    "SN": "XOF", "CI": "XOF", "ML": "XOF", "BF": "XOF", "NE": "XOF", "TG": "XOF", "BJ": "XOF",
    # CEMAC
    "CM": "XAF", "GA": "XAF", "CG": "XAF",
    # Other Africa
    "GN": "GNF",
    "MA": "MAD",
    "NG": "NGN",
    "CD": "CDF",
    "DZ": "DZD",
}

# EUR-based rates used when the API omits a currency or the table is empty
FALLBACK_EUR_RATES = {
    "EUR": Decimal("1"),
    "USD": Decimal("1.08"),
    "XOF": Decimal("656"),
    "CAD": Decimal("1.50"),
    "GBP": Decimal("0.84"),
    "GNF": Decimal("9200"),
    "MAD": Decimal("10.8"),
    "NGN": Decimal("1650"),
    "XAF": Decimal("656"),
    "CDF": Decimal("2800"),
    "DZD": Decimal("145"),
    "CHF": Decimal("0.94"),
}

# Shown without decimals, symbol after the amount
NO_DECIMAL_DISPLAY = frozenset({"XOF", "XAF", "GNF", "NGN", "CDF", "DZD"})

RATE_PRECISION = Decimal("0.0000000001")

# fr-FR thousands separator (narrow no-break space)
GROUP_SEP = "\u202f"
DECIMAL_SEP = ","


def currency_for_country(country_code: str | None, default: str = "EUR") -> str:
    if not country_code:
        return default
    return COUNTRY_CURRENCY_MAP.get(country_code.upper(), default)


def pivot_rate(base: str, target: str, eur_rates: dict[str, Decimal]) -> Decimal:
    base_to_eur = Decimal(1) / eur_rates[base]
    return (base_to_eur * eur_rates[target]).quantize(RATE_PRECISION, rounding=ROUND_HALF_UP)


def build_rate_table(eur_rates: dict[str, Decimal]) -> list[tuple[str, str, Decimal]]:
    return [
        (base, target, Decimal(1) if base == target else pivot_rate(base, target, eur_rates))
        for base in SUPPORTED_CURRENCIES
        for target in SUPPORTED_CURRENCIES
    ]


def merge_with_fallback(api_rates: dict[str, float]) -> dict[str, Decimal]:
    eur_rates: dict[str, Decimal] = {PIVOT: Decimal(1)}
    for code in SUPPORTED_CURRENCIES:
        if code == PIVOT:
            continue
        value = api_rates.get(code)
        eur_rates[code] = Decimal(str(value)) if value else FALLBACK_EUR_RATES[code]
    return eur_rates


async def upsert_rates(db: AsyncSession, table: list[tuple[str, str, Decimal]]) -> int:
    existing = {
        (r.base_currency, r.target_currency): r
        for r in (await db.execute(select(ExchangeRate))).scalars().all()
    }
    now = datetime.now(timezone.utc)
    for base, target, rate in table:
        row = existing.get((base, target))
        if row is None:
            db.add(ExchangeRate(base_currency=base, target_currency=target, rate=rate, last_updated=now))
        else:
            row.rate = rate
            row.last_updated = now
    await db.flush()
    return len(table)


async def refresh_exchange_rates(db: AsyncSession, client) -> dict:
    """Fetch EUR rates, fill gaps from the fallback table, store every pair."""
    api_rates = await client.latest()
    eur_rates = merge_with_fallback(api_rates)
    log.info("exchange rates fetched: %s", {k: str(v) for k, v in eur_rates.items()})

    table = build_rate_table(eur_rates)
    count = await upsert_rates(db, table)
    return {
        "success": True,
        "pairs": count,
        "eur_rates": {k: str(v) for k, v in eur_rates.items()},
        "updated_at": datetime.now(timezone.utc).isoformat(),
    }


async def get_exchange_rate(db: AsyncSession, base: str, target: str) -> Decimal:
    base, target = base.upper(), target.upper()
    if base == target:
        return Decimal(1)

    stmt = select(ExchangeRate.rate).where(
        ExchangeRate.base_currency == base,
        ExchangeRate.target_currency == target,
    )
    rate = (await db.execute(stmt)).scalar_one_or_none()
    if rate is not None:
        return Decimal(rate)

    if base in FALLBACK_EUR_RATES and target in FALLBACK_EUR_RATES:
        log.warning("no stored rate for %s->%s, using fallback", base, target)
        return pivot_rate(base, target, FALLBACK_EUR_RATES)

    log.warning("unsupported currency pair %s->%s", base, target)
    return Decimal(1)


async def convert(db: AsyncSession, amount: Decimal, from_currency: str, to_currency: str) -> Decimal:
    if from_currency.upper() == to_currency.upper():
        return amount
    rate = await get_exchange_rate(db, from_currency, to_currency)
    return amount * rate


def _group_fr(value: Decimal, decimals: int) -> str:
    q = value.quantize(Decimal(1).scaleb(-decimals), rounding=ROUND_HALF_UP)
    sign = "-" if q < 0 else ""
    text = format(abs(q), "f")
    int_part, _, frac = text.partition(".")

    groups = []
    while len(int_part) > 3:
        groups.insert(0, int_part[-3:])
        int_part = int_part[:-3]
    groups.insert(0, int_part)

    out = sign + GROUP_SEP.join(groups)
    if decimals > 0:
        out += DECIMAL_SEP + frac
    return out


def format_price(amount, currency: str, *, show_symbol: bool = True, decimals: int = 2) -> str:
    """
    format_price(1234.5, "EUR")  -> '1 234,50€'
    format_price(15000, "XOF")   -> '15 000 CFA'
    format_price(20, "USD")      -> '$20,00'
    """
    value = amount if isinstance(amount, Decimal) else Decimal(str(amount))
    currency = currency.upper()

    if not show_symbol:
        return _group_fr(value, decimals)

    symbol = CURRENCY_SYMBOLS.get(currency, currency)
    if currency in NO_DECIMAL_DISPLAY:
        return f"{_group_fr(value, 0)} {symbol}"
    if currency == "EUR":
        return f"{_group_fr(value, decimals)}{symbol}"
    return f"{symbol}{_group_fr(value, decimals)}"
