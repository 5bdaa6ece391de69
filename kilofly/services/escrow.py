"""
Escrow split: the platform holds the buyer's payment until delivery and
keeps a commission on both sides of the trade.

    buyer_fee           = round(amount * buyer_rate)
    seller_fee          = round(amount * seller_rate)
    buyer_total         = amount + buyer_fee
    seller_amount       = amount - seller_fee
    platform_commission = buyer_fee + seller_fee

Rounding is half-up at the currency's minor unit: cents for EUR/USD,
whole units for zero-decimal currencies such as XOF.
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

DEFAULT_BUYER_RATE = Decimal("0.05")
DEFAULT_SELLER_RATE = Decimal("0.05")

# ISO 4217 currencies without a minor unit (as Stripe and CinetPay treat them)
ZERO_DECIMAL_CURRENCIES = frozenset({
    "BIF", "CLP", "DJF", "GNF", "JPY", "KMF", "KRW", "MGA",
    "PYG", "RWF", "UGX", "VND", "VUV", "XAF", "XOF", "XPF",
})


def minor_unit_exponent(currency: str) -> int:
    return 0 if currency.upper() in ZERO_DECIMAL_CURRENCIES else 2


def _as_decimal(value: Decimal | int | float | str) -> Decimal:
    if isinstance(value, Decimal):
        return value
    # str() first so 0.1 stays 0.1 instead of its binary expansion
    return Decimal(str(value))


def quantize_amount(amount: Decimal | int | float | str, currency: str) -> Decimal:
    exp = minor_unit_exponent(currency)
    step = Decimal(1).scaleb(-exp)
    return _as_decimal(amount).quantize(step, rounding=ROUND_HALF_UP)


def to_minor_units(amount: Decimal | int | float | str, currency: str) -> int:
    exp = minor_unit_exponent(currency)
    return int(quantize_amount(amount, currency).scaleb(exp))


def from_minor_units(units: int, currency: str) -> Decimal:
    exp = minor_unit_exponent(currency)
    return quantize_amount(Decimal(units).scaleb(-exp), currency)


@dataclass(frozen=True)
class EscrowSplit:
    currency: str
    base_amount: Decimal
    buyer_fee: Decimal
    seller_fee: Decimal
    buyer_total: Decimal
    seller_amount: Decimal
    platform_commission: Decimal

    def metadata(self) -> dict[str, str]:
        # Flat string map, the shape provider metadata fields accept
        return {
            "currency": self.currency,
            "base_amount": str(self.base_amount),
            "buyer_fee": str(self.buyer_fee),
            "seller_fee": str(self.seller_fee),
            "platform_commission": str(self.platform_commission),
            "seller_amount": str(self.seller_amount),
        }


def compute_split(
    amount: Decimal | int | float | str,
    currency: str,
    *,
    buyer_rate: Decimal | None = None,
    seller_rate: Decimal | None = None,
) -> EscrowSplit:
    currency = currency.upper()
    buyer_rate = DEFAULT_BUYER_RATE if buyer_rate is None else _as_decimal(buyer_rate)
    seller_rate = DEFAULT_SELLER_RATE if seller_rate is None else _as_decimal(seller_rate)

    for rate in (buyer_rate, seller_rate):
        if rate < 0 or rate >= 1:
            raise ValueError(f"commission rate out of range: {rate}")

    base = quantize_amount(amount, currency)
    if base <= 0:
        raise ValueError("amount must be positive")

    buyer_fee = quantize_amount(base * buyer_rate, currency)
    seller_fee = quantize_amount(base * seller_rate, currency)

    return EscrowSplit(
        currency=currency,
        base_amount=base,
        buyer_fee=buyer_fee,
        seller_fee=seller_fee,
        buyer_total=base + buyer_fee,
        seller_amount=base - seller_fee,
        platform_commission=buyer_fee + seller_fee,
    )
