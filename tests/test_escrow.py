from decimal import Decimal

import pytest

from kilofly.services.escrow import compute_split, from_minor_units, to_minor_units


def test_split_eur_amount():
    s = compute_split(Decimal("100"), "EUR")
    assert s.base_amount == Decimal("100.00")
    assert s.buyer_fee == Decimal("5.00")
    assert s.buyer_total == Decimal("105.00")
    assert s.seller_amount == Decimal("95.00")
    assert s.platform_commission == Decimal("10.00")


def test_split_zero_decimal_currency_rounds_to_units():
    s = compute_split("15003", "xof")
    assert s.currency == "XOF"
    # 750.15 -> 750
    assert s.buyer_fee == Decimal("750")
    assert s.buyer_total == Decimal("15753")
    assert s.seller_amount == Decimal("14253")


def test_split_rounds_half_up_at_cents():
    s = compute_split("10.10", "EUR")
    # 0.505 -> 0.51
    assert s.buyer_fee == Decimal("0.51")
    assert s.platform_commission == Decimal("1.02")


def test_split_metadata_is_flat_strings():
    meta = compute_split(50, "EUR").metadata()
    assert meta["platform_commission"] == "5.00"
    assert all(isinstance(v, str) for v in meta.values())


@pytest.mark.parametrize("amount", ["0", "-5", 0.001])
def test_split_rejects_non_positive_amounts(amount):
    with pytest.raises(ValueError):
        compute_split(amount, "EUR")


def test_split_rejects_bad_rates():
    with pytest.raises(ValueError):
        compute_split(100, "EUR", buyer_rate=Decimal("1"))
    with pytest.raises(ValueError):
        compute_split(100, "EUR", seller_rate=Decimal("-0.01"))


def test_minor_units():
    assert to_minor_units(Decimal("105.00"), "EUR") == 10500
    assert to_minor_units("0.1", "usd") == 10
    assert to_minor_units(Decimal("15753"), "XOF") == 15753
    assert from_minor_units(10500, "EUR") == Decimal("105.00")
