import pytest

from kilofly.services.payment_status import (
    PaymentNotCompleted,
    map_cinetpay_payment_status,
    map_cinetpay_transfer_status,
    map_stripe_intent_status,
    transaction_status_for,
)


def test_stripe_intent_mapping():
    assert map_stripe_intent_status("succeeded") == ("paid", "completed")
    assert map_stripe_intent_status("requires_capture") == ("authorized", "pending")


def test_stripe_unfinished_intent_raises():
    with pytest.raises(PaymentNotCompleted) as exc:
        map_stripe_intent_status("requires_payment_method")
    assert exc.value.status == "requires_payment_method"
    assert "requires_payment_method" in str(exc.value)


@pytest.mark.parametrize(
    "status,expected",
    [("ACCEPTED", "captured"), ("REFUSED", "failed"), ("CANCELLED", "failed"), ("WAITING_FOR_CUSTOMER", "pending"), (None, "pending")],
)
def test_cinetpay_payment_mapping(status, expected):
    assert map_cinetpay_payment_status(status) == expected


@pytest.mark.parametrize(
    "status,expected",
    [("00", "completed"), ("SUCCESS", "completed"), ("FAILED", "failed"), ("NEW", "pending"), (None, "pending")],
)
def test_cinetpay_transfer_mapping(status, expected):
    assert map_cinetpay_transfer_status(status) == expected


def test_transaction_status_for():
    assert transaction_status_for("captured") == "completed"
    assert transaction_status_for("paid") == "completed"
    assert transaction_status_for("authorized") == "pending"
    assert transaction_status_for("failed") == "failed"
    assert transaction_status_for("cancelled") == "cancelled"
