"""Provider status strings -> internal payment/ledger statuses."""
from __future__ import annotations

# payment_status values that mean the buyer's money is held or taken
PAID_PAYMENT_STATUSES = ("captured", "authorized", "paid")


class PaymentNotCompleted(Exception):
    def __init__(self, status: str):
        super().__init__(f"Payment not completed. Status: {status}")
        self.status = status


def map_stripe_intent_status(status: str) -> tuple[str, str]:
    """Returns (payment_status, transaction_status)."""
    if status == "succeeded":
        return "paid", "completed"
    if status == "requires_capture":
        return "authorized", "pending"
    raise PaymentNotCompleted(status)


def map_cinetpay_payment_status(status: str | None) -> str:
    if status == "ACCEPTED":
        return "captured"
    if status in ("REFUSED", "CANCELLED"):
        return "failed"
    return "pending"


def map_cinetpay_transfer_status(status: str | None) -> str:
    if status in ("00", "ACCEPTED", "SUCCESS"):
        return "completed"
    if status in ("REFUSED", "FAILED", "CANCELLED"):
        return "failed"
    return "pending"


def transaction_status_for(payment_status: str) -> str:
    if payment_status in ("captured", "paid"):
        return "completed"
    if payment_status == "failed":
        return "failed"
    if payment_status == "cancelled":
        return "cancelled"
    return "pending"
