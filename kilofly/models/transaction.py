from datetime import datetime
from decimal import Decimal

from sqlalchemy import ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import DateTime

from kilofly.core.ids import gen_id
from kilofly.models.base import Base, Money, TimestampMixin


class Transaction(TimestampMixin, Base):
    """Escrowed payment for one reservation."""

    __tablename__ = "transactions"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: gen_id("txn"))
    reservation_id: Mapped[str] = mapped_column(String, ForeignKey("reservations.id"), nullable=False, unique=True)
    listing_id: Mapped[str] = mapped_column(String, ForeignKey("listings.id"), nullable=False)
    buyer_id: Mapped[str] = mapped_column(String, ForeignKey("users.id"), nullable=False)
    seller_id: Mapped[str] = mapped_column(String, ForeignKey("users.id"), nullable=False)

    # amount is what the buyer pays (base + buyer fee)
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    base_amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    platform_commission: Mapped[Decimal] = mapped_column(Money, nullable=False)
    seller_amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    # "stripe" | "cinetpay"
    provider: Mapped[str] = mapped_column(String(30), nullable=False)
    # PaymentIntent id, Checkout Session id or CinetPay transaction id
    provider_reference: Mapped[str | None] = mapped_column(String(200), nullable=True, unique=True)

    status: Mapped[str] = mapped_column(String(30), nullable=False, default="pending")  # pending/completed/failed/cancelled
    payment_status: Mapped[str] = mapped_column(String(30), nullable=False, default="requires_payment")

    captured_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
