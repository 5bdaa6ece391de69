from decimal import Decimal

from sqlalchemy import CheckConstraint, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from kilofly.core.ids import gen_id
from kilofly.models.base import Base, JSONType, Money, TimestampMixin


class Wallet(TimestampMixin, Base):
    __tablename__ = "wallets"
    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_wallet_balance_non_negative"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: gen_id("wal"))
    user_id: Mapped[str] = mapped_column(String, ForeignKey("users.id"), nullable=False, unique=True)
    balance: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="XOF")


class WalletTransaction(TimestampMixin, Base):
    __tablename__ = "wallet_transactions"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: gen_id("wtx"))
    wallet_id: Mapped[str] = mapped_column(String, ForeignKey("wallets.id"), nullable=False, index=True)

    type: Mapped[str] = mapped_column(String(20), nullable=False)  # credit/debit
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    status: Mapped[str] = mapped_column(String(30), nullable=False, default="pending")  # pending/completed/failed

    provider: Mapped[str | None] = mapped_column(String(30), nullable=True)  # manual/cinetpay/escrow
    payout_method: Mapped[str | None] = mapped_column(String(30), nullable=True)  # wave/orange_money
    phone_number: Mapped[str | None] = mapped_column(String(40), nullable=True)

    reference: Mapped[str | None] = mapped_column(String(80), nullable=True, unique=True)
    external_id: Mapped[str | None] = mapped_column(String(200), nullable=True, index=True)
    reservation_id: Mapped[str | None] = mapped_column(String, ForeignKey("reservations.id"), nullable=True)

    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    details: Mapped[dict] = mapped_column("metadata", JSONType, nullable=False, default=dict)
