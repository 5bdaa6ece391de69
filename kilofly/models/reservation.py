from datetime import datetime
from decimal import Decimal

from sqlalchemy import Boolean, ForeignKey, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func
from sqlalchemy.types import DateTime

from kilofly.core.ids import gen_id
from kilofly.models.base import Base, Money, TimestampMixin


class Reservation(TimestampMixin, Base):
    __tablename__ = "reservations"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: gen_id("rsv"))
    listing_id: Mapped[str] = mapped_column(String, ForeignKey("listings.id"), nullable=False, index=True)
    buyer_id: Mapped[str] = mapped_column(String, ForeignKey("users.id"), nullable=False, index=True)
    seller_id: Mapped[str] = mapped_column(String, ForeignKey("users.id"), nullable=False, index=True)

    requested_kg: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    total_price: Mapped[Decimal] = mapped_column(Money, nullable=False)
    item_description: Mapped[str] = mapped_column(Text, nullable=False, default="")

    # pending/approved/rejected/in_progress/delivered/cancelled
    status: Mapped[str] = mapped_column(String(30), nullable=False, default="pending")


class TrackingEvent(Base):
    __tablename__ = "tracking_events"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: gen_id("trk"))
    reservation_id: Mapped[str] = mapped_column(String, ForeignKey("reservations.id"), nullable=False, index=True)

    status: Mapped[str] = mapped_column(String(30), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_automatic: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_by: Mapped[str | None] = mapped_column(String, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
