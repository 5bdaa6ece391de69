from datetime import date
from decimal import Decimal

from sqlalchemy import Date, ForeignKey, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from kilofly.core.ids import gen_id
from kilofly.models.base import Base, Money, TimestampMixin


class Listing(TimestampMixin, Base):
    """A traveler's trip with luggage capacity for sale."""

    __tablename__ = "listings"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: gen_id("lst"))
    user_id: Mapped[str] = mapped_column(String, ForeignKey("users.id"), nullable=False, index=True)

    departure: Mapped[str] = mapped_column(String(120), nullable=False)
    arrival: Mapped[str] = mapped_column(String(120), nullable=False)
    departure_date: Mapped[date] = mapped_column(Date, nullable=False)
    arrival_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    available_kg: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    price_per_kg: Mapped[Decimal] = mapped_column(Money, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="EUR")

    delivery_option: Mapped[str] = mapped_column(String(40), nullable=False, default="hand_delivery")
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    # "active" | "closed"
    status: Mapped[str] = mapped_column(String(30), nullable=False, default="active")


class TransportRequest(TimestampMixin, Base):
    """A sender looking for a traveler on a route."""

    __tablename__ = "transport_requests"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: gen_id("trq"))
    user_id: Mapped[str] = mapped_column(String, ForeignKey("users.id"), nullable=False, index=True)

    departure: Mapped[str] = mapped_column(String(120), nullable=False)
    arrival: Mapped[str] = mapped_column(String(120), nullable=False)
    departure_date_start: Mapped[date] = mapped_column(Date, nullable=False)
    departure_date_end: Mapped[date | None] = mapped_column(Date, nullable=True)

    requested_kg: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    budget_max: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="EUR")
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    # "open" | "matched" | "closed"
    status: Mapped[str] = mapped_column(String(30), nullable=False, default="open")
