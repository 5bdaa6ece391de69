from decimal import Decimal

from pydantic import BaseModel, Field


class ReservationCreate(BaseModel):
    requested_kg: Decimal = Field(gt=0, max_digits=10, decimal_places=2)
    item_description: str = Field(default="", max_length=2000)


class ReservationOut(BaseModel):
    id: str
    listing_id: str
    buyer_id: str
    seller_id: str
    requested_kg: Decimal
    total_price: Decimal
    item_description: str
    status: str


class CancelReservationOut(BaseModel):
    success: bool
    reservation_id: str
    status: str


class TrackingEventOut(BaseModel):
    id: str
    reservation_id: str
    status: str
    description: str | None
    is_automatic: bool
    created_by: str | None
    created_at: str
