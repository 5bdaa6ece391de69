from datetime import date
from decimal import Decimal

from pydantic import BaseModel, Field


class ListingCreate(BaseModel):
    departure: str = Field(min_length=1, max_length=120)
    arrival: str = Field(min_length=1, max_length=120)
    departure_date: date
    arrival_date: date | None = None
    available_kg: Decimal = Field(gt=0, max_digits=10, decimal_places=2)
    price_per_kg: Decimal = Field(gt=0, max_digits=14, decimal_places=2)
    currency: str = Field(default="EUR", min_length=3, max_length=3)
    delivery_option: str | None = Field(default=None, max_length=40)
    description: str | None = None


class ListingOut(BaseModel):
    id: str
    user_id: str
    departure: str
    arrival: str
    departure_date: date
    arrival_date: date | None
    available_kg: Decimal
    price_per_kg: Decimal
    currency: str
    delivery_option: str
    description: str | None
    status: str


class AvailableKgOut(BaseModel):
    listing_id: str
    total_kg: Decimal
    booked_kg: Decimal
    available_kg: Decimal


class TransportRequestCreate(BaseModel):
    departure: str = Field(min_length=1, max_length=120)
    arrival: str = Field(min_length=1, max_length=120)
    departure_date_start: date
    departure_date_end: date | None = None
    requested_kg: Decimal = Field(gt=0, max_digits=10, decimal_places=2)
    budget_max: Decimal | None = Field(default=None, gt=0, max_digits=14, decimal_places=2)
    currency: str = Field(default="EUR", min_length=3, max_length=3)
    description: str | None = None


class TransportRequestOut(BaseModel):
    id: str
    user_id: str
    departure: str
    arrival: str
    departure_date_start: date
    departure_date_end: date | None
    requested_kg: Decimal
    budget_max: Decimal | None
    currency: str
    description: str | None
    status: str
