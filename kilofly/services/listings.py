from __future__ import annotations

from datetime import date
from decimal import Decimal

from fastapi import HTTPException
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from kilofly.models.listing import Listing, TransportRequest
from kilofly.models.outbox import OutboxEvent
from kilofly.services.auth import Actor
from kilofly.services.currency import LISTING_CURRENCIES


def _check_currency(currency: str) -> str:
    code = currency.upper()
    if code not in LISTING_CURRENCIES:
        raise HTTPException(status_code=400, detail=f"Unsupported listing currency: {currency}")
    return code


async def create_listing(db: AsyncSession, *, actor: Actor, data: dict) -> Listing:
    if data["available_kg"] <= 0:
        raise HTTPException(status_code=400, detail="available_kg must be positive")
    if data["price_per_kg"] <= 0:
        raise HTTPException(status_code=400, detail="price_per_kg must be positive")

    listing = Listing(
        user_id=actor.user_id,
        departure=data["departure"],
        arrival=data["arrival"],
        departure_date=data["departure_date"],
        arrival_date=data.get("arrival_date"),
        available_kg=data["available_kg"],
        price_per_kg=data["price_per_kg"],
        currency=_check_currency(data.get("currency") or "EUR"),
        delivery_option=data.get("delivery_option") or "hand_delivery",
        description=data.get("description"),
        status="active",
    )
    db.add(listing)
    await db.flush()

    # Alert fan-out runs in the worker after commit
    db.add(
        OutboxEvent(
            aggregate_type="listing",
            aggregate_id=listing.id,
            event_type="listing.created",
            payload={"listing_id": listing.id, "user_id": actor.user_id},
            status="pending",
        )
    )
    return listing


async def search_listings(
    db: AsyncSession,
    *,
    departure: str | None = None,
    arrival: str | None = None,
    from_date: date | None = None,
    limit: int = 50,
) -> list[Listing]:
    stmt = select(Listing).where(Listing.status == "active")
    if departure:
        stmt = stmt.where(Listing.departure.ilike(f"%{departure}%"))
    if arrival:
        stmt = stmt.where(Listing.arrival.ilike(f"%{arrival}%"))
    if from_date:
        stmt = stmt.where(Listing.departure_date >= from_date)
    stmt = stmt.order_by(Listing.departure_date.asc()).limit(limit)
    return list((await db.execute(stmt)).scalars().all())


async def close_listing(db: AsyncSession, *, actor: Actor, listing_id: str) -> Listing:
    listing = (await db.execute(select(Listing).where(Listing.id == listing_id))).scalar_one_or_none()
    if not listing:
        raise HTTPException(status_code=404, detail="Listing not found")
    if listing.user_id != actor.user_id and not actor.is_admin:
        raise HTTPException(status_code=403, detail="Forbidden")
    listing.status = "closed"
    return listing


async def create_transport_request(db: AsyncSession, *, actor: Actor, data: dict) -> TransportRequest:
    if data["requested_kg"] <= 0:
        raise HTTPException(status_code=400, detail="requested_kg must be positive")
    budget: Decimal | None = data.get("budget_max")
    if budget is not None and budget <= 0:
        raise HTTPException(status_code=400, detail="budget_max must be positive")

    req = TransportRequest(
        user_id=actor.user_id,
        departure=data["departure"],
        arrival=data["arrival"],
        departure_date_start=data["departure_date_start"],
        departure_date_end=data.get("departure_date_end"),
        requested_kg=data["requested_kg"],
        budget_max=budget,
        currency=_check_currency(data.get("currency") or "EUR"),
        description=data.get("description"),
        status="open",
    )
    db.add(req)
    await db.flush()

    db.add(
        OutboxEvent(
            aggregate_type="transport_request",
            aggregate_id=req.id,
            event_type="transport_request.created",
            payload={"transport_request_id": req.id, "user_id": actor.user_id},
            status="pending",
        )
    )
    return req


async def list_transport_requests(db: AsyncSession, *, limit: int = 50) -> list[TransportRequest]:
    stmt = (
        select(TransportRequest)
        .where(TransportRequest.status == "open")
        .order_by(TransportRequest.departure_date_start.asc())
        .limit(limit)
    )
    return list((await db.execute(stmt)).scalars().all())
