from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from kilofly.core.db import get_db
from kilofly.models.listing import Listing
from kilofly.schemas.listing import AvailableKgOut, ListingCreate, ListingOut
from kilofly.services.auth import Actor, get_actor
from kilofly.services.listings import close_listing, create_listing, search_listings
from kilofly.services.reservations import available_kg, booked_kg, get_listing_or_404

router = APIRouter()


def _listing_out(r: Listing) -> ListingOut:
    return ListingOut(
        id=r.id,
        user_id=r.user_id,
        departure=r.departure,
        arrival=r.arrival,
        departure_date=r.departure_date,
        arrival_date=r.arrival_date,
        available_kg=r.available_kg,
        price_per_kg=r.price_per_kg,
        currency=r.currency,
        delivery_option=r.delivery_option,
        description=r.description,
        status=r.status,
    )


@router.post("/listings", response_model=ListingOut, status_code=201)
async def post_listing(
    payload: ListingCreate,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
) -> ListingOut:
    listing = await create_listing(db, actor=actor, data=payload.model_dump())
    await db.commit()
    return _listing_out(listing)


@router.get("/listings", response_model=list[ListingOut])
async def list_listings(
    departure: str | None = Query(default=None),
    arrival: str | None = Query(default=None),
    from_date: date | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
) -> list[ListingOut]:
    rows = await search_listings(db, departure=departure, arrival=arrival, from_date=from_date, limit=limit)
    return [_listing_out(r) for r in rows]


@router.get("/listings/{listing_id}", response_model=ListingOut)
async def get_listing(listing_id: str, db: AsyncSession = Depends(get_db)) -> ListingOut:
    listing = (await db.execute(select(Listing).where(Listing.id == listing_id))).scalar_one_or_none()
    if not listing:
        raise HTTPException(status_code=404, detail="Listing not found")
    return _listing_out(listing)


@router.post("/listings/{listing_id}/close", response_model=ListingOut)
async def post_close_listing(
    listing_id: str,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
) -> ListingOut:
    listing = await close_listing(db, actor=actor, listing_id=listing_id)
    await db.commit()
    return _listing_out(listing)


@router.get("/listings/{listing_id}/available-kg", response_model=AvailableKgOut)
async def get_available_kg(listing_id: str, db: AsyncSession = Depends(get_db)) -> AvailableKgOut:
    listing = await get_listing_or_404(db, listing_id)
    return AvailableKgOut(
        listing_id=listing.id,
        total_kg=listing.available_kg,
        booked_kg=await booked_kg(db, listing.id),
        available_kg=await available_kg(db, listing),
    )
