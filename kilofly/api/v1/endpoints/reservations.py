from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from kilofly.core.db import get_db
from kilofly.models.reservation import Reservation
from kilofly.providers.registry import get_stripe_client
from kilofly.providers.stripe import StripeClient
from kilofly.schemas.reservation import (
    CancelReservationOut,
    ReservationCreate,
    ReservationOut,
    TrackingEventOut,
)
from kilofly.services import payments as payment_service
from kilofly.services import reservations as reservation_service
from kilofly.services.auth import Actor, get_actor

router = APIRouter()


def _reservation_out(r: Reservation) -> ReservationOut:
    return ReservationOut(
        id=r.id,
        listing_id=r.listing_id,
        buyer_id=r.buyer_id,
        seller_id=r.seller_id,
        requested_kg=r.requested_kg,
        total_price=r.total_price,
        item_description=r.item_description,
        status=r.status,
    )


@router.post("/listings/{listing_id}/reservations", response_model=ReservationOut, status_code=201)
async def create_reservation(
    listing_id: str,
    payload: ReservationCreate,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
) -> ReservationOut:
    reservation = await reservation_service.create_reservation(
        db,
        actor=actor,
        listing_id=listing_id,
        requested_kg=payload.requested_kg,
        item_description=payload.item_description,
    )
    resp = _reservation_out(reservation)
    await db.commit()
    return resp


@router.get("/reservations/{reservation_id}", response_model=ReservationOut)
async def get_reservation(
    reservation_id: str,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
) -> ReservationOut:
    reservation = await reservation_service.get_reservation_or_404(db, reservation_id)
    reservation_service.assert_party(actor, reservation)
    return _reservation_out(reservation)


@router.post("/reservations/{reservation_id}/approve", response_model=ReservationOut)
async def approve_reservation(
    reservation_id: str,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
) -> ReservationOut:
    reservation = await reservation_service.approve_reservation(db, actor=actor, reservation_id=reservation_id)
    resp = _reservation_out(reservation)
    await db.commit()
    return resp


@router.post("/reservations/{reservation_id}/reject", response_model=ReservationOut)
async def reject_reservation(
    reservation_id: str,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
) -> ReservationOut:
    reservation = await reservation_service.reject_reservation(db, actor=actor, reservation_id=reservation_id)
    resp = _reservation_out(reservation)
    await db.commit()
    return resp


@router.post("/reservations/{reservation_id}/cancel", response_model=CancelReservationOut)
async def cancel_reservation(
    reservation_id: str,
    actor: Actor = Depends(get_actor),
    stripe: StripeClient = Depends(get_stripe_client),
    db: AsyncSession = Depends(get_db),
) -> CancelReservationOut:
    reservation = await reservation_service.cancel_reservation(db, actor=actor, reservation_id=reservation_id, stripe=stripe)
    await db.commit()
    return CancelReservationOut(success=True, reservation_id=reservation.id, status="cancelled")


@router.get("/reservations/{reservation_id}/tracking", response_model=list[TrackingEventOut])
async def get_tracking(
    reservation_id: str,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
) -> list[TrackingEventOut]:
    reservation = await reservation_service.get_reservation_or_404(db, reservation_id)
    reservation_service.assert_party(actor, reservation)
    rows = await reservation_service.list_tracking_events(db, reservation.id)
    return [
        TrackingEventOut(
            id=e.id,
            reservation_id=e.reservation_id,
            status=e.status,
            description=e.description,
            is_automatic=e.is_automatic,
            created_by=e.created_by,
            created_at=str(e.created_at),
        )
        for e in rows
    ]


@router.post("/reservations/{reservation_id}/confirm-delivery")
async def confirm_delivery(
    reservation_id: str,
    actor: Actor = Depends(get_actor),
    stripe: StripeClient = Depends(get_stripe_client),
    db: AsyncSession = Depends(get_db),
) -> dict:
    resp = await payment_service.confirm_delivery(db, stripe, buyer_id=actor.user_id, reservation_id=reservation_id)
    await db.commit()
    return resp
