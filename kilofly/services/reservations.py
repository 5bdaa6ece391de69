from __future__ import annotations

import logging
from decimal import Decimal

from fastapi import HTTPException
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from kilofly.core.errors import ProviderError
from kilofly.models.listing import Listing
from kilofly.models.reservation import Reservation, TrackingEvent
from kilofly.models.transaction import Transaction
from kilofly.models.user import User
from kilofly.services.auth import Actor
from kilofly.services.notifications import notify_safely
from kilofly.services.payment_status import PAID_PAYMENT_STATUSES

log = logging.getLogger(__name__)

# Reservations that hold capacity on the listing
BOOKED_STATUSES = ("approved", "in_progress")
CANCELLABLE_STATUSES = ("pending", "approved")


async def get_listing_or_404(db: AsyncSession, listing_id: str) -> Listing:
    listing = (await db.execute(select(Listing).where(Listing.id == listing_id))).scalar_one_or_none()
    if not listing:
        raise HTTPException(status_code=404, detail="Listing not found")
    return listing


async def get_reservation_or_404(db: AsyncSession, reservation_id: str) -> Reservation:
    r = (await db.execute(select(Reservation).where(Reservation.id == reservation_id))).scalar_one_or_none()
    if not r:
        raise HTTPException(status_code=404, detail="Reservation not found")
    return r


def assert_party(actor: Actor, reservation: Reservation) -> None:
    if actor.user_id not in (reservation.buyer_id, reservation.seller_id) and not actor.is_admin:
        raise HTTPException(status_code=403, detail="Forbidden")


async def booked_kg(db: AsyncSession, listing_id: str) -> Decimal:
    stmt = select(func.coalesce(func.sum(Reservation.requested_kg), 0)).where(
        Reservation.listing_id == listing_id,
        Reservation.status.in_(BOOKED_STATUSES),
    )
    return Decimal(str((await db.execute(stmt)).scalar_one()))


async def available_kg(db: AsyncSession, listing: Listing) -> Decimal:
    remaining = Decimal(listing.available_kg) - await booked_kg(db, listing.id)
    return max(Decimal(0), remaining)


async def _display_name(db: AsyncSession, user_id: str, default: str) -> str:
    name = (await db.execute(select(User.full_name).where(User.id == user_id))).scalar_one_or_none()
    return name or default


async def add_tracking_event(
    db: AsyncSession,
    *,
    reservation_id: str,
    status: str,
    description: str,
    created_by: str | None = None,
) -> None:
    try:
        async with db.begin_nested():
            db.add(TrackingEvent(
                reservation_id=reservation_id,
                status=status,
                description=description,
                is_automatic=created_by is None,
                created_by=created_by,
            ))
    except Exception:
        log.exception("tracking event failed: reservation_id=%s status=%s", reservation_id, status)


async def create_reservation(
    db: AsyncSession,
    *,
    actor: Actor,
    listing_id: str,
    requested_kg: Decimal,
    item_description: str,
) -> Reservation:
    listing = await get_listing_or_404(db, listing_id)
    if listing.user_id == actor.user_id:
        raise HTTPException(status_code=400, detail="Cannot book your own listing")
    if listing.status != "active":
        raise HTTPException(status_code=409, detail="Listing is not open for reservations")
    if requested_kg <= 0:
        raise HTTPException(status_code=400, detail="requested_kg must be positive")

    remaining = await available_kg(db, listing)
    if requested_kg > remaining:
        raise HTTPException(status_code=409, detail=f"Only {remaining} kg available")

    reservation = Reservation(
        listing_id=listing.id,
        buyer_id=actor.user_id,
        seller_id=listing.user_id,
        requested_kg=requested_kg,
        total_price=requested_kg * Decimal(listing.price_per_kg),
        item_description=item_description,
        status="pending",
    )
    db.add(reservation)
    await db.flush()

    await add_tracking_event(db, reservation_id=reservation.id, status="pending", description="Demande de réservation envoyée")

    buyer_name = await _display_name(db, actor.user_id, "Un expéditeur")
    await notify_safely(
        db,
        user_id=listing.user_id,
        title="📦 Nouvelle demande de réservation",
        message=f"{buyer_name} souhaite réserver {requested_kg} kg sur le trajet {listing.departure} → {listing.arrival}",
        type="reservation",
        data={"reservation_id": reservation.id, "url": f"/reservations/{reservation.id}"},
    )
    return reservation


async def approve_reservation(db: AsyncSession, *, actor: Actor, reservation_id: str) -> Reservation:
    reservation = await get_reservation_or_404(db, reservation_id)
    if reservation.seller_id != actor.user_id:
        raise HTTPException(status_code=403, detail="Forbidden")
    if reservation.status != "pending":
        raise HTTPException(status_code=409, detail=f"Cannot approve reservation in status: {reservation.status}")

    listing = await get_listing_or_404(db, reservation.listing_id)
    remaining = await available_kg(db, listing)
    if Decimal(reservation.requested_kg) > remaining:
        raise HTTPException(status_code=409, detail=f"Only {remaining} kg available")

    reservation.status = "approved"
    await add_tracking_event(db, reservation_id=reservation.id, status="approved", description="Réservation acceptée par le voyageur")
    await notify_safely(
        db,
        user_id=reservation.buyer_id,
        title="✅ Réservation acceptée !",
        message=f"Votre réservation de {reservation.requested_kg} kg sur le trajet {listing.departure} → {listing.arrival} a été acceptée. Vous pouvez procéder au paiement.",
        type="success",
        data={"reservation_id": reservation.id, "url": f"/reservations/{reservation.id}"},
    )
    return reservation


async def reject_reservation(db: AsyncSession, *, actor: Actor, reservation_id: str) -> Reservation:
    reservation = await get_reservation_or_404(db, reservation_id)
    if reservation.seller_id != actor.user_id:
        raise HTTPException(status_code=403, detail="Forbidden")
    if reservation.status != "pending":
        raise HTTPException(status_code=409, detail=f"Cannot reject reservation in status: {reservation.status}")

    reservation.status = "rejected"
    await add_tracking_event(db, reservation_id=reservation.id, status="rejected", description="Réservation refusée par le voyageur")
    await notify_safely(
        db,
        user_id=reservation.buyer_id,
        title="❌ Réservation refusée",
        message=f"Votre demande de réservation de {reservation.requested_kg} kg a été refusée.",
        type="warning",
        data={"reservation_id": reservation.id},
    )
    return reservation


async def cancel_reservation(db: AsyncSession, *, actor: Actor, reservation_id: str, stripe=None) -> Reservation:
    reservation = await get_reservation_or_404(db, reservation_id)
    if reservation.buyer_id != actor.user_id:
        raise HTTPException(status_code=403, detail="Forbidden")

    # Only before payment and before logistics
    if reservation.status not in CANCELLABLE_STATUSES:
        raise HTTPException(status_code=409, detail=f"Cannot cancel reservation in status: {reservation.status}")

    paid = (await db.execute(
        select(Transaction.id).where(
            Transaction.reservation_id == reservation.id,
            Transaction.payment_status.in_(PAID_PAYMENT_STATUSES),
        ).limit(1)
    )).scalar_one_or_none()
    if paid:
        raise HTTPException(status_code=409, detail="Payment already completed for this reservation")

    log.info("cancelling reservation %s for buyer %s", reservation.id, actor.user_id)
    reservation.status = "cancelled"

    open_intents = (await db.execute(
        select(Transaction.id, Transaction.provider_reference).where(
            Transaction.reservation_id == reservation.id,
            Transaction.provider == "stripe",
            Transaction.payment_status.in_(("requires_payment", "pending")),
        )
    )).all()

    try:
        async with db.begin_nested():
            await db.execute(
                update(Transaction)
                .where(
                    Transaction.reservation_id == reservation.id,
                    Transaction.payment_status.not_in(PAID_PAYMENT_STATUSES),
                )
                .values(status="cancelled", payment_status="cancelled")
                .execution_options(synchronize_session=False)
            )
    except Exception:
        log.exception("failed to cancel transactions for reservation %s", reservation.id)

    # Checkout sessions expire on their own; only intents are cancelled
    if stripe is not None:
        for tx_id, intent_id in open_intents:
            if not intent_id or not intent_id.startswith("pi_"):
                continue
            try:
                await stripe.cancel_payment_intent(intent_id, idempotency_key=f"cancel-{tx_id}")
            except ProviderError:
                log.exception("stripe intent cancel failed: reservation_id=%s intent=%s", reservation.id, intent_id)

    await add_tracking_event(
        db,
        reservation_id=reservation.id,
        status="cancelled",
        description=f"Réservation de {reservation.requested_kg} kg annulée par l'expéditeur avant paiement",
    )

    listing = (await db.execute(select(Listing).where(Listing.id == reservation.listing_id))).scalar_one_or_none()
    route = f"{listing.departure} → {listing.arrival}" if listing else ""
    currency = listing.currency if listing else "EUR"
    buyer_name = await _display_name(db, reservation.buyer_id, "L'expéditeur")
    await notify_safely(
        db,
        user_id=reservation.seller_id,
        title="❌ Réservation annulée",
        message=(
            f"{buyer_name} a annulé sa réservation de {reservation.requested_kg} kg sur le trajet {route}. "
            f"Montant annulé : {reservation.total_price} {currency}. Le kg réservé est à nouveau disponible."
        ),
        type="warning",
    )
    return reservation


async def list_tracking_events(db: AsyncSession, reservation_id: str) -> list[TrackingEvent]:
    stmt = (
        select(TrackingEvent)
        .where(TrackingEvent.reservation_id == reservation_id)
        .order_by(TrackingEvent.created_at.asc(), TrackingEvent.id.asc())
    )
    return list((await db.execute(stmt)).scalars().all())
