"""
Payment glue between reservations, Stripe and CinetPay.

Card payments are authorized with manual capture and held until the buyer
confirms delivery; mobile-money payments (CinetPay) are captured at once and
the seller's share is still only released on delivery confirmation.
"""
from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from fastapi import HTTPException
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from kilofly.core.config import settings
from kilofly.core.errors import OperationRefused
from kilofly.core.ids import cinetpay_transaction_id
from kilofly.models.listing import Listing
from kilofly.models.reservation import Reservation
from kilofly.models.transaction import Transaction
from kilofly.models.user import User
from kilofly.services import currency as fx
from kilofly.services.escrow import EscrowSplit, compute_split, quantize_amount, to_minor_units
from kilofly.services.notifications import notify_safely
from kilofly.services.payment_status import (
    PAID_PAYMENT_STATUSES,
    PaymentNotCompleted,
    map_cinetpay_payment_status,
    map_stripe_intent_status,
    transaction_status_for,
)
from kilofly.services.redaction import redact_payload
from kilofly.services.reservations import add_tracking_event, get_reservation_or_404
from kilofly.services.wallet import credit_escrow_release, get_or_create_wallet

log = logging.getLogger(__name__)

# Zero-decimal currencies CinetPay checkout accepts; anything else is converted to XOF
CINETPAY_CURRENCIES = ("XOF", "XAF", "GNF")

# Once here a transaction is not touched by webhooks again
TERMINAL_PAYMENT_STATUSES = ("captured", "failed", "cancelled", "refunded")


def _split_for(amount: Decimal, currency: str) -> EscrowSplit:
    return compute_split(
        amount,
        currency,
        buyer_rate=settings.buyer_commission_rate,
        seller_rate=settings.seller_commission_rate,
    )


async def _load_payable(db: AsyncSession, *, buyer_id: str, reservation_id: str) -> tuple[Reservation, Listing]:
    reservation = await get_reservation_or_404(db, reservation_id)
    if reservation.buyer_id != buyer_id:
        raise HTTPException(status_code=403, detail="Forbidden")
    if reservation.status != "approved":
        raise HTTPException(status_code=409, detail=f"Reservation must be approved before payment (status: {reservation.status})")
    listing = (await db.execute(select(Listing).where(Listing.id == reservation.listing_id))).scalar_one()
    return reservation, listing


async def _transaction_for(db: AsyncSession, reservation_id: str) -> Transaction | None:
    stmt = select(Transaction).where(Transaction.reservation_id == reservation_id)
    return (await db.execute(stmt)).scalar_one_or_none()


async def transaction_by_reference(db: AsyncSession, provider_reference: str) -> Transaction | None:
    stmt = select(Transaction).where(Transaction.provider_reference == provider_reference)
    return (await db.execute(stmt)).scalar_one_or_none()


async def upsert_transaction(
    db: AsyncSession,
    *,
    reservation: Reservation,
    split: EscrowSplit,
    provider: str,
    provider_reference: str | None,
    payment_status: str,
) -> Transaction:
    tx = await _transaction_for(db, reservation.id)
    if tx and tx.payment_status in PAID_PAYMENT_STATUSES:
        raise HTTPException(status_code=409, detail="Payment already completed for this reservation")

    if tx is None:
        tx = Transaction(
            reservation_id=reservation.id,
            listing_id=reservation.listing_id,
            buyer_id=reservation.buyer_id,
            seller_id=reservation.seller_id,
        )
        db.add(tx)

    tx.amount = split.buyer_total
    tx.base_amount = split.base_amount
    tx.platform_commission = split.platform_commission
    tx.seller_amount = split.seller_amount
    tx.currency = split.currency
    tx.provider = provider
    tx.provider_reference = provider_reference
    tx.payment_status = payment_status
    tx.status = transaction_status_for(payment_status)
    await db.flush()
    return tx


# Stripe

async def create_payment_intent(
    db: AsyncSession,
    stripe,
    *,
    buyer_id: str,
    reservation_id: str,
    idempotency_key: str,
) -> dict[str, Any]:
    reservation, listing = await _load_payable(db, buyer_id=buyer_id, reservation_id=reservation_id)
    split = _split_for(Decimal(reservation.total_price), listing.currency)

    intent = await stripe.create_payment_intent(
        amount_minor=to_minor_units(split.buyer_total, split.currency),
        currency=split.currency,
        metadata={"reservation_id": reservation.id, "listing_id": listing.id, **split.metadata()},
        description=f"KiloFly - {listing.departure} → {listing.arrival}",
        idempotency_key=f"pi-{reservation.id}-{idempotency_key}",
    )
    log.info("payment intent %s created for reservation %s (mode=%s)", intent.get("id"), reservation.id, stripe.mode)

    tx = await upsert_transaction(
        db,
        reservation=reservation,
        split=split,
        provider="stripe",
        provider_reference=intent["id"],
        payment_status="requires_payment",
    )
    return {
        "transaction_id": tx.id,
        "payment_intent_id": intent["id"],
        "client_secret": intent.get("client_secret"),
        "currency": split.currency,
        "base_amount": str(split.base_amount),
        "buyer_fee": str(split.buyer_fee),
        "buyer_total": str(split.buyer_total),
        "seller_amount": str(split.seller_amount),
        "platform_commission": str(split.platform_commission),
    }


async def create_checkout_session(
    db: AsyncSession,
    stripe,
    *,
    buyer_id: str,
    reservation_id: str,
    success_url: str | None,
    cancel_url: str | None,
    idempotency_key: str,
) -> dict[str, Any]:
    reservation, listing = await _load_payable(db, buyer_id=buyer_id, reservation_id=reservation_id)
    split = _split_for(Decimal(reservation.total_price), listing.currency)
    buyer_email = (await db.execute(select(User.email).where(User.id == buyer_id))).scalar_one_or_none()

    origin = settings.frontend_url.rstrip("/")
    session = await stripe.create_checkout_session(
        amount_minor=to_minor_units(split.buyer_total, split.currency),
        currency=split.currency,
        product_name=f"Transport {listing.departure} → {listing.arrival} ({reservation.requested_kg} kg)",
        success_url=success_url or f"{origin}/payment-success?reservation={reservation.id}",
        cancel_url=cancel_url or f"{origin}/reservations/{reservation.id}",
        metadata={"reservation_id": reservation.id, "listing_id": listing.id, **split.metadata()},
        customer_email=buyer_email,
        idempotency_key=f"cs-{reservation.id}-{idempotency_key}",
    )

    tx = await upsert_transaction(
        db,
        reservation=reservation,
        split=split,
        provider="stripe",
        provider_reference=session["id"],
        payment_status="requires_payment",
    )
    return {"transaction_id": tx.id, "session_id": session["id"], "url": session.get("url")}


async def get_payment_intent(db: AsyncSession, stripe, *, user_id: str, intent_id: str) -> dict[str, Any]:
    tx = await transaction_by_reference(db, intent_id)
    if not tx or user_id not in (tx.buyer_id, tx.seller_id):
        raise HTTPException(status_code=404, detail="Payment intent not found")

    log.info("retrieving payment intent %s (mode=%s)", intent_id, stripe.mode)
    intent = await stripe.retrieve_payment_intent(intent_id)
    return {
        "payment_intent_id": intent["id"],
        "client_secret": intent.get("client_secret"),
        "status": intent.get("status"),
        "amount": intent.get("amount"),
        "currency": intent.get("currency"),
    }


async def _move_reservation(db: AsyncSession, reservation_id: str, *, to: str, allowed_from: tuple[str, ...]) -> bool:
    result = await db.execute(
        update(Reservation)
        .where(Reservation.id == reservation_id, Reservation.status.in_(allowed_from))
        .values(status=to)
        .execution_options(synchronize_session=False)
    )
    return bool(result.rowcount)


async def apply_stripe_intent(db: AsyncSession, tx: Transaction, intent: dict[str, Any]) -> str:
    """Maps the intent status onto the transaction. Raises PaymentNotCompleted."""
    if tx.payment_status in TERMINAL_PAYMENT_STATUSES:
        return tx.payment_status
    payment_status, status = map_stripe_intent_status(intent.get("status") or "")

    tx.payment_status = payment_status
    tx.status = status
    if payment_status == "paid" and tx.captured_at is None:
        tx.captured_at = datetime.now(timezone.utc)
    await db.flush()

    if payment_status == "paid":
        try:
            async with db.begin_nested():
                await _move_reservation(db, tx.reservation_id, to="in_progress", allowed_from=("approved",))
        except Exception:
            log.exception("reservation update failed after payment: reservation_id=%s", tx.reservation_id)
    return payment_status


async def mark_transaction_paid(db: AsyncSession, stripe, *, user_id: str, intent_id: str) -> dict[str, Any]:
    tx = await transaction_by_reference(db, intent_id)
    if not tx or tx.buyer_id != user_id:
        raise HTTPException(status_code=404, detail="Transaction not found")
    if tx.payment_status in ("failed", "cancelled", "refunded"):
        raise HTTPException(status_code=409, detail=f"Transaction is {tx.payment_status}")

    reservation = await get_reservation_or_404(db, tx.reservation_id)
    if reservation.status in ("cancelled", "rejected"):
        raise HTTPException(status_code=409, detail=f"Reservation is {reservation.status}")

    intent = await stripe.retrieve_payment_intent(intent_id)
    try:
        payment_status = await apply_stripe_intent(db, tx, intent)
    except PaymentNotCompleted as e:
        raise HTTPException(status_code=400, detail=str(e)) from e

    return {"success": True, "transaction_id": tx.id, "payment_status": payment_status, "status": tx.status}


async def confirm_delivery(db: AsyncSession, stripe, *, buyer_id: str, reservation_id: str) -> dict[str, Any]:
    """Escrow release: capture the held payment and credit the seller's wallet."""
    reservation = await get_reservation_or_404(db, reservation_id)
    if reservation.buyer_id != buyer_id:
        raise HTTPException(status_code=403, detail="Forbidden")
    if reservation.status not in ("approved", "in_progress"):
        raise HTTPException(status_code=409, detail=f"Cannot confirm delivery in status: {reservation.status}")

    tx = await _transaction_for(db, reservation.id)
    if not tx or tx.payment_status not in PAID_PAYMENT_STATUSES:
        raise HTTPException(status_code=409, detail="No completed payment for this reservation")

    # Claim the release first so a concurrent confirmation cannot pay twice
    if not await _move_reservation(db, reservation.id, to="delivered", allowed_from=("approved", "in_progress")):
        raise HTTPException(status_code=409, detail="Reservation was updated concurrently")
    reservation.status = "delivered"

    if tx.provider == "stripe" and tx.payment_status == "authorized":
        intent = await stripe.capture_payment_intent(tx.provider_reference, idempotency_key=f"capture-{tx.id}")
        log.info("payment intent %s captured (status=%s)", intent.get("id"), intent.get("status"))

    tx.payment_status = "captured"
    tx.status = "completed"
    tx.captured_at = tx.captured_at or datetime.now(timezone.utc)

    wallet = await get_or_create_wallet(db, reservation.seller_id)
    seller_amount = Decimal(tx.seller_amount)
    credited = quantize_amount(await fx.convert(db, seller_amount, tx.currency, wallet.currency), wallet.currency)
    await credit_escrow_release(
        db,
        user_id=reservation.seller_id,
        amount=credited,
        reservation_id=reservation.id,
        description="Paiement libéré après confirmation de livraison",
        details={
            "transaction_id": tx.id,
            "original_amount": str(seller_amount),
            "original_currency": tx.currency,
        },
    )

    await add_tracking_event(
        db,
        reservation_id=reservation.id,
        status="delivered",
        description="Livraison confirmée par l'expéditeur",
        created_by=buyer_id,
    )
    await notify_safely(
        db,
        user_id=reservation.seller_id,
        title="Paiement reçu ! 💰",
        message=f"La livraison a été confirmée. {fx.format_price(credited, wallet.currency)} ont été crédités sur votre portefeuille.",
        type="success",
        data={"reservation_id": reservation.id, "url": "/wallet"},
    )
    return {
        "success": True,
        "reservation_id": reservation.id,
        "status": "delivered",
        "transaction_id": tx.id,
        "platform_commission": str(tx.platform_commission),
        "seller_amount": str(seller_amount),
        "credited_amount": str(credited),
        "wallet_currency": wallet.currency,
    }


async def handle_stripe_event(db: AsyncSession, event: dict[str, Any]) -> dict[str, Any]:
    event_type = event.get("type")
    obj = (event.get("data") or {}).get("object") or {}
    log.info("stripe webhook %s: %s", event.get("id"), event_type)

    if event_type == "checkout.session.completed":
        tx = await transaction_by_reference(db, obj.get("id", ""))
        if not tx:
            return {"received": True}
        intent_id = obj.get("payment_intent")
        if intent_id:
            tx.provider_reference = intent_id
        if tx.payment_status not in TERMINAL_PAYMENT_STATUSES and tx.payment_status != "paid":
            tx.payment_status = "paid" if obj.get("payment_status") == "paid" else "authorized"
            tx.status = transaction_status_for(tx.payment_status)
        await db.flush()
        return {"received": True, "payment_status": tx.payment_status}

    if not event_type or not event_type.startswith("payment_intent."):
        return {"received": True}

    tx = await transaction_by_reference(db, obj.get("id", ""))
    if not tx:
        log.warning("stripe webhook for unknown payment intent %s", obj.get("id"))
        return {"received": True}
    if tx.payment_status in TERMINAL_PAYMENT_STATUSES:
        return {"received": True, "payment_status": tx.payment_status}

    if event_type in ("payment_intent.succeeded", "payment_intent.amount_capturable_updated"):
        try:
            payment_status = await apply_stripe_intent(db, tx, obj)
        except PaymentNotCompleted:
            return {"received": True}
        return {"received": True, "payment_status": payment_status}

    if event_type in ("payment_intent.payment_failed", "payment_intent.canceled"):
        tx.payment_status = "failed" if event_type.endswith("payment_failed") else "cancelled"
        tx.status = transaction_status_for(tx.payment_status)
        await db.flush()
        if tx.payment_status == "failed":
            await notify_safely(
                db,
                user_id=tx.buyer_id,
                title="❌ Paiement échoué",
                message="Votre paiement n'a pas pu être traité. Veuillez réessayer.",
                type="warning",
            )
        return {"received": True, "payment_status": tx.payment_status}

    return {"received": True}


# CinetPay

async def init_cinetpay_payment(
    db: AsyncSession,
    cinetpay,
    *,
    buyer_id: str,
    reservation_id: str,
    return_url: str | None,
    cancel_url: str | None,
    customer_phone: str | None = None,
) -> dict[str, Any]:
    reservation, listing = await _load_payable(db, buyer_id=buyer_id, reservation_id=reservation_id)
    buyer = (await db.execute(select(User).where(User.id == buyer_id))).scalar_one()
    seller_name = (await db.execute(select(User.full_name).where(User.id == reservation.seller_id))).scalar_one_or_none() or ""

    pay_currency = listing.currency.upper()
    base = Decimal(reservation.total_price)
    if pay_currency not in CINETPAY_CURRENCIES:
        base = await fx.convert(db, base, pay_currency, "XOF")
        pay_currency = "XOF"
    split = _split_for(base, pay_currency)

    transaction_id = cinetpay_transaction_id(reservation.id)
    origin = settings.frontend_url.rstrip("/")
    phone = customer_phone or buyer.phone or ""

    result = await cinetpay.init_payment({
        "transaction_id": transaction_id,
        "amount": int(split.buyer_total),
        "currency": pay_currency,
        "description": f"KiloFly - Transport {listing.departure} → {listing.arrival} avec {seller_name}".strip(),
        "customer_name": buyer.full_name,
        "customer_surname": "",
        "customer_email": buyer.email or "",
        "customer_phone_number": "".join(ch for ch in phone if ch.isdigit()),
        "notify_url": f"{settings.public_base_url.rstrip('/')}/v1/webhooks/cinetpay/payment",
        "return_url": return_url or f"{origin}/payment-success?reservation={reservation.id}",
        "cancel_url": cancel_url or f"{origin}/reservations/{reservation.id}",
        "channels": "ALL",
        "lang": "fr",
        "metadata": json.dumps({
            "reservation_id": reservation.id,
            "base_amount": str(split.base_amount),
            "buyer_commission": str(split.buyer_fee),
            "seller_id": reservation.seller_id,
            "buyer_id": reservation.buyer_id,
            "listing_id": reservation.listing_id,
        }),
        "invoice_data": {
            "Quantity": str(reservation.requested_kg),
            "Unit_price": str(listing.price_per_kg),
            "Total_price": str(split.base_amount),
        },
    })

    if result.get("code") != "201":
        log.warning("cinetpay init refused: %s", redact_payload(result))
        raise OperationRefused(result.get("message") or "Erreur lors de la création du paiement CinetPay")

    tx = await upsert_transaction(
        db,
        reservation=reservation,
        split=split,
        provider="cinetpay",
        provider_reference=transaction_id,
        payment_status="pending",
    )
    data = result.get("data") or {}
    return {
        "success": True,
        "transaction_id": transaction_id,
        "transaction_db_id": tx.id,
        "payment_url": data.get("payment_url"),
        "payment_token": data.get("payment_token"),
        "total_amount": str(split.buyer_total),
        "buyer_commission": str(split.buyer_fee),
        "currency": pay_currency,
    }


async def handle_cinetpay_payment_webhook(db: AsyncSession, cinetpay, body: dict[str, Any]) -> dict[str, Any]:
    transaction_id = body.get("cpm_trans_id")
    if not transaction_id:
        raise HTTPException(status_code=400, detail="Missing transaction ID")

    tx = await transaction_by_reference(db, str(transaction_id))
    if not tx:
        log.error("cinetpay payment webhook: transaction not found: %s", transaction_id)
        return {"received": True}
    if tx.payment_status in TERMINAL_PAYMENT_STATUSES:
        return {"received": True, "status": tx.payment_status}

    # Never trust the callback body for the outcome; ask CinetPay
    verified = await cinetpay.check_payment(str(transaction_id))
    data = verified.get("data") if isinstance(verified.get("data"), dict) else {}
    new_status = map_cinetpay_payment_status(data.get("status"))
    log.info("cinetpay payment webhook: tx=%s payment_status=%s", tx.id, new_status)

    tx.payment_status = new_status
    tx.status = transaction_status_for(new_status)
    if new_status == "captured":
        tx.captured_at = datetime.now(timezone.utc)
    await db.flush()

    amount_text = fx.format_price(Decimal(tx.amount), tx.currency)
    if new_status == "captured":
        await _move_reservation(db, tx.reservation_id, to="approved", allowed_from=("pending", "approved"))
        await notify_safely(
            db,
            user_id=tx.buyer_id,
            title="✅ Paiement confirmé !",
            message=f"Votre paiement de {amount_text} a été confirmé",
            type="success",
        )
        await notify_safely(
            db,
            user_id=tx.seller_id,
            title="💰 Paiement reçu !",
            message=f"Un paiement de {amount_text} a été reçu pour une réservation",
            type="success",
        )
    elif new_status == "failed":
        await notify_safely(
            db,
            user_id=tx.buyer_id,
            title="❌ Paiement échoué",
            message="Votre paiement n'a pas pu être traité. Veuillez réessayer.",
            type="warning",
        )
    return {"received": True, "status": new_status}


def payments_config() -> dict[str, Any]:
    return {
        "stripe_publishable_key": settings.stripe_publishable_key,
        "cinetpay_site_id": settings.cinetpay_site_id,
        "cinetpay_api_key": settings.cinetpay_api_key.get_secret_value(),
        "buyer_commission_rate": str(settings.buyer_commission_rate),
        "seller_commission_rate": str(settings.seller_commission_rate),
    }
