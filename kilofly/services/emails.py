"""
Transactional emails.

Nothing here talks to Resend directly: each email becomes an email.send
outbox row committed with the caller's transaction, and the worker
delivers it.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable, Sequence

from fastapi import HTTPException
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from kilofly.core.config import settings
from kilofly.core.ids import gen_id
from kilofly.models.listing import Listing
from kilofly.models.outbox import OutboxEvent
from kilofly.models.user import User
from kilofly.services.auth import Actor
from kilofly.services.email_templates import (
    render_signature_email,
    render_welcome_email,
    reservation_summary,
    signature_subject,
    welcome_subject,
)
from kilofly.services.reservations import get_reservation_or_404

log = logging.getLogger(__name__)

SIGNATURE_PARTY = {"sender": "buyer_id", "transporter": "seller_id"}


def queue_email(
    db: AsyncSession,
    *,
    to: str,
    subject: str,
    html: str,
    attachments: Sequence[dict[str, str]] | None = None,
) -> str:
    email_id = gen_id("eml")
    payload = {"to": to, "subject": subject, "html": html}
    if attachments:
        payload["attachments"] = [dict(a) for a in attachments]
    db.add(OutboxEvent(
        aggregate_type="email",
        aggregate_id=email_id,
        event_type="email.send",
        payload=payload,
        status="pending",
    ))
    return email_id


def queue_welcome_email(db: AsyncSession, user: User) -> str | None:
    if not user.email:
        return None
    first_name = (user.full_name or "").split(" ")[0] or "Utilisateur"
    return queue_email(
        db,
        to=user.email,
        subject=welcome_subject(),
        html=render_welcome_email(first_name=first_name, email=user.email, app_url=settings.frontend_url),
    )


async def queue_signature_email(
    db: AsyncSession,
    *,
    actor: Actor,
    signature_type: str,
    signed_at: datetime,
    conditions: Iterable[str],
    reservation_id: str | None = None,
    ip_address: str | None = None,
    pdf_base64: str | None = None,
) -> str:
    user = (await db.execute(select(User).where(User.id == actor.user_id))).scalar_one()
    if not user.email:
        raise HTTPException(status_code=400, detail="No email address on file")

    summary = None
    if reservation_id:
        reservation = await get_reservation_or_404(db, reservation_id)
        if getattr(reservation, SIGNATURE_PARTY[signature_type]) != actor.user_id:
            raise HTTPException(status_code=403, detail="Forbidden")
        listing = (await db.execute(select(Listing).where(Listing.id == reservation.listing_id))).scalar_one()
        summary = reservation_summary(
            reservation_id=reservation.id,
            departure=listing.departure,
            arrival=listing.arrival,
            kg=reservation.requested_kg,
            amount=reservation.total_price,
            currency=listing.currency,
        )

    attachments = None
    if pdf_base64:
        stamp = signed_at.strftime("%Y%m%d")
        attachments = [{"filename": f"KiloFly_Signature_{signature_type}_{stamp}.pdf", "content": pdf_base64}]

    html = render_signature_email(
        user_name=user.full_name or "Utilisateur",
        signature_type=signature_type,
        signed_at=signed_at,
        conditions=conditions,
        ip_address=ip_address,
        reservation=summary,
        has_attachment=attachments is not None,
    )
    email_id = queue_email(db, to=user.email, subject=signature_subject(signature_type), html=html, attachments=attachments)
    log.info("signature email queued: id=%s user=%s type=%s", email_id, actor.user_id, signature_type)
    return email_id
