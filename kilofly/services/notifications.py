"""
In-app notifications and alert fan-out.

Push is never sent inline: each notification that should reach a device
writes a `notification.push` outbox event in the same transaction, and the
worker turns it into per-token push deliveries after commit.
"""
from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from kilofly.core.ids import gen_id
from kilofly.models.listing import Listing, TransportRequest
from kilofly.models.notification import Notification, NotificationPreference, PushToken
from kilofly.models.outbox import OutboxEvent
from kilofly.models.user import User

log = logging.getLogger(__name__)


async def get_preferences(db: AsyncSession, user_id: str) -> NotificationPreference | None:
    stmt = select(NotificationPreference).where(NotificationPreference.user_id == user_id)
    return (await db.execute(stmt)).scalar_one_or_none()


async def send_notification(
    db: AsyncSession,
    *,
    user_id: str,
    title: str,
    message: str,
    type: str = "info",
    data: dict[str, Any] | None = None,
) -> Notification:
    notification = Notification(
        id=gen_id("ntf"),
        user_id=user_id,
        title=title,
        message=message,
        type=type,
        read=False,
    )
    db.add(notification)

    prefs = await get_preferences(db, user_id)
    if prefs is None or prefs.push_enabled:
        db.add(
            OutboxEvent(
                aggregate_type="notification",
                aggregate_id=notification.id,
                event_type="notification.push",
                payload={
                    "user_id": user_id,
                    "title": title,
                    "body": message,
                    "data": {"type": type, "notification_id": notification.id, **(data or {})},
                },
                status="pending",
            )
        )

    return notification


async def notify_safely(db: AsyncSession, **kwargs: Any) -> None:
    """send_notification for side-effect notifications that must not fail the caller."""
    try:
        async with db.begin_nested():
            await send_notification(db, **kwargs)
    except Exception:
        log.exception("notification failed: user_id=%s title=%s", kwargs.get("user_id"), kwargs.get("title"))


async def notify_admins(db: AsyncSession, *, title: str, message: str, type: str = "info") -> int:
    admin_ids = (await db.execute(select(User.id).where(User.role == "admin", User.is_active.is_(True)))).scalars().all()
    for admin_id in admin_ids:
        await notify_safely(db, user_id=admin_id, title=title, message=message, type=type)
    if admin_ids:
        log.info("notified %d admin(s)", len(admin_ids))
    return len(admin_ids)


async def alert_recipients(db: AsyncSession, *, exclude_user_id: str) -> list[str]:
    """Users holding at least one device token, alerts not switched off, poster excluded."""
    stmt = (
        select(PushToken.user_id)
        .outerjoin(NotificationPreference, NotificationPreference.user_id == PushToken.user_id)
        .where(
            PushToken.user_id != exclude_user_id,
            (NotificationPreference.id.is_(None)) | (NotificationPreference.alerts_enabled.is_(True)),
        )
        .distinct()
    )
    return list((await db.execute(stmt)).scalars().all())


def _fmt_kg(kg) -> str:
    # 23.00 -> "23", 12.50 -> "12.5"
    return format(Decimal(str(kg)).normalize(), "f")


async def fan_out_new_listing(db: AsyncSession, listing: Listing) -> int:
    recipients = await alert_recipients(db, exclude_user_id=listing.user_id)
    title = "✈️ Nouveau voyage disponible !"
    body = f"{listing.departure} → {listing.arrival} • {_fmt_kg(listing.available_kg)}kg disponibles"
    for user_id in recipients:
        await notify_safely(
            db,
            user_id=user_id,
            title=title,
            message=body,
            type="new_listing",
            data={"listing_id": listing.id, "url": f"/listing/{listing.id}"},
        )
    log.info("new listing %s: alerted %d user(s)", listing.id, len(recipients))
    return len(recipients)


async def fan_out_new_transport_request(db: AsyncSession, request: TransportRequest) -> int:
    recipients = await alert_recipients(db, exclude_user_id=request.user_id)
    title = "📦 Nouvelle demande de transport !"
    body = f"{request.departure} → {request.arrival} • {_fmt_kg(request.requested_kg)}kg recherchés"
    for user_id in recipients:
        await notify_safely(
            db,
            user_id=user_id,
            title=title,
            message=body,
            type="new_transport_request",
            data={"transport_request_id": request.id, "url": f"/transport-request/{request.id}"},
        )
    log.info("new transport request %s: alerted %d user(s)", request.id, len(recipients))
    return len(recipients)


PREFERENCE_FIELDS = ("push_enabled", "alerts_enabled", "messages_enabled", "responses_enabled", "promotions_enabled")


async def list_notifications(db: AsyncSession, user_id: str, *, unread_only: bool = False, limit: int = 50) -> list[Notification]:
    stmt = select(Notification).where(Notification.user_id == user_id)
    if unread_only:
        stmt = stmt.where(Notification.read.is_(False))
    stmt = stmt.order_by(Notification.created_at.desc()).limit(limit)
    return list((await db.execute(stmt)).scalars().all())


async def mark_read(db: AsyncSession, *, user_id: str, notification_id: str) -> Notification | None:
    stmt = select(Notification).where(Notification.id == notification_id, Notification.user_id == user_id)
    n = (await db.execute(stmt)).scalar_one_or_none()
    if n is not None and not n.read:
        n.read = True
        await db.flush()
    return n


async def upsert_preferences(db: AsyncSession, *, user_id: str, changes: dict[str, bool]) -> NotificationPreference:
    prefs = await get_preferences(db, user_id)
    if prefs is None:
        prefs = NotificationPreference(
            id=gen_id("npf"),
            user_id=user_id,
            push_enabled=True,
            alerts_enabled=True,
            messages_enabled=True,
            responses_enabled=True,
            promotions_enabled=False,
        )
        db.add(prefs)
    for field in PREFERENCE_FIELDS:
        if changes.get(field) is not None:
            setattr(prefs, field, changes[field])
    await db.flush()
    return prefs


async def register_push_token(db: AsyncSession, *, user_id: str, token: str, platform: str) -> PushToken:
    """A token moves to whichever user registered it last (shared devices)."""
    row = (await db.execute(select(PushToken).where(PushToken.token == token))).scalar_one_or_none()
    if row is None:
        row = PushToken(id=gen_id("ptk"), user_id=user_id, token=token, platform=platform)
        db.add(row)
    else:
        row.user_id = user_id
        row.platform = platform
    await db.flush()
    return row


async def delete_push_token(db: AsyncSession, *, user_id: str, token: str) -> int:
    res = await db.execute(
        delete(PushToken).where(PushToken.token == token, PushToken.user_id == user_id)
    )
    return res.rowcount or 0
