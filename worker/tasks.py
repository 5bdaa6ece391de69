import asyncio
import logging

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql import func

from worker.celery_app import celery
from kilofly.core.db import make_engine, make_sessionmaker
import kilofly.models  # noqa: F401  # ensures Models are registered
from kilofly.models.listing import Listing, TransportRequest
from kilofly.models.outbox import OutboxEvent
from kilofly.providers.registry import close_clients, get_exchange_rate_client, get_resend_client
from kilofly.services.currency import refresh_exchange_rates as refresh_rates
from kilofly.services.notifications import fan_out_new_listing, fan_out_new_transport_request
from kilofly.services.outbox_dispatcher import MAX_OUTBOX_ATTEMPTS
from kilofly.services.push import queue_push_for_user

log = logging.getLogger(__name__)


async def apply_outbox_event(db: AsyncSession, ev: OutboxEvent, *, resend=None) -> None:
    """Runs the side effect of one event inside the caller's transaction."""
    payload = ev.payload or {}

    if ev.event_type == "notification.push":
        await queue_push_for_user(
            db,
            user_id=payload["user_id"],
            title=payload["title"],
            body=payload["body"],
            data=payload.get("data") or {},
        )

    elif ev.event_type == "listing.created":
        listing = (await db.execute(select(Listing).where(Listing.id == payload["listing_id"]))).scalar_one_or_none()
        if listing is None:
            log.warning("outbox %s: listing %s is gone", ev.id, payload.get("listing_id"))
            return
        await fan_out_new_listing(db, listing)

    elif ev.event_type == "transport_request.created":
        req = (await db.execute(
            select(TransportRequest).where(TransportRequest.id == payload["transport_request_id"])
        )).scalar_one_or_none()
        if req is None:
            log.warning("outbox %s: transport request %s is gone", ev.id, payload.get("transport_request_id"))
            return
        await fan_out_new_transport_request(db, req)

    elif ev.event_type == "email.send":
        client = resend or get_resend_client()
        await client.send(
            to=payload["to"],
            subject=payload["subject"],
            html=payload["html"],
            attachments=payload.get("attachments"),
        )

    else:
        log.warning("outbox %s: unknown event type %s", ev.id, ev.event_type)


async def _process_outbox_event(outbox_id: str, lease_id: str) -> None:
    engine = make_engine()
    Session = make_sessionmaker(engine)

    async with Session() as db:
        ev = (await db.execute(select(OutboxEvent).where(OutboxEvent.id == outbox_id))).scalar_one_or_none()
        if not ev:
            await engine.dispose()
            return

        # Lease ownership check
        if ev.lease_id != lease_id or ev.status != "processing":
            # Another dispatcher reclaimed it or it's already done.
            await engine.dispose()
            return

        try:
            await apply_outbox_event(db, ev)

            # Mark done only if lease still matches
            result = await db.execute(
                update(OutboxEvent)
                .where(OutboxEvent.id == outbox_id, OutboxEvent.lease_id == lease_id)
                .values(
                    status="done",
                    processed_at=func.now(),
                    lease_id=None,
                    lease_expires_at=None,
                )
            )
            if result.rowcount == 0:
                # lease lost; do not overwrite
                await db.rollback()
                await engine.dispose()
                return

            await db.commit()

        except Exception as e:
            log.exception("outbox %s (%s) failed", outbox_id, ev.event_type)
            attempts = ev.attempts
            await db.rollback()
            # Back to pending while attempts remain; store error
            await db.execute(
                update(OutboxEvent)
                .where(OutboxEvent.id == outbox_id, OutboxEvent.lease_id == lease_id)
                .values(
                    status="pending" if attempts < MAX_OUTBOX_ATTEMPTS else "failed",
                    lease_id=None,
                    lease_expires_at=None,
                    processing_started_at=None,
                    last_error=f"{type(e).__name__}: {e}",
                )
            )
            await db.commit()

    await engine.dispose()


async def _refresh_exchange_rates() -> dict:
    engine = make_engine()
    Session = make_sessionmaker(engine)

    async with Session() as db:
        resp = await refresh_rates(db, get_exchange_rate_client())
        await db.commit()

    await engine.dispose()
    return resp


async def _with_clients(coro):
    # provider clients hold an httpx pool bound to this event loop
    try:
        return await coro
    finally:
        await close_clients()


@celery.task(name="worker.tasks.process_outbox_event", bind=True, max_retries=5)
def process_outbox_event(self, outbox_id: str, lease_id: str) -> None:
    asyncio.run(_with_clients(_process_outbox_event(outbox_id, lease_id)))


@celery.task(name="worker.tasks.refresh_exchange_rates")
def refresh_exchange_rates() -> dict:
    resp = asyncio.run(_with_clients(_refresh_exchange_rates()))
    log.info("exchange rates refreshed: %d pairs", resp["pairs"])
    return {"pairs": resp["pairs"], "updated_at": resp["updated_at"]}
