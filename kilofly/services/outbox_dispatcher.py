"""
Outbox relay: claims committed events under a lease and hands them to Celery.

A row stays `processing` while its lease is valid; the worker marks it `done`
only if it still owns the lease, so an expired lease is safely re-dispatched.
"""
from datetime import timedelta
import logging
import uuid
from typing import Callable

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql import func

from kilofly.models.outbox import OutboxEvent

log = logging.getLogger(__name__)

MAX_OUTBOX_ATTEMPTS = 5
OUTBOX_TASK = "worker.tasks.process_outbox_event"

Enqueue = Callable[[str, str], None]


def celery_enqueue(outbox_id: str, lease_id: str) -> None:
    from worker.celery_app import celery

    celery.send_task(OUTBOX_TASK, args=[outbox_id, lease_id], queue="outbox")


async def requeue_expired_leases(db: AsyncSession) -> int:
    result = await db.execute(
        update(OutboxEvent)
        .where(
            OutboxEvent.status == "processing",
            OutboxEvent.lease_expires_at.is_not(None),
            OutboxEvent.lease_expires_at < func.now(),
        )
        .values(
            status="pending",
            lease_id=None,
            lease_expires_at=None,
            processing_started_at=None,
            last_error="requeued: lease expired",
        )
    )
    return int(result.rowcount or 0)


async def claim_outbox_event_ids(db: AsyncSession, batch_size: int = 100, lease_minutes: int = 10) -> tuple[str, list[str]]:
    lease_id = uuid.uuid4().hex
    expires_at = func.now() + timedelta(minutes=lease_minutes)

    stmt = (
        select(OutboxEvent.id)
        .where(OutboxEvent.status == "pending", OutboxEvent.attempts < MAX_OUTBOX_ATTEMPTS)
        .order_by(OutboxEvent.created_at.asc())
        .with_for_update(skip_locked=True)
        .limit(batch_size)
    )
    ids = list((await db.execute(stmt)).scalars().all())
    if not ids:
        return lease_id, []

    await db.execute(
        update(OutboxEvent)
        .where(OutboxEvent.id.in_(ids))
        .values(
            status="processing",
            processing_started_at=func.now(),
            attempts=OutboxEvent.attempts + 1,
            last_error=None,
            lease_id=lease_id,
            lease_expires_at=expires_at,
        )
        .execution_options(synchronize_session=False)
    )
    await db.flush()
    return lease_id, ids


async def dispatch_outbox(
    db: AsyncSession,
    batch_size: int = 100,
    lease_minutes: int = 10,
    enqueue: Enqueue = celery_enqueue,
) -> int:
    requeued = await requeue_expired_leases(db)
    if requeued:
        log.warning("outbox: requeued %d events with expired leases", requeued)

    lease_id, ids = await claim_outbox_event_ids(db, batch_size=batch_size, lease_minutes=lease_minutes)

    # Commit before enqueue so workers see the lease
    await db.commit()

    if not ids:
        return 0

    failed: list[tuple[str, str]] = []
    for outbox_id in ids:
        try:
            enqueue(outbox_id, lease_id)
        except Exception as e:
            log.exception("outbox: enqueue failed for %s", outbox_id)
            failed.append((outbox_id, f"{type(e).__name__}: {e}"))

    for outbox_id, msg in failed:
        await db.execute(
            update(OutboxEvent)
            .where(OutboxEvent.id == outbox_id, OutboxEvent.lease_id == lease_id)
            .values(status="pending", lease_id=None, lease_expires_at=None, processing_started_at=None, last_error=f"enqueue failed: {msg}")
        )
    if failed:
        await db.commit()

    return len(ids) - len(failed)
