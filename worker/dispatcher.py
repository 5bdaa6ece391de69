import asyncio
import logging
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql import func

from kilofly.core.config import settings
from kilofly.core.db import make_engine, make_sessionmaker
from kilofly.models.push_delivery import PushDelivery
from kilofly.services.outbox_dispatcher import dispatch_outbox
from worker.celery_app import celery


log = logging.getLogger(__name__)

POLL_SECONDS = 2
BATCH_SIZE = 100


async def claim_due_push_deliveries(db: AsyncSession, batch_size: int = BATCH_SIZE) -> list[str]:
    stmt = (
        select(PushDelivery.id)
        .where(
            PushDelivery.dead_lettered_at.is_(None),
            PushDelivery.status.in_(["pending", "failed"]),
            (PushDelivery.next_retry_at.is_(None)) | (PushDelivery.next_retry_at <= func.now()),
        )
        .order_by(PushDelivery.created_at.asc())
        .with_for_update(skip_locked=True)
        .limit(batch_size)
    )
    ids = list((await db.execute(stmt)).scalars().all())
    if not ids:
        return []

    # "publishing" keeps the next tick from enqueueing them twice
    await db.execute(
        update(PushDelivery)
        .where(PushDelivery.id.in_(ids))
        .values(status="publishing", last_attempt_at=func.now())
    )
    return ids


async def _tick() -> tuple[int, int]:
    engine = make_engine()
    Session = make_sessionmaker(engine)

    async with Session() as db:
        events = await dispatch_outbox(db, batch_size=BATCH_SIZE)

    async with Session() as db:
        ids = await claim_due_push_deliveries(db)
        await db.commit()

    await engine.dispose()

    for delivery_id in ids:
        celery.send_task("worker.tasks.publish_push_delivery", args=[delivery_id], queue="publish")
    if events or ids:
        log.info("tick: %d outbox events, %d push deliveries enqueued", events, len(ids))

    return events, len(ids)


async def main():
    logging.basicConfig(level=settings.log_level)
    celery.connection().ensure_connection(max_retries=3)

    log.info("dispatcher: started")
    while True:
        try:
            await _tick()
        except Exception:
            log.exception("dispatcher: tick crashed")
        await asyncio.sleep(POLL_SECONDS)


if __name__ == "__main__":
    asyncio.run(main())
