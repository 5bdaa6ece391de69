import asyncio
import logging

from worker.celery_app import celery
from kilofly.core.db import make_engine, make_sessionmaker
from kilofly.providers.registry import close_clients, get_fcm_client
from worker.publish import publish_push_delivery

log = logging.getLogger(__name__)


async def _publish_push_delivery(delivery_id: str) -> None:
    engine = make_engine()
    Session = make_sessionmaker(engine)

    try:
        async with Session() as db:
            status = await publish_push_delivery(db, delivery_id, get_fcm_client())
            await db.commit()
        log.info("push delivery %s -> %s", delivery_id, status)
    finally:
        await close_clients()
        await engine.dispose()


@celery.task(name="worker.tasks.publish_push_delivery", bind=True, max_retries=5)
def publish_push_delivery_task(self, delivery_id: str) -> None:
    asyncio.run(_publish_push_delivery(delivery_id))
