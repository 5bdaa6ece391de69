from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from kilofly.models.notification import PushToken
from kilofly.models.push_delivery import PushDelivery

log = logging.getLogger(__name__)


async def queue_push_for_user(
    db: AsyncSession,
    *,
    user_id: str,
    title: str,
    body: str,
    data: dict[str, Any] | None = None,
) -> list[PushDelivery]:
    """One pending delivery per registered device; the dispatcher picks them up."""
    tokens = (await db.execute(select(PushToken).where(PushToken.user_id == user_id))).scalars().all()
    if not tokens:
        log.info("no push tokens for user %s", user_id)
        return []

    deliveries = []
    for t in tokens:
        d = PushDelivery(
            user_id=user_id,
            token=t.token,
            platform=t.platform,
            title=title,
            body=body,
            data=dict(data or {}),
            status="pending",
            attempts=0,
        )
        db.add(d)
        deliveries.append(d)

    await db.flush()
    log.info("queued %d push deliveries for user %s", len(deliveries), user_id)
    return deliveries
