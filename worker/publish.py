from __future__ import annotations
import logging

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql import func

from kilofly.core.errors import ProviderError
from kilofly.models.notification import PushToken
from kilofly.models.push_delivery import PushAttempt, PushDelivery
from kilofly.providers.fcm import FcmClient, PushResult
from kilofly.services.redaction import redact_payload
from kilofly.services.retry import next_retry_at

log = logging.getLogger(__name__)

MAX_PUSH_ATTEMPTS = 5


async def publish_push_delivery(db: AsyncSession, delivery_id: str, fcm: FcmClient) -> str | None:
    """Send one delivery and record the attempt. Returns the resulting status."""
    d = (await db.execute(select(PushDelivery).where(PushDelivery.id == delivery_id))).scalar_one_or_none()
    if not d or d.dead_lettered_at is not None or d.status == "success":
        return None

    if d.attempts >= MAX_PUSH_ATTEMPTS:
        d.status = "dead_lettered"
        d.dead_lettered_at = func.now()
        d.status_detail = "max attempts exceeded"
        d.next_retry_at = None
        return d.status

    try:
        result = await fcm.send(token=d.token, title=d.title, body=d.body, data=d.data)
    except ProviderError as e:
        # OAuth token exchange failed; the message itself was never tried
        result = PushResult(
            ok=False, unregistered=False, retryable=True, status_code=e.status_code,
            detail=e.detail, error_code="AUTH_FAILED", error_message=e.message,
        )

    d.attempts += 1
    d.last_attempt_at = func.now()

    db.add(PushAttempt(
        delivery_id=d.id,
        status="success" if result.ok else "failed",
        response=redact_payload(result.detail or {}),
        error_code=result.error_code,
        error_message=result.error_message,
    ))

    if result.ok:
        d.status = "success"
        d.last_success_at = func.now()
        d.last_error = None
        d.status_detail = None
        d.next_retry_at = None
        return d.status

    # Failure
    d.status = "failed"
    d.last_error = result.error_message
    d.status_detail = result.error_code

    if result.unregistered:
        res = await db.execute(delete(PushToken).where(PushToken.token == d.token))
        log.info("push token unregistered, removed %d row(s) for user %s", res.rowcount or 0, d.user_id)

    if (not result.retryable) or (d.attempts >= MAX_PUSH_ATTEMPTS):
        d.status = "dead_lettered"
        d.dead_lettered_at = func.now()
        d.next_retry_at = None
        return d.status

    d.next_retry_at, seconds = next_retry_at(d.attempts)
    log.info("push delivery %s failed (%s), retry in %ds", d.id, result.error_code, seconds)
    return d.status
