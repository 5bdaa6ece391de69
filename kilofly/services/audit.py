from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from kilofly.models.audit_log import AuditLog
from kilofly.services.redaction import redact_payload

log = logging.getLogger(__name__)


async def audit(
    db: AsyncSession,
    *,
    actor_user_id: str | None,
    action: str,
    target_type: str | None = None,
    target_id: str | None = None,
    detail: dict[str, Any] | None = None,
) -> AuditLog:
    """Adds an audit row to the caller's transaction. Secrets and phone numbers are masked."""
    entry = AuditLog(
        actor_user_id=actor_user_id,
        action=action,
        target_type=target_type,
        target_id=target_id,
        detail=redact_payload(detail or {}),
    )
    db.add(entry)
    log.info("audit %s by %s on %s:%s", action, actor_user_id or "system", target_type or "-", target_id or "-")
    return entry
