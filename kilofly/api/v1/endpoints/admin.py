import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from kilofly.core.db import get_db
from kilofly.providers.exchange_rates import ExchangeRateApiClient
from kilofly.providers.registry import get_exchange_rate_client
from kilofly.schemas.admin import AdminEmailIn
from kilofly.schemas.wallet import SettleWithdrawal
from kilofly.services import currency as currency_service
from kilofly.services import wallet as wallet_service
from kilofly.services.audit import audit
from kilofly.services.auth import Actor, require_admin
from kilofly.services.email_templates import render_admin_email
from kilofly.services.emails import queue_email

log = logging.getLogger(__name__)

router = APIRouter()


async def _settle(db: AsyncSession, actor: Actor, transaction_id: str, outcome: str, note: str | None) -> dict:
    tx = await wallet_service.admin_settle_withdrawal(
        db, actor_user_id=actor.user_id, transaction_id=transaction_id, outcome=outcome, note=note
    )
    resp = {"success": True, "transaction_id": tx.id, "status": outcome}
    await db.commit()
    return resp


@router.post("/admin/withdrawals/{transaction_id}/complete")
async def complete_withdrawal(
    transaction_id: str,
    payload: SettleWithdrawal | None = None,
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    return await _settle(db, actor, transaction_id, "completed", payload.note if payload else None)


@router.post("/admin/withdrawals/{transaction_id}/fail")
async def fail_withdrawal(
    transaction_id: str,
    payload: SettleWithdrawal | None = None,
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    return await _settle(db, actor, transaction_id, "failed", payload.note if payload else None)


@router.post("/admin/emails", status_code=202)
async def send_admin_email(
    payload: AdminEmailIn,
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    email_id = queue_email(db, to=payload.to, subject=payload.subject, html=render_admin_email(payload.message))
    await audit(
        db,
        actor_user_id=actor.user_id,
        action="email.sent",
        target_type="email",
        target_id=email_id,
        detail={"to": payload.to, "subject": payload.subject},
    )
    await db.commit()
    log.info("admin email queued: id=%s by=%s", email_id, actor.user_id)
    return {"success": True, "id": email_id}


@router.post("/admin/exchange-rates/refresh")
async def refresh_exchange_rates(
    actor: Actor = Depends(require_admin),
    client: ExchangeRateApiClient = Depends(get_exchange_rate_client),
    db: AsyncSession = Depends(get_db),
) -> dict:
    resp = await currency_service.refresh_exchange_rates(db, client)
    await audit(
        db,
        actor_user_id=actor.user_id,
        action="exchange_rates.refreshed",
        target_type="exchange_rate",
        detail={"pairs": resp["pairs"]},
    )
    await db.commit()
    return resp
