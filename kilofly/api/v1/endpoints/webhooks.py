import json
import logging
from urllib.parse import parse_qsl

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from kilofly.core.config import settings
from kilofly.core.db import get_db
from kilofly.providers.cinetpay import CinetPayClient
from kilofly.providers.registry import get_cinetpay_client
from kilofly.providers.stripe import StripeSignatureError, verify_webhook_signature
from kilofly.services import payments as payment_service
from kilofly.services import wallet as wallet_service
from kilofly.services.redaction import redact_payload

log = logging.getLogger(__name__)

router = APIRouter()


async def parse_webhook_body(request: Request) -> dict:
    """CinetPay posts JSON, multipart or urlencoded bodies depending on the product."""
    content_type = (request.headers.get("content-type") or "").lower()
    try:
        if "application/json" in content_type:
            parsed = await request.json()
            return parsed if isinstance(parsed, dict) else {}
        if "multipart/form-data" in content_type or "application/x-www-form-urlencoded" in content_type:
            form = await request.form()
            return {k: v for k, v in form.items() if isinstance(v, str)}

        raw = (await request.body()).decode("utf-8", errors="replace")
        obj = dict(parse_qsl(raw))
        if not obj and raw:
            try:
                parsed = json.loads(raw)
                return parsed if isinstance(parsed, dict) else {}
            except ValueError:
                return {}
        return obj
    except Exception:
        log.exception("failed to parse webhook body")
        return {}


@router.post("/webhooks/cinetpay/transfer")
async def cinetpay_transfer_webhook(request: Request, db: AsyncSession = Depends(get_db)) -> dict:
    # Always 200: a 5xx makes CinetPay mark the payout as unstable
    body = await parse_webhook_body(request)
    log.info("cinetpay transfer webhook: %s", redact_payload(body))
    try:
        resp = await wallet_service.handle_transfer_webhook(db, body)
        await db.commit()
        return resp
    except Exception as e:
        log.exception("cinetpay transfer webhook failed")
        await db.rollback()
        return {"received": True, "error": str(e)}


@router.post("/webhooks/cinetpay/payment")
async def cinetpay_payment_webhook(
    request: Request,
    cinetpay: CinetPayClient = Depends(get_cinetpay_client),
    db: AsyncSession = Depends(get_db),
) -> dict:
    body = await parse_webhook_body(request)
    log.info("cinetpay payment webhook: %s", redact_payload(body))
    resp = await payment_service.handle_cinetpay_payment_webhook(db, cinetpay, body)
    await db.commit()
    return resp


@router.post("/webhooks/stripe")
async def stripe_webhook(request: Request, db: AsyncSession = Depends(get_db)) -> dict:
    payload = await request.body()
    try:
        verify_webhook_signature(
            payload,
            request.headers.get("stripe-signature"),
            settings.stripe_webhook_secret.get_secret_value(),
        )
    except StripeSignatureError as e:
        log.warning("stripe webhook rejected: %s", e)
        raise HTTPException(status_code=400, detail=f"Invalid signature: {e}") from e

    try:
        event = json.loads(payload)
    except ValueError as e:
        raise HTTPException(status_code=400, detail="Invalid JSON payload") from e

    resp = await payment_service.handle_stripe_event(db, event)
    await db.commit()
    return resp
