import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from kilofly.core.config import settings
from kilofly.core.db import get_db
from kilofly.providers.cinetpay import CinetPayClient
from kilofly.providers.registry import get_cinetpay_client
from kilofly.schemas.wallet import WalletOut, WalletTransactionOut, WithdrawalCreate, WithdrawalOut
from kilofly.services import wallet as wallet_service
from kilofly.services.auth import Actor, get_actor
from kilofly.services.idempotency import (
    require_idempotency_key,
    reserve_idempotency,
    store_idempotency_response,
)
from kilofly.services.rate_limit import TokenRateLimiter, enforce_rate_limit, get_rate_limiter

log = logging.getLogger(__name__)

router = APIRouter()


async def _check_withdrawal_rate(limiter: TokenRateLimiter, user_id: str) -> None:
    await enforce_rate_limit(
        limiter,
        key=f"withdrawals:{user_id}",
        limit=settings.withdrawal_rate_limit,
        window_seconds=settings.withdrawal_rate_window_seconds,
    )


def _replay(response: dict):
    # Stored refusals replay with their original status code
    if response.get("success") is False:
        return JSONResponse(status_code=400, content=response)
    return WithdrawalOut(**response)


@router.get("/wallet", response_model=WalletOut)
async def get_wallet(
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
) -> WalletOut:
    wallet = await wallet_service.get_or_create_wallet(db, actor.user_id)
    rows = await wallet_service.recent_transactions(db, wallet.id)
    resp = WalletOut(
        id=wallet.id,
        user_id=wallet.user_id,
        balance=wallet.balance,
        currency=wallet.currency,
        transactions=[
            WalletTransactionOut(
                id=t.id,
                type=t.type,
                amount=t.amount,
                status=t.status,
                provider=t.provider,
                payout_method=t.payout_method,
                phone_number=t.phone_number,
                reference=t.reference,
                description=t.description,
                created_at=str(t.created_at),
            )
            for t in rows
        ],
    )
    await db.commit()
    return resp


@router.post("/wallet/withdrawals", response_model=WithdrawalOut)
async def request_withdrawal(
    payload: WithdrawalCreate,
    request: Request,
    actor: Actor = Depends(get_actor),
    idempotency_key: str = Depends(require_idempotency_key),
    limiter: TokenRateLimiter = Depends(get_rate_limiter),
    db: AsyncSession = Depends(get_db),
):
    stored = await reserve_idempotency(
        db,
        user_id=actor.user_id,
        key=idempotency_key,
        path=request.url.path,
        body=payload.model_dump(mode="json"),
    )
    if stored is not None:
        return _replay(stored)

    await _check_withdrawal_rate(limiter, actor.user_id)

    resp = await wallet_service.request_withdrawal(
        db,
        user_id=actor.user_id,
        amount=payload.amount,
        payout_method=payload.payout_method,
        phone_number=payload.phone_number,
    )
    await store_idempotency_response(db, user_id=actor.user_id, key=idempotency_key, response=resp)
    await db.commit()
    return WithdrawalOut(**resp)


@router.post("/wallet/payouts", response_model=WithdrawalOut)
async def request_payout(
    payload: WithdrawalCreate,
    request: Request,
    actor: Actor = Depends(get_actor),
    idempotency_key: str = Depends(require_idempotency_key),
    limiter: TokenRateLimiter = Depends(get_rate_limiter),
    cinetpay: CinetPayClient = Depends(get_cinetpay_client),
    db: AsyncSession = Depends(get_db),
):
    stored = await reserve_idempotency(
        db,
        user_id=actor.user_id,
        key=idempotency_key,
        path=request.url.path,
        body=payload.model_dump(mode="json"),
    )
    if stored is not None:
        return _replay(stored)

    await _check_withdrawal_rate(limiter, actor.user_id)

    try:
        resp = await wallet_service.request_payout(
            db,
            cinetpay,
            user_id=actor.user_id,
            amount=payload.amount,
            payout_method=payload.payout_method,
            phone_number=payload.phone_number,
        )
    except wallet_service.WalletOperationError as e:
        log.info("payout refused for user %s: %s", actor.user_id, e.message)
        # The refund and the failed ledger row are already flushed; keep them
        failure = {"success": False, "error": e.message}
        await store_idempotency_response(db, user_id=actor.user_id, key=idempotency_key, response=failure)
        await db.commit()
        return JSONResponse(status_code=400, content=failure)

    await store_idempotency_response(db, user_id=actor.user_id, key=idempotency_key, response=resp)
    await db.commit()
    return WithdrawalOut(**resp)
