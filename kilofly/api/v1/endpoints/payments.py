from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from kilofly.core.db import get_db
from kilofly.providers.cinetpay import CinetPayClient
from kilofly.providers.registry import get_cinetpay_client, get_stripe_client
from kilofly.providers.stripe import StripeClient
from kilofly.schemas.payment import (
    CheckoutSessionCreate,
    CheckoutSessionOut,
    CinetPayPaymentCreate,
    PaymentIntentCreate,
    PaymentIntentOut,
    PaymentsConfigOut,
)
from kilofly.services import payments as payment_service
from kilofly.services.auth import Actor, get_actor
from kilofly.services.idempotency import (
    require_idempotency_key,
    reserve_idempotency,
    store_idempotency_response,
)

router = APIRouter()


@router.get("/payments/config", response_model=PaymentsConfigOut)
async def payments_config() -> PaymentsConfigOut:
    return PaymentsConfigOut(**payment_service.payments_config())


@router.post("/payments/stripe/intents", response_model=PaymentIntentOut)
async def create_payment_intent(
    payload: PaymentIntentCreate,
    request: Request,
    actor: Actor = Depends(get_actor),
    idempotency_key: str = Depends(require_idempotency_key),
    stripe: StripeClient = Depends(get_stripe_client),
    db: AsyncSession = Depends(get_db),
) -> PaymentIntentOut:
    stored = await reserve_idempotency(
        db,
        user_id=actor.user_id,
        key=idempotency_key,
        path=request.url.path,
        body=payload.model_dump(mode="json"),
    )
    if stored is not None:
        # Safe retry: return stored response
        return PaymentIntentOut(**stored)

    resp = await payment_service.create_payment_intent(
        db,
        stripe,
        buyer_id=actor.user_id,
        reservation_id=payload.reservation_id,
        idempotency_key=idempotency_key,
    )
    await store_idempotency_response(db, user_id=actor.user_id, key=idempotency_key, response=resp)
    await db.commit()
    return PaymentIntentOut(**resp)


@router.post("/payments/stripe/checkout", response_model=CheckoutSessionOut)
async def create_checkout_session(
    payload: CheckoutSessionCreate,
    request: Request,
    actor: Actor = Depends(get_actor),
    idempotency_key: str = Depends(require_idempotency_key),
    stripe: StripeClient = Depends(get_stripe_client),
    db: AsyncSession = Depends(get_db),
) -> CheckoutSessionOut:
    stored = await reserve_idempotency(
        db,
        user_id=actor.user_id,
        key=idempotency_key,
        path=request.url.path,
        body=payload.model_dump(mode="json"),
    )
    if stored is not None:
        return CheckoutSessionOut(**stored)

    resp = await payment_service.create_checkout_session(
        db,
        stripe,
        buyer_id=actor.user_id,
        reservation_id=payload.reservation_id,
        success_url=payload.success_url,
        cancel_url=payload.cancel_url,
        idempotency_key=idempotency_key,
    )
    await store_idempotency_response(db, user_id=actor.user_id, key=idempotency_key, response=resp)
    await db.commit()
    return CheckoutSessionOut(**resp)


@router.get("/payments/stripe/intents/{intent_id}")
async def get_payment_intent(
    intent_id: str,
    actor: Actor = Depends(get_actor),
    stripe: StripeClient = Depends(get_stripe_client),
    db: AsyncSession = Depends(get_db),
) -> dict:
    return await payment_service.get_payment_intent(db, stripe, user_id=actor.user_id, intent_id=intent_id)


@router.post("/payments/stripe/intents/{intent_id}/confirm")
async def confirm_payment_intent(
    intent_id: str,
    actor: Actor = Depends(get_actor),
    stripe: StripeClient = Depends(get_stripe_client),
    db: AsyncSession = Depends(get_db),
) -> dict:
    resp = await payment_service.mark_transaction_paid(db, stripe, user_id=actor.user_id, intent_id=intent_id)
    await db.commit()
    return resp


@router.post("/payments/cinetpay")
async def create_cinetpay_payment(
    payload: CinetPayPaymentCreate,
    request: Request,
    actor: Actor = Depends(get_actor),
    idempotency_key: str = Depends(require_idempotency_key),
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
        return stored

    # A refused init (provider code other than 201) surfaces as OperationRefused -> 400
    resp = await payment_service.init_cinetpay_payment(
        db,
        cinetpay,
        buyer_id=actor.user_id,
        reservation_id=payload.reservation_id,
        return_url=payload.return_url,
        cancel_url=payload.cancel_url,
        customer_phone=payload.customer_phone,
    )

    await store_idempotency_response(db, user_id=actor.user_id, key=idempotency_key, response=resp)
    await db.commit()
    return resp
