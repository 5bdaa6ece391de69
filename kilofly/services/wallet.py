"""
Wallet ledger: seller earnings, withdrawals and mobile-money payouts.

Balance changes are single conditional UPDATE statements; a debit only
succeeds when the row still holds enough funds at write time.
"""
from __future__ import annotations

import json
import logging
from decimal import Decimal
from typing import Any

from fastapi import HTTPException
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from kilofly.core.config import settings
from kilofly.core.errors import OperationRefused
from kilofly.core.ids import payout_reference, withdrawal_reference
from kilofly.models.user import User
from kilofly.models.wallet import Wallet, WalletTransaction
from kilofly.providers.cinetpay import TRANSFER_OK_CODES, format_phone_number, operator_code
from kilofly.services.audit import audit
from kilofly.services.content_filter import truncate_phone_for_log
from kilofly.services.escrow import quantize_amount, to_minor_units
from kilofly.services.notifications import notify_admins, notify_safely
from kilofly.services.payment_status import map_cinetpay_transfer_status
from kilofly.services.redaction import redact_payload

log = logging.getLogger(__name__)

PAYOUT_METHODS = ("wave", "orange_money")
RECENT_LEDGER_ROWS = 50


class WalletOperationError(OperationRefused):
    """Business refusal of a wallet operation (answered as 400)."""


def method_label(payout_method: str) -> str:
    return "Wave" if payout_method == "wave" else "Orange Money"


async def get_or_create_wallet(db: AsyncSession, user_id: str) -> Wallet:
    wallet = (await db.execute(select(Wallet).where(Wallet.user_id == user_id))).scalar_one_or_none()
    if wallet:
        return wallet
    wallet = Wallet(user_id=user_id, balance=Decimal("0"), currency=settings.wallet_currency)
    db.add(wallet)
    await db.flush()
    return wallet


async def recent_transactions(db: AsyncSession, wallet_id: str, limit: int = RECENT_LEDGER_ROWS) -> list[WalletTransaction]:
    stmt = (
        select(WalletTransaction)
        .where(WalletTransaction.wallet_id == wallet_id)
        .order_by(WalletTransaction.created_at.desc(), WalletTransaction.id.desc())
        .limit(limit)
    )
    return list((await db.execute(stmt)).scalars().all())


async def debit_wallet(db: AsyncSession, wallet: Wallet, amount: Decimal) -> bool:
    result = await db.execute(
        update(Wallet)
        .where(Wallet.id == wallet.id, Wallet.balance >= amount)
        .values(balance=Wallet.balance - amount)
        .execution_options(synchronize_session=False)
    )
    if not result.rowcount:
        return False
    await db.refresh(wallet, attribute_names=["balance"])
    return True


async def credit_wallet(db: AsyncSession, wallet_id: str, amount: Decimal) -> None:
    await db.execute(
        update(Wallet)
        .where(Wallet.id == wallet_id)
        .values(balance=Wallet.balance + amount)
        .execution_options(synchronize_session=False)
    )


def _validate_request(amount: Decimal, payout_method: str, phone_number: str, currency: str | None = None) -> None:
    currency = currency or settings.wallet_currency
    if quantize_amount(amount, currency) != amount:
        raise WalletOperationError(f"Montant invalide pour la devise {currency}")
    if amount < settings.min_withdrawal_amount:
        raise WalletOperationError(
            f"Le montant minimum de retrait est de {settings.min_withdrawal_amount:f} {settings.wallet_currency}"
        )
    if payout_method not in PAYOUT_METHODS:
        raise WalletOperationError("Méthode de retrait invalide")
    if not phone_number or not phone_number.strip():
        raise WalletOperationError("Numéro de téléphone requis")


async def _reserve_funds(
    db: AsyncSession,
    *,
    user_id: str,
    amount: Decimal,
    payout_method: str,
    phone_number: str,
    provider: str,
    reference: str,
    description: str,
) -> tuple[Wallet, WalletTransaction]:
    wallet = await get_or_create_wallet(db, user_id)
    if not await debit_wallet(db, wallet, amount):
        raise WalletOperationError("Solde insuffisant")

    tx = WalletTransaction(
        wallet_id=wallet.id,
        type="debit",
        amount=amount,
        status="pending",
        provider=provider,
        payout_method=payout_method,
        phone_number=phone_number,
        reference=reference,
        description=description,
        details={},
    )
    db.add(tx)
    await db.flush()
    return wallet, tx


async def request_withdrawal(
    db: AsyncSession,
    *,
    user_id: str,
    amount: Decimal,
    payout_method: str,
    phone_number: str,
) -> dict[str, Any]:
    """Manual payout: funds are reserved and an admin settles the transfer."""
    log.info(
        "withdrawal request: user=%s amount=%s method=%s phone=%s",
        user_id, amount, payout_method, truncate_phone_for_log(phone_number),
    )
    _validate_request(amount, payout_method, phone_number)

    reference = withdrawal_reference()
    label = method_label(payout_method)
    wallet, tx = await _reserve_funds(
        db,
        user_id=user_id,
        amount=amount,
        payout_method=payout_method,
        phone_number=phone_number,
        provider="manual",
        reference=reference,
        description=f"Demande de retrait {label}",
    )

    currency = wallet.currency
    await notify_safely(
        db,
        user_id=user_id,
        title="💸 Demande de retrait reçue",
        message=(
            f"Votre demande de retrait de {amount:f} {currency} vers {label} ({phone_number}) a été enregistrée. "
            "Délai de traitement : 1 à 3 heures."
        ),
        type="info",
    )

    user_name = (await db.execute(select(User.full_name).where(User.id == user_id))).scalar_one_or_none() or "Un utilisateur"
    await notify_admins(
        db,
        title="🔔 Nouvelle demande de retrait",
        message=f"{user_name} demande un retrait de {amount:f} {currency} vers {label} ({phone_number}). Réf: {reference}",
    )

    log.info("withdrawal request created: tx=%s reference=%s", tx.id, reference)
    return {
        "success": True,
        "transaction_id": tx.id,
        "reference": reference,
        "message": "Demande de retrait enregistrée. Vous serez notifié une fois le paiement effectué.",
        "new_balance": str(wallet.balance),
    }


async def request_payout(
    db: AsyncSession,
    cinetpay,
    *,
    user_id: str,
    amount: Decimal,
    payout_method: str,
    phone_number: str,
) -> dict[str, Any]:
    """
    Automatic payout through the CinetPay transfer API.

    On a refused transfer the exact amount is credited back, the ledger row is
    marked failed with the provider response and WalletOperationError is raised
    after the compensation has been flushed.
    """
    log.info(
        "payout request: user=%s amount=%s method=%s phone=%s",
        user_id, amount, payout_method, truncate_phone_for_log(phone_number),
    )
    _validate_request(amount, payout_method, phone_number)

    reference = payout_reference()
    label = method_label(payout_method)
    wallet, tx = await _reserve_funds(
        db,
        user_id=user_id,
        amount=amount,
        payout_method=payout_method,
        phone_number=phone_number,
        provider="cinetpay",
        reference=reference,
        description=f"Retrait {label}",
    )

    operator = operator_code(payout_method, phone_number)
    log.info("calling cinetpay transfer: operator=%s reference=%s", operator, reference)
    result = await cinetpay.send_transfer({
        "transaction_id": reference,
        "amount": to_minor_units(amount, wallet.currency),
        "currency": wallet.currency,
        "receiver": format_phone_number(phone_number),
        "operator": operator,
        "payment_method": "MOBILE_MONEY",
        "notify_url": f"{settings.public_base_url.rstrip('/')}/v1/webhooks/cinetpay/transfer",
        "metadata": json.dumps({"wallet_id": wallet.id, "user_id": user_id, "transaction_db_id": tx.id}),
    })
    safe_result = redact_payload(result)

    if result.get("code") not in TRANSFER_OK_CODES:
        await credit_wallet(db, wallet.id, amount)
        tx.status = "failed"
        tx.details = {"cinetpay_response": safe_result}
        await db.flush()
        log.warning("payout refused: reference=%s code=%s", reference, result.get("code"))
        raise WalletOperationError(result.get("message") or "Erreur CinetPay: Transfert refusé")

    data = result.get("data") if isinstance(result.get("data"), dict) else {}
    tx.external_id = data.get("transfer_id") or result.get("transaction_id")
    tx.details = {"cinetpay_response": safe_result}

    await notify_safely(
        db,
        user_id=user_id,
        title="💸 Retrait en cours",
        message=f"Votre retrait de {amount:f} {wallet.currency} vers {label} est en traitement",
        type="info",
    )
    return {
        "success": True,
        "transaction_id": tx.id,
        "reference": reference,
        "message": "Retrait en cours de traitement",
        "new_balance": str(wallet.balance),
    }


async def find_ledger_row(db: AsyncSession, transfer_id: str) -> WalletTransaction | None:
    row = (await db.execute(
        select(WalletTransaction).where(WalletTransaction.reference == transfer_id)
    )).scalar_one_or_none()
    if row:
        return row
    return (await db.execute(
        select(WalletTransaction).where(WalletTransaction.external_id == transfer_id).limit(1)
    )).scalar_one_or_none()


async def _wallet_owner(db: AsyncSession, wallet_id: str) -> tuple[str | None, str]:
    row = (await db.execute(select(Wallet.user_id, Wallet.currency).where(Wallet.id == wallet_id))).one_or_none()
    if not row:
        return None, settings.wallet_currency
    return row[0], row[1]


async def settle_ledger_row(
    db: AsyncSession,
    tx: WalletTransaction,
    new_status: str,
    *,
    extra_details: dict[str, Any] | None = None,
) -> bool:
    """
    Moves a pending debit to completed or failed. Terminal rows never change,
    so replayed webhooks are no-ops. Returns True when the row transitioned.
    """
    if new_status not in ("completed", "failed"):
        return False

    result = await db.execute(
        update(WalletTransaction)
        .where(WalletTransaction.id == tx.id, WalletTransaction.status == "pending")
        .values({
            WalletTransaction.status: new_status,
            WalletTransaction.details: {**(tx.details or {}), **(extra_details or {})},
        })
        .execution_options(synchronize_session=False)
    )
    if not result.rowcount:
        return False
    await db.refresh(tx)

    user_id, currency = await _wallet_owner(db, tx.wallet_id)
    if new_status == "failed":
        await credit_wallet(db, tx.wallet_id, Decimal(tx.amount))
        if user_id:
            await notify_safely(
                db,
                user_id=user_id,
                title="❌ Retrait échoué",
                message=f"Votre retrait de {Decimal(tx.amount):f} {currency} a échoué. Le montant a été recrédité sur votre portefeuille.",
                type="warning",
            )
    elif user_id:
        await notify_safely(
            db,
            user_id=user_id,
            title="✅ Retrait réussi !",
            message=f"Votre retrait de {Decimal(tx.amount):f} {currency} a été envoyé avec succès",
            type="success",
        )
    return True


async def handle_transfer_webhook(db: AsyncSession, body: dict[str, Any]) -> dict[str, Any]:
    transfer_id = body.get("cpm_trans_id") or body.get("transaction_id")
    if not transfer_id:
        log.warning("transfer webhook without transaction id")
        return {"received": True}

    tx = await find_ledger_row(db, str(transfer_id))
    if not tx:
        log.error("transfer webhook: transaction not found: %s", transfer_id)
        return {"received": True}

    new_status = map_cinetpay_transfer_status(body.get("cpm_trans_status") or body.get("treatment_status"))
    log.info("transfer webhook: tx=%s status=%s", tx.id, new_status)

    if tx.status != "pending":
        return {"received": True, "status": tx.status}

    if new_status == "pending":
        return {"received": True, "status": "pending"}

    await settle_ledger_row(db, tx, new_status, extra_details={"webhook_response": redact_payload(body)})
    return {"received": True, "status": new_status}


async def credit_escrow_release(
    db: AsyncSession,
    *,
    user_id: str,
    amount: Decimal,
    reservation_id: str,
    description: str,
    details: dict[str, Any] | None = None,
) -> WalletTransaction:
    wallet = await get_or_create_wallet(db, user_id)
    await credit_wallet(db, wallet.id, amount)
    tx = WalletTransaction(
        wallet_id=wallet.id,
        type="credit",
        amount=amount,
        status="completed",
        provider="escrow",
        reservation_id=reservation_id,
        description=description,
        details=details or {},
    )
    db.add(tx)
    await db.flush()
    return tx


async def admin_settle_withdrawal(
    db: AsyncSession,
    *,
    actor_user_id: str,
    transaction_id: str,
    outcome: str,
    note: str | None = None,
) -> WalletTransaction:
    tx = (await db.execute(select(WalletTransaction).where(WalletTransaction.id == transaction_id))).scalar_one_or_none()
    if not tx:
        raise HTTPException(status_code=404, detail="Withdrawal not found")
    if tx.type != "debit":
        raise HTTPException(status_code=400, detail="Not a withdrawal")
    if tx.status != "pending":
        raise HTTPException(status_code=409, detail=f"Withdrawal already {tx.status}")

    moved = await settle_ledger_row(
        db, tx, outcome,
        extra_details={"settled_by": actor_user_id, "note": note} if note else {"settled_by": actor_user_id},
    )
    if not moved:
        raise HTTPException(status_code=409, detail="Withdrawal was settled concurrently")

    await audit(
        db,
        actor_user_id=actor_user_id,
        action=f"withdrawal.{outcome}",
        target_type="wallet_transaction",
        target_id=tx.id,
        detail={"amount": str(tx.amount), "reference": tx.reference, "note": note},
    )
    return tx
