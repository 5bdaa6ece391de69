import hashlib
import hmac
import json
import time
from decimal import Decimal

from sqlalchemy import select

from kilofly.models.notification import Notification
from kilofly.models.reservation import Reservation
from kilofly.models.transaction import Transaction
from kilofly.models.wallet import Wallet, WalletTransaction


def _stripe_headers(payload: bytes, secret: str = "whsec_test") -> dict:
    ts = int(time.time())
    sig = hmac.new(secret.encode(), f"{ts}.".encode() + payload, hashlib.sha256).hexdigest()
    return {"Stripe-Signature": f"t={ts},v1={sig}", "Content-Type": "application/json"}


async def test_payment_intent_splits_and_replays(client, db_session, fake_stripe, seed_listing, make_reservation):
    res = await make_reservation(status="approved")
    headers = {**seed_listing["buyer"]["headers"], "Idempotency-Key": "pay-1"}
    body = {"reservation_id": res["reservation_id"]}

    r1 = await client.post("/v1/payments/stripe/intents", headers=headers, json=body)
    assert r1.status_code == 200, r1.text
    first = r1.json()
    assert first["buyer_total"] == "52.50"
    assert first["seller_amount"] == "47.50"
    assert first["platform_commission"] == "5.00"
    assert fake_stripe.intents[first["payment_intent_id"]]["amount"] == 5250

    r2 = await client.post("/v1/payments/stripe/intents", headers=headers, json=body)
    assert r2.status_code == 200
    assert r2.json() == first
    assert len(fake_stripe.intents) == 1

    payment_status = (await db_session.execute(
        select(Transaction.payment_status).where(Transaction.reservation_id == res["reservation_id"])
    )).scalar_one()
    assert payment_status == "requires_payment"


async def test_payment_requires_idempotency_key(client, seed_listing, make_reservation):
    res = await make_reservation(status="approved")
    r = await client.post(
        "/v1/payments/stripe/intents",
        headers=seed_listing["buyer"]["headers"],
        json={"reservation_id": res["reservation_id"]},
    )
    assert r.status_code == 400


async def test_payment_refused_before_approval(client, seed_listing, make_reservation):
    res = await make_reservation(status="pending")
    r = await client.post(
        "/v1/payments/stripe/intents",
        headers={**seed_listing["buyer"]["headers"], "Idempotency-Key": "pay-2"},
        json={"reservation_id": res["reservation_id"]},
    )
    assert r.status_code == 409


async def test_confirm_delivery_captures_and_credits_seller(client, db_session, fake_stripe, seed_listing, make_reservation):
    res = await make_reservation(status="in_progress", payment_status="authorized")
    url = f"/v1/reservations/{res['reservation_id']}/confirm-delivery"

    r = await client.post(url, headers=seed_listing["buyer"]["headers"])
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["status"] == "delivered"
    # 47.50 EUR at the 656 fallback rate
    assert Decimal(body["credited_amount"]) == Decimal("31160")
    assert body["wallet_currency"] == "XOF"
    assert fake_stripe.captured == [res["intent_id"]]

    balance = (await db_session.execute(
        select(Wallet.balance).where(Wallet.user_id == seed_listing["seller"]["user_id"])
    )).scalar_one()
    assert Decimal(balance) == Decimal("31160")

    credits = (await db_session.execute(
        select(WalletTransaction.type, WalletTransaction.reservation_id)
    )).all()
    assert credits == [("credit", res["reservation_id"])]

    tx = (await db_session.execute(
        select(Transaction.payment_status, Transaction.status).where(Transaction.id == res["transaction_id"])
    )).one()
    assert tuple(tx) == ("captured", "completed")

    # a second confirmation never pays twice
    r = await client.post(url, headers=seed_listing["buyer"]["headers"])
    assert r.status_code == 409
    assert fake_stripe.captured == [res["intent_id"]]


async def test_confirm_delivery_requires_payment(client, seed_listing, make_reservation):
    res = await make_reservation(status="approved", payment_status="requires_payment")
    r = await client.post(f"/v1/reservations/{res['reservation_id']}/confirm-delivery", headers=seed_listing["buyer"]["headers"])
    assert r.status_code == 409


async def test_stripe_webhook_rejects_bad_signature(client):
    payload = b'{"id":"evt_1","type":"payment_intent.succeeded"}'
    r = await client.post(
        "/v1/webhooks/stripe",
        content=payload,
        headers={"Stripe-Signature": "t=1,v1=deadbeef", "Content-Type": "application/json"},
    )
    assert r.status_code == 400
    assert r.json()["detail"].startswith("Invalid signature")


async def test_stripe_webhook_authorizes_and_moves_reservation(client, db_session, make_reservation):
    res = await make_reservation(status="approved", payment_status="requires_payment")
    payload = json.dumps({
        "id": "evt_2",
        "type": "payment_intent.amount_capturable_updated",
        "data": {"object": {"id": res["intent_id"], "status": "requires_capture"}},
    }).encode()

    r = await client.post("/v1/webhooks/stripe", content=payload, headers=_stripe_headers(payload))
    assert r.status_code == 200, r.text
    assert r.json()["payment_status"] == "authorized"

    payment_status = (await db_session.execute(
        select(Transaction.payment_status).where(Transaction.id == res["transaction_id"])
    )).scalar_one()
    assert payment_status == "authorized"


async def test_stripe_webhook_succeeded_marks_paid(client, db_session, make_reservation):
    res = await make_reservation(status="approved", payment_status="authorized")
    payload = json.dumps({
        "id": "evt_3",
        "type": "payment_intent.succeeded",
        "data": {"object": {"id": res["intent_id"], "status": "succeeded"}},
    }).encode()

    r = await client.post("/v1/webhooks/stripe", content=payload, headers=_stripe_headers(payload))
    assert r.status_code == 200, r.text

    reservation_status = (await db_session.execute(
        select(Reservation.status).where(Reservation.id == res["reservation_id"])
    )).scalar_one()
    assert reservation_status == "in_progress"


async def test_cinetpay_payment_webhook_verifies_with_provider(client, db_session, fake_cinetpay, seed_listing, make_reservation):
    res = await make_reservation(status="approved")
    r = await client.post(
        "/v1/payments/cinetpay",
        headers={**seed_listing["buyer"]["headers"], "Idempotency-Key": "cp-1"},
        json={"reservation_id": res["reservation_id"]},
    )
    assert r.status_code == 200, r.text
    body = r.json()
    # 50 EUR converted at the fallback rate, plus 5%
    assert body["currency"] == "XOF"
    assert Decimal(body["total_amount"]) == Decimal("34440")
    assert fake_cinetpay.inits[0]["customer_phone_number"] == "221781112233"

    r = await client.post("/v1/webhooks/cinetpay/payment", data={"cpm_trans_id": body["transaction_id"]})
    assert r.status_code == 200, r.text
    assert r.json()["status"] == "captured"

    payment_status = (await db_session.execute(
        select(Transaction.payment_status).where(Transaction.provider_reference == body["transaction_id"])
    )).scalar_one()
    assert payment_status == "captured"


async def test_checkout_session_records_transaction(client, db_session, fake_stripe, seed_listing, make_reservation):
    res = await make_reservation(status="approved")
    r = await client.post(
        "/v1/payments/stripe/checkout",
        headers={**seed_listing["buyer"]["headers"], "Idempotency-Key": "cs-1"},
        json={"reservation_id": res["reservation_id"]},
    )
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["session_id"] == "cs_test_1"
    assert body["url"] == "https://checkout.stripe.test/cs_test_1"

    sent = fake_stripe.sessions[0]
    assert sent["amount_minor"] == 5250
    assert sent["currency"] == "EUR"
    assert sent["customer_email"] == "buyer@test.com"
    assert sent["success_url"].endswith(f"/payment-success?reservation={res['reservation_id']}")

    row = (await db_session.execute(
        select(Transaction.id, Transaction.provider_reference, Transaction.payment_status)
        .where(Transaction.reservation_id == res["reservation_id"])
    )).one()
    assert tuple(row) == (body["transaction_id"], "cs_test_1", "requires_payment")


async def test_cinetpay_init_refusal_is_reported(client, db_session, fake_cinetpay, seed_listing, make_reservation):
    res = await make_reservation(status="approved")
    fake_cinetpay.init_response = {"code": "608", "message": "MINIMUM_REQUIRED_FIELDS"}

    r = await client.post(
        "/v1/payments/cinetpay",
        headers={**seed_listing["buyer"]["headers"], "Idempotency-Key": "cp-refused"},
        json={"reservation_id": res["reservation_id"]},
    )
    assert r.status_code == 400
    assert r.json() == {"success": False, "error": "MINIMUM_REQUIRED_FIELDS"}


async def _intent_event(client, event_id: str, event_type: str, intent_id: str, status: str):
    payload = json.dumps({
        "id": event_id,
        "type": event_type,
        "data": {"object": {"id": intent_id, "status": status}},
    }).encode()
    return await client.post("/v1/webhooks/stripe", content=payload, headers=_stripe_headers(payload))


async def test_stripe_webhook_payment_failed_notifies_buyer(client, db_session, seed_listing, make_reservation):
    res = await make_reservation(status="approved", payment_status="requires_payment")

    r = await _intent_event(client, "evt_4", "payment_intent.payment_failed", res["intent_id"], "requires_payment_method")
    assert r.status_code == 200, r.text
    assert r.json()["payment_status"] == "failed"

    tx_status = (await db_session.execute(
        select(Transaction.payment_status).where(Transaction.id == res["transaction_id"])
    )).scalar_one()
    assert tx_status == "failed"

    titles = (await db_session.execute(
        select(Notification.title).where(Notification.user_id == seed_listing["buyer"]["user_id"])
    )).scalars().all()
    assert titles == ["❌ Paiement échoué"]

    # a late success does not revive a failed payment
    r = await _intent_event(client, "evt_5", "payment_intent.succeeded", res["intent_id"], "succeeded")
    assert r.json()["payment_status"] == "failed"


async def test_stripe_webhook_canceled_marks_cancelled(client, db_session, make_reservation):
    res = await make_reservation(status="approved", payment_status="requires_payment")

    r = await _intent_event(client, "evt_6", "payment_intent.canceled", res["intent_id"], "canceled")
    assert r.status_code == 200, r.text
    assert r.json()["payment_status"] == "cancelled"

    row = (await db_session.execute(
        select(Transaction.payment_status, Transaction.status).where(Transaction.id == res["transaction_id"])
    )).one()
    assert row[0] == "cancelled"


async def test_cancelled_reservation_payment_cannot_be_confirmed(client, db_session, fake_stripe, seed_listing, make_reservation):
    res = await make_reservation(status="approved")
    buyer_headers = seed_listing["buyer"]["headers"]

    r = await client.post(
        "/v1/payments/stripe/intents",
        headers={**buyer_headers, "Idempotency-Key": "pay-cancel"},
        json={"reservation_id": res["reservation_id"]},
    )
    assert r.status_code == 200, r.text
    intent_id = r.json()["payment_intent_id"]

    r = await client.post(f"/v1/reservations/{res['reservation_id']}/cancel", headers=buyer_headers)
    assert r.status_code == 200, r.text
    assert fake_stripe.cancelled == [intent_id]

    # the buyer completes the card step anyway
    fake_stripe.intents[intent_id]["status"] = "requires_capture"
    r = await client.post(f"/v1/payments/stripe/intents/{intent_id}/confirm", headers=buyer_headers)
    assert r.status_code == 409

    r = await _intent_event(client, "evt_7", "payment_intent.amount_capturable_updated", intent_id, "requires_capture")
    assert r.json()["payment_status"] == "cancelled"

    reservation_status = (await db_session.execute(
        select(Reservation.status).where(Reservation.id == res["reservation_id"])
    )).scalar_one()
    tx_status = (await db_session.execute(
        select(Transaction.payment_status).where(Transaction.reservation_id == res["reservation_id"])
    )).scalar_one()
    assert reservation_status == "cancelled"
    assert tx_status == "cancelled"
