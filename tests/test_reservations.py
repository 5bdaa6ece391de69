from decimal import Decimal

from sqlalchemy import func, select

from kilofly.models.notification import Notification
from kilofly.models.reservation import Reservation, TrackingEvent
from kilofly.models.transaction import Transaction


async def test_buyer_books_listing(client, db_session, seed_listing):
    buyer = seed_listing["buyer"]
    r = await client.post(
        f"/v1/listings/{seed_listing['listing_id']}/reservations",
        headers=buyer["headers"],
        json={"requested_kg": "5", "item_description": "Livres"},
    )
    assert r.status_code == 201, r.text
    body = r.json()
    assert body["status"] == "pending"
    assert Decimal(body["total_price"]) == Decimal("50")

    events = (await db_session.execute(
        select(TrackingEvent.status).where(TrackingEvent.reservation_id == body["id"])
    )).scalars().all()
    assert events == ["pending"]

    seller_notes = (await db_session.execute(
        select(func.count()).select_from(Notification).where(Notification.user_id == seed_listing["seller"]["user_id"])
    )).scalar_one()
    assert seller_notes == 1


async def test_cannot_book_own_listing(client, seed_listing):
    r = await client.post(
        f"/v1/listings/{seed_listing['listing_id']}/reservations",
        headers=seed_listing["seller"]["headers"],
        json={"requested_kg": "1"},
    )
    assert r.status_code == 400


async def test_cannot_book_more_than_available(client, seed_listing, make_reservation):
    await make_reservation(status="approved", kg="15")
    r = await client.post(
        f"/v1/listings/{seed_listing['listing_id']}/reservations",
        headers=seed_listing["buyer"]["headers"],
        json={"requested_kg": "6"},
    )
    assert r.status_code == 409
    assert "5" in r.json()["detail"]


async def test_seller_approves_pending_reservation(client, db_session, seed_listing, make_reservation):
    res = await make_reservation(status="pending")
    r = await client.post(f"/v1/reservations/{res['reservation_id']}/approve", headers=seed_listing["seller"]["headers"])
    assert r.status_code == 200, r.text
    assert r.json()["status"] == "approved"

    # buyer cannot approve
    r = await client.post(f"/v1/reservations/{res['reservation_id']}/approve", headers=seed_listing["buyer"]["headers"])
    assert r.status_code == 403


async def test_buyer_cancels_before_payment(client, db_session, seed_listing, make_reservation):
    res = await make_reservation(status="approved", payment_status="requires_payment")
    r = await client.post(f"/v1/reservations/{res['reservation_id']}/cancel", headers=seed_listing["buyer"]["headers"])
    assert r.status_code == 200, r.text
    assert r.json() == {"success": True, "reservation_id": res["reservation_id"], "status": "cancelled"}

    status = (await db_session.execute(
        select(Reservation.status).where(Reservation.id == res["reservation_id"])
    )).scalar_one()
    tx_status = (await db_session.execute(
        select(Transaction.payment_status).where(Transaction.id == res["transaction_id"])
    )).scalar_one()
    assert status == "cancelled"
    assert tx_status == "cancelled"


async def test_cancel_refused_once_paid(client, seed_listing, make_reservation):
    res = await make_reservation(status="approved", payment_status="authorized")
    r = await client.post(f"/v1/reservations/{res['reservation_id']}/cancel", headers=seed_listing["buyer"]["headers"])
    assert r.status_code == 409


async def test_cancel_refused_for_seller_and_late_status(client, seed_listing, make_reservation):
    res = await make_reservation(status="approved")
    r = await client.post(f"/v1/reservations/{res['reservation_id']}/cancel", headers=seed_listing["seller"]["headers"])
    assert r.status_code == 403

    late = await make_reservation(status="in_progress")
    r = await client.post(f"/v1/reservations/{late['reservation_id']}/cancel", headers=seed_listing["buyer"]["headers"])
    assert r.status_code == 409


async def test_requires_bearer_token(client, seed_listing):
    r = await client.post(f"/v1/listings/{seed_listing['listing_id']}/reservations", json={"requested_kg": "1"})
    assert r.status_code == 401
