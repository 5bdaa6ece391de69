from sqlalchemy import func, select

from kilofly.models.notification import Notification, PushToken
from kilofly.models.outbox import OutboxEvent
from kilofly.models.push_delivery import PushDelivery
from kilofly.services import notifications as notification_service

INTERNAL = {"X-Internal-Key": "test-internal"}


async def test_direct_push_without_tokens_sends_nothing(client, seed_users):
    r = await client.post(
        "/v1/notifications/push",
        headers=INTERNAL,
        json={"user_id": seed_users["buyer"]["user_id"], "title": "Hello", "body": "World"},
    )
    assert r.status_code == 200, r.text
    assert r.json()["sent"] == 0


async def test_direct_push_requires_internal_key(client, seed_users):
    r = await client.post(
        "/v1/notifications/push",
        headers={"X-Internal-Key": "wrong"},
        json={"user_id": seed_users["buyer"]["user_id"], "title": "Hello", "body": "World"},
    )
    assert r.status_code == 403


async def test_direct_push_queues_one_delivery_per_token(client, db_session, seed_users):
    buyer = seed_users["buyer"]
    for token, platform in (("tok-a", "android"), ("tok-b", "ios")):
        r = await client.post("/v1/push-tokens", headers=buyer["headers"], json={"token": token, "platform": platform})
        assert r.status_code == 201, r.text

    r = await client.post(
        "/v1/notifications/push",
        headers=INTERNAL,
        json={"user_id": buyer["user_id"], "title": "Hello", "body": "World", "data": {"k": "v"}},
    )
    assert r.json()["sent"] == 2

    rows = (await db_session.execute(
        select(PushDelivery.token, PushDelivery.status).order_by(PushDelivery.token)
    )).all()
    assert [tuple(r) for r in rows] == [("tok-a", "pending"), ("tok-b", "pending")]


async def test_push_token_moves_to_latest_user(client, db_session, seed_users):
    r = await client.post("/v1/push-tokens", headers=seed_users["buyer"]["headers"], json={"token": "shared"})
    assert r.status_code == 201
    r = await client.post("/v1/push-tokens", headers=seed_users["seller"]["headers"], json={"token": "shared"})
    assert r.status_code == 201

    owners = (await db_session.execute(select(PushToken.user_id))).scalars().all()
    assert owners == [seed_users["seller"]["user_id"]]

    r = await client.request("DELETE", "/v1/push-tokens", headers=seed_users["buyer"]["headers"], json={"token": "shared"})
    assert r.json()["deleted"] == 0
    r = await client.request("DELETE", "/v1/push-tokens", headers=seed_users["seller"]["headers"], json={"token": "shared"})
    assert r.json()["deleted"] == 1


async def test_preferences_defaults_and_update(client, seed_users):
    headers = seed_users["buyer"]["headers"]
    r = await client.get("/v1/notifications/preferences", headers=headers)
    assert r.json() == {
        "push_enabled": True,
        "alerts_enabled": True,
        "messages_enabled": True,
        "responses_enabled": True,
        "promotions_enabled": False,
    }

    r = await client.put("/v1/notifications/preferences", headers=headers, json={"alerts_enabled": False})
    assert r.status_code == 200, r.text
    assert r.json()["alerts_enabled"] is False
    assert r.json()["push_enabled"] is True


async def test_push_disabled_skips_outbox(client, db_session, seed_listing, make_reservation):
    buyer = seed_listing["buyer"]
    await client.put("/v1/notifications/preferences", headers=buyer["headers"], json={"push_enabled": False})
    res = await make_reservation(status="pending")

    r = await client.post(f"/v1/reservations/{res['reservation_id']}/approve", headers=seed_listing["seller"]["headers"])
    assert r.status_code == 200

    in_app = (await db_session.execute(
        select(func.count()).select_from(Notification).where(Notification.user_id == buyer["user_id"])
    )).scalar_one()
    pushes = (await db_session.execute(
        select(func.count()).select_from(OutboxEvent).where(OutboxEvent.event_type == "notification.push")
    )).scalar_one()
    assert in_app == 1
    assert pushes == 0


async def test_list_and_mark_read(client, seed_listing, make_reservation):
    res = await make_reservation(status="pending")
    await client.post(f"/v1/reservations/{res['reservation_id']}/reject", headers=seed_listing["seller"]["headers"])

    headers = seed_listing["buyer"]["headers"]
    r = await client.get("/v1/notifications", headers=headers, params={"unread_only": True})
    items = r.json()
    assert len(items) == 1
    assert items[0]["type"] == "warning"

    r = await client.post(f"/v1/notifications/{items[0]['id']}/read", headers=headers)
    assert r.status_code == 200
    r = await client.get("/v1/notifications", headers=headers, params={"unread_only": True})
    assert r.json() == []

    r = await client.post("/v1/notifications/ntf_missing/read", headers=headers)
    assert r.status_code == 404


async def test_new_listing_writes_outbox_event(client, db_session, seed_users):
    r = await client.post(
        "/v1/listings",
        headers=seed_users["seller"]["headers"],
        json={
            "departure": "Paris",
            "arrival": "Abidjan",
            "departure_date": "2030-01-15",
            "available_kg": "23",
            "price_per_kg": "8.50",
        },
    )
    assert r.status_code == 201, r.text

    events = (await db_session.execute(select(OutboxEvent.event_type, OutboxEvent.status))).all()
    assert [tuple(e) for e in events] == [("listing.created", "pending")]


async def test_failed_side_effect_notification_keeps_session_usable(db_session, session_factory, seed_users, monkeypatch):
    buyer_id = seed_users["buyer"]["user_id"]
    async with session_factory() as other:
        other.add(Notification(id="ntf_taken", user_id=buyer_id, title="old", message="old", type="info", read=False))
        await other.commit()

    async def _conflicting_insert(db, **kwargs):
        db.add(Notification(id="ntf_taken", user_id=kwargs["user_id"], title=kwargs["title"], message="", type="info", read=False))
        await db.flush()

    db_session.add(Notification(id="ntf_kept", user_id=buyer_id, title="kept", message="kept", type="info", read=False))
    await db_session.flush()

    monkeypatch.setattr(notification_service, "send_notification", _conflicting_insert)
    await notification_service.notify_safely(db_session, user_id=buyer_id, title="dup", message="dup")
    await db_session.commit()

    titles = (await db_session.execute(
        select(Notification.title).where(Notification.user_id == buyer_id).order_by(Notification.id)
    )).scalars().all()
    assert titles == ["kept", "old"]
