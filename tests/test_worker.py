from sqlalchemy import select

from kilofly.core.ids import gen_id
from kilofly.models.notification import Notification, PushToken
from kilofly.models.outbox import OutboxEvent
from kilofly.models.push_delivery import PushAttempt, PushDelivery
from kilofly.providers.fcm import PushResult
from kilofly.services.outbox_dispatcher import dispatch_outbox
from worker.publish import MAX_PUSH_ATTEMPTS, publish_push_delivery
from worker.tasks import apply_outbox_event


class FakeFcm:
    def __init__(self, result: PushResult):
        self.result = result
        self.sent: list[dict] = []

    async def send(self, *, token, title, body, data=None):
        self.sent.append({"token": token, "title": title, "body": body, "data": data})
        return self.result


class FakeResend:
    def __init__(self):
        self.sent: list[dict] = []

    async def send(self, *, to, subject, html, attachments=None):
        msg = {"to": to, "subject": subject, "html": html}
        if attachments:
            msg["attachments"] = attachments
        self.sent.append(msg)
        return {"id": "em_1"}


OK = PushResult(ok=True, unregistered=False, retryable=False, status_code=200, detail={"name": "m/1"})
GONE = PushResult(ok=False, unregistered=True, retryable=False, status_code=404, detail={}, error_code="UNREGISTERED")
BUSY = PushResult(ok=False, unregistered=False, retryable=True, status_code=503, detail={}, error_code="HTTP_503")


async def _token(db, user_id: str, token: str = "tok-1") -> None:
    db.add(PushToken(id=gen_id("ptk"), user_id=user_id, token=token, platform="android"))
    await db.commit()


async def _delivery(db, user_id: str, *, attempts: int = 0, token: str = "tok-1") -> str:
    d = PushDelivery(
        id=gen_id("pdl"), user_id=user_id, token=token, platform="android",
        title="T", body="B", data={"k": "v"}, status="pending", attempts=attempts,
    )
    db.add(d)
    await db.commit()
    return d.id


async def _publish(session_factory, delivery_id: str, fcm) -> str | None:
    async with session_factory() as db:
        status = await publish_push_delivery(db, delivery_id, fcm)
        await db.commit()
    return status


async def test_push_event_fans_out_to_devices(db_session, seed_users):
    buyer = seed_users["buyer"]["user_id"]
    await _token(db_session, buyer, "tok-1")
    await _token(db_session, buyer, "tok-2")

    ev = OutboxEvent(
        id=gen_id("obx"), aggregate_type="notification", aggregate_id="ntf_1", event_type="notification.push",
        payload={"user_id": buyer, "title": "T", "body": "B", "data": {"type": "info"}},
    )
    await apply_outbox_event(db_session, ev)
    await db_session.commit()

    tokens = (await db_session.execute(select(PushDelivery.token).order_by(PushDelivery.token))).scalars().all()
    assert tokens == ["tok-1", "tok-2"]


async def test_listing_event_alerts_token_holders_except_poster(db_session, seed_listing):
    buyer = seed_listing["buyer"]["user_id"]
    seller = seed_listing["seller"]["user_id"]
    await _token(db_session, buyer, "tok-buyer")
    await _token(db_session, seller, "tok-seller")

    ev = OutboxEvent(
        id=gen_id("obx"), aggregate_type="listing", aggregate_id=seed_listing["listing_id"],
        event_type="listing.created", payload={"listing_id": seed_listing["listing_id"]},
    )
    await apply_outbox_event(db_session, ev)
    await db_session.commit()

    rows = (await db_session.execute(
        select(Notification.user_id, Notification.message).where(Notification.type == "new_listing")
    )).all()
    assert len(rows) == 1
    assert rows[0][0] == buyer
    assert rows[0][1] == "Paris → Dakar • 20kg disponibles"


async def test_email_event_uses_resend(db_session):
    resend = FakeResend()
    ev = OutboxEvent(
        id=gen_id("obx"), aggregate_type="email", aggregate_id="eml_1", event_type="email.send",
        payload={"to": "user@test.com", "subject": "Hi", "html": "<p>Hi</p>"},
    )
    await apply_outbox_event(db_session, ev, resend=resend)
    assert resend.sent == [{"to": "user@test.com", "subject": "Hi", "html": "<p>Hi</p>"}]


async def test_email_event_forwards_attachments(db_session):
    resend = FakeResend()
    pdf = [{"filename": "signature.pdf", "content": "JVBERi0x"}]
    ev = OutboxEvent(
        id=gen_id("obx"), aggregate_type="email", aggregate_id="eml_2", event_type="email.send",
        payload={"to": "user@test.com", "subject": "Signed", "html": "<p>ok</p>", "attachments": pdf},
    )
    await apply_outbox_event(db_session, ev, resend=resend)
    assert resend.sent[0]["attachments"] == pdf


async def test_publish_success(db_session, session_factory, seed_users):
    delivery_id = await _delivery(db_session, seed_users["buyer"]["user_id"])
    fcm = FakeFcm(OK)

    assert await _publish(session_factory, delivery_id, fcm) == "success"
    assert fcm.sent[0]["token"] == "tok-1"

    row = (await db_session.execute(
        select(PushDelivery.status, PushDelivery.attempts).where(PushDelivery.id == delivery_id)
    )).one()
    assert tuple(row) == ("success", 1)

    # delivered messages are not sent again
    assert await _publish(session_factory, delivery_id, fcm) is None
    assert len(fcm.sent) == 1


async def test_publish_unregistered_removes_token(db_session, session_factory, seed_users):
    buyer = seed_users["buyer"]["user_id"]
    await _token(db_session, buyer, "tok-1")
    delivery_id = await _delivery(db_session, buyer)

    assert await _publish(session_factory, delivery_id, FakeFcm(GONE)) == "dead_lettered"

    tokens = (await db_session.execute(select(PushToken.token))).scalars().all()
    assert tokens == []
    attempts = (await db_session.execute(
        select(PushAttempt.status, PushAttempt.error_code).where(PushAttempt.delivery_id == delivery_id)
    )).all()
    assert [tuple(a) for a in attempts] == [("failed", "UNREGISTERED")]


async def test_publish_retryable_failure_schedules_retry(db_session, session_factory, seed_users):
    delivery_id = await _delivery(db_session, seed_users["buyer"]["user_id"])

    assert await _publish(session_factory, delivery_id, FakeFcm(BUSY)) == "failed"

    row = (await db_session.execute(
        select(PushDelivery.status, PushDelivery.attempts, PushDelivery.next_retry_at).where(PushDelivery.id == delivery_id)
    )).one()
    assert row[0] == "failed"
    assert row[1] == 1
    assert row[2] is not None


async def test_publish_dead_letters_after_max_attempts(db_session, session_factory, seed_users):
    delivery_id = await _delivery(db_session, seed_users["buyer"]["user_id"], attempts=MAX_PUSH_ATTEMPTS - 1)

    assert await _publish(session_factory, delivery_id, FakeFcm(BUSY)) == "dead_lettered"

    attempts = (await db_session.execute(
        select(PushDelivery.attempts).where(PushDelivery.id == delivery_id)
    )).scalar_one()
    assert attempts == MAX_PUSH_ATTEMPTS


async def test_dispatch_claims_pending_events(db_session, session_factory):
    for n in range(3):
        db_session.add(OutboxEvent(
            id=gen_id("obx"), aggregate_type="listing", aggregate_id=f"lst_{n}",
            event_type="listing.created", payload={"listing_id": f"lst_{n}"}, status="pending",
        ))
    await db_session.commit()

    enqueued: list[tuple[str, str]] = []
    async with session_factory() as db:
        count = await dispatch_outbox(db, enqueue=lambda outbox_id, lease_id: enqueued.append((outbox_id, lease_id)))

    assert count == 3
    assert len({lease for _, lease in enqueued}) == 1

    rows = (await db_session.execute(select(OutboxEvent.status, OutboxEvent.attempts, OutboxEvent.lease_id))).all()
    assert all(r[0] == "processing" and r[1] == 1 and r[2] == enqueued[0][1] for r in rows)


async def test_dispatch_releases_events_that_fail_to_enqueue(db_session, session_factory):
    db_session.add(OutboxEvent(
        id=gen_id("obx"), aggregate_type="listing", aggregate_id="lst_x",
        event_type="listing.created", payload={"listing_id": "lst_x"}, status="pending",
    ))
    await db_session.commit()

    def broken(outbox_id, lease_id):
        raise ConnectionError("broker down")

    async with session_factory() as db:
        assert await dispatch_outbox(db, enqueue=broken) == 0

    row = (await db_session.execute(select(OutboxEvent.status, OutboxEvent.last_error))).one()
    assert row[0] == "pending"
    assert "broker down" in row[1]
