import os

# Settings are read at import time
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("TELEMETRY_ENABLED", "false")
os.environ.setdefault("INTERNAL_KEY", "test-internal")
os.environ.setdefault("TOKEN_PEPPER", "test-pepper")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test")

import pytest
import httpx

from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import NullPool
from datetime import date, timedelta
from decimal import Decimal

# Import Base + all models so metadata is complete
import kilofly.models  # noqa: F401
from kilofly.models.base import Base

from kilofly.main import app
from kilofly.core.db import get_db
from kilofly.providers.registry import get_cinetpay_client, get_stripe_client
from kilofly.services.rate_limit import RateLimitResult, get_rate_limiter
from kilofly.core.ids import gen_id
from kilofly.core.security import generate_access_token
from kilofly.models.listing import Listing
from kilofly.models.reservation import Reservation
from kilofly.models.transaction import Transaction
from kilofly.models.user import AccessToken, User
from kilofly.models.wallet import Wallet
from kilofly.services.escrow import compute_split
from kilofly.services.payment_status import transaction_status_for


def _test_db_url(tmp_path) -> str:
    return os.getenv("DATABASE_URL_TEST") or f"sqlite+aiosqlite:///{tmp_path / 'test.db'}"


class FakeRateLimiter:
    def __init__(self, limit: int = 1000):
        self.limit = limit
        self.calls: dict[str, int] = {}

    async def allow(self, *, key: str, limit: int, window_seconds: int) -> RateLimitResult:
        n = self.calls.get(key, 0) + 1
        self.calls[key] = n
        return RateLimitResult(allowed=n <= self.limit, remaining=max(0, self.limit - n), reset_seconds=window_seconds)


class FakeStripe:
    mode = "test"

    def __init__(self):
        self.captured: list[str] = []
        self.cancelled: list[str] = []
        self.sessions: list[dict] = []
        self.intents: dict[str, dict] = {}
        self._n = 0

    async def create_payment_intent(self, *, amount_minor, currency, metadata, description, idempotency_key):
        self._n += 1
        intent = {
            "id": f"pi_test_{self._n}",
            "client_secret": f"pi_test_{self._n}_secret",
            "status": "requires_payment_method",
            "amount": amount_minor,
            "currency": currency.lower(),
            "metadata": metadata,
        }
        self.intents[intent["id"]] = intent
        return intent

    async def retrieve_payment_intent(self, intent_id):
        return self.intents[intent_id]

    async def capture_payment_intent(self, intent_id, *, idempotency_key=None):
        self.captured.append(intent_id)
        return {"id": intent_id, "status": "succeeded"}

    async def cancel_payment_intent(self, intent_id, *, idempotency_key=None):
        self.cancelled.append(intent_id)
        intent = self.intents.setdefault(intent_id, {"id": intent_id})
        intent["status"] = "canceled"
        return intent

    async def create_checkout_session(self, **kwargs):
        self._n += 1
        self.sessions.append(kwargs)
        return {"id": f"cs_test_{self._n}", "url": f"https://checkout.stripe.test/cs_test_{self._n}"}


class FakeCinetPay:
    def __init__(self, transfer_response: dict | None = None, check_response: dict | None = None):
        self.transfer_response = transfer_response or {"code": "00", "data": {"transfer_id": "tr_1"}}
        self.init_response = {"code": "201", "data": {"payment_url": "https://checkout.cinetpay.test/pay", "payment_token": "tok"}}
        self.check_response = check_response or {"code": "00", "data": {"status": "ACCEPTED"}}
        self.transfers: list[dict] = []
        self.inits: list[dict] = []

    async def init_payment(self, payload):
        self.inits.append(payload)
        return self.init_response

    async def check_payment(self, transaction_id):
        return self.check_response

    async def send_transfer(self, payload):
        self.transfers.append(payload)
        return self.transfer_response


@pytest.fixture
async def async_engine(tmp_path):
    engine = create_async_engine(_test_db_url(tmp_path), poolclass=NullPool)
    try:
        # Fresh schema per test
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)
            await conn.run_sync(Base.metadata.create_all)
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture
def session_factory(async_engine):
    return async_sessionmaker(bind=async_engine, expire_on_commit=False, class_=AsyncSession)


@pytest.fixture
async def db_session(session_factory):
    """Seeding and assertions; requests get their own session like in production."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def fake_stripe():
    return FakeStripe()


@pytest.fixture
def fake_cinetpay():
    return FakeCinetPay()


@pytest.fixture
def rate_limiter():
    return FakeRateLimiter()


@pytest.fixture
async def client(session_factory, fake_stripe, fake_cinetpay, rate_limiter):
    """
    HTTP client on the test database with fake providers via dependency override.
    """
    async def _override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_stripe_client] = lambda: fake_stripe
    app.dependency_overrides[get_cinetpay_client] = lambda: fake_cinetpay
    app.dependency_overrides[get_rate_limiter] = lambda: rate_limiter

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# Seed helpers: return plain ids/tokens, never ORM objects

async def _make_user(db: AsyncSession, *, name: str, role: str = "user", email: str | None = None, phone: str | None = None) -> dict:
    user = User(
        id=gen_id("usr"),
        full_name=name,
        email=email,
        phone=phone,
        preferred_currency="EUR",
        role=role,
        is_active=True,
    )
    parts = generate_access_token()
    db.add(user)
    db.add(AccessToken(user_id=user.id, token_prefix=parts.prefix, token_hash=parts.hashed, is_active=True))
    await db.flush()
    return {"user_id": user.id, "token": parts.plain, "headers": {"Authorization": f"Bearer {parts.plain}"}}


@pytest.fixture
async def seed_users(db_session):
    seller = await _make_user(db_session, name="Awa Traveler", email="seller@test.com", phone="+221771234567")
    buyer = await _make_user(db_session, name="Moussa Sender", email="buyer@test.com", phone="+221781112233")
    admin = await _make_user(db_session, name="Admin", role="admin", email="admin@test.com")
    await db_session.commit()
    return {"seller": seller, "buyer": buyer, "admin": admin}


@pytest.fixture
async def seed_listing(db_session, seed_users):
    listing = Listing(
        id=gen_id("lst"),
        user_id=seed_users["seller"]["user_id"],
        departure="Paris",
        arrival="Dakar",
        departure_date=date.today() + timedelta(days=10),
        available_kg=Decimal("20"),
        price_per_kg=Decimal("10.00"),
        currency="EUR",
        status="active",
    )
    db_session.add(listing)
    await db_session.commit()
    return {**seed_users, "listing_id": listing.id}


async def seed_reservation_row(
    db: AsyncSession,
    seed: dict,
    *,
    status: str = "approved",
    kg: str = "5",
    payment_status: str | None = None,
) -> dict:
    """Reservation (and optionally a Stripe transaction) between the seeded buyer and seller."""
    kg_d = Decimal(kg)
    reservation = Reservation(
        id=gen_id("rsv"),
        listing_id=seed["listing_id"],
        buyer_id=seed["buyer"]["user_id"],
        seller_id=seed["seller"]["user_id"],
        requested_kg=kg_d,
        total_price=kg_d * Decimal("10.00"),
        item_description="Vêtements",
        status=status,
    )
    db.add(reservation)
    out = {"reservation_id": reservation.id}

    if payment_status:
        split = compute_split(reservation.total_price, "EUR")
        tx = Transaction(
            id=gen_id("txn"),
            reservation_id=reservation.id,
            listing_id=seed["listing_id"],
            buyer_id=seed["buyer"]["user_id"],
            seller_id=seed["seller"]["user_id"],
            amount=split.buyer_total,
            base_amount=split.base_amount,
            platform_commission=split.platform_commission,
            seller_amount=split.seller_amount,
            currency="EUR",
            provider="stripe",
            provider_reference=f"pi_seed_{reservation.id[-6:]}",
            payment_status=payment_status,
            status=transaction_status_for(payment_status),
        )
        db.add(tx)
        out.update({"transaction_id": tx.id, "intent_id": tx.provider_reference})

    await db.commit()
    return out


async def seed_wallet_row(db: AsyncSession, user_id: str, balance: str) -> str:
    wallet = Wallet(id=gen_id("wal"), user_id=user_id, balance=Decimal(balance), currency="XOF")
    db.add(wallet)
    await db.commit()
    return wallet.id


@pytest.fixture
def make_reservation(db_session, seed_listing):
    async def _make(**kwargs) -> dict:
        return await seed_reservation_row(db_session, seed_listing, **kwargs)
    return _make


@pytest.fixture
def make_wallet(db_session):
    async def _make(user_id: str, balance: str) -> str:
        return await seed_wallet_row(db_session, user_id, balance)
    return _make
