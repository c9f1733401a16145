"""Pytest configuration and shared fixtures."""

import os
import tempfile
from datetime import date, timedelta
from decimal import Decimal
from pathlib import Path

# Configure before the app reads its settings
_db_path = Path(tempfile.gettempdir()) / f"borrowhood_test_{os.getpid()}.db"
os.environ["DATABASE_URL_OVERRIDE"] = f"sqlite+aiosqlite:///{_db_path}"
os.environ["ENVIRONMENT"] = "test"
os.environ["PAYMENT_GATEWAY"] = "manual"
os.environ["SUBSCRIPTION_ACCESS_BACKEND"] = "local"

import httpx
import pytest

import app.models  # noqa: F401  registers mappers
from app.core.idempotency import reset_idempotency_store
from app.core.security import create_access_token
from app.database import Base, async_session_factory, engine
from app.gateways.manual import ManualGateway
from app.main import app as fastapi_app
from app.models.listing import Listing
from app.models.user import User
from app.services.gateway_service import gateway_service


@pytest.fixture(autouse=True)
async def database():
    """Fresh schema per test."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    reset_idempotency_store()
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    # Pooled connections are bound to this test's event loop
    await engine.dispose()


@pytest.fixture
async def db_session():
    async with async_session_factory() as session:
        yield session


@pytest.fixture
def gateway() -> ManualGateway:
    """The in-memory gateway every payment goes through."""
    manual = gateway_service.get_gateway()
    assert isinstance(manual, ManualGateway)
    manual.reset()
    return manual


@pytest.fixture
async def client(gateway):
    transport = httpx.ASGITransport(app=fastapi_app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test/api/v1") as ac:
        yield ac


@pytest.fixture
def make_user(db_session):
    """Factory: persisted user."""

    async def _make(**overrides) -> User:
        values = {
            "email": f"user{len(_make.created)}@example.com",
            "first_name": "Test",
            "last_name": f"User{len(_make.created)}",
            "city": "Springfield",
            "subscription_tier": "plus",
            "is_verified": True,
        }
        values.update(overrides)
        user = User(**values)
        db_session.add(user)
        await db_session.commit()
        _make.created.append(user)
        return user

    _make.created = []
    return _make


@pytest.fixture
def make_listing(db_session):
    """Factory: persisted listing (5/day, 20 deposit, 1-14 days by default)."""

    async def _make(owner: User, **overrides) -> Listing:
        values = {
            "owner_id": owner.id,
            "title": "Cordless drill",
            "condition": "good",
            "visibility": "neighborhood",
            "is_free": False,
            "price_per_day": Decimal("5.00"),
            "deposit_amount": Decimal("20.00"),
            "min_duration": 1,
            "max_duration": 14,
        }
        values.update(overrides)
        listing = Listing(**values)
        db_session.add(listing)
        await db_session.commit()
        return listing

    return _make


def _auth_headers(user: User) -> dict[str, str]:
    token = create_access_token({"sub": str(user.id), "email": user.email, "role": user.role})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def auth():
    """Bearer headers for a user."""
    return _auth_headers


@pytest.fixture
def request_borrow(client):
    """POST a borrow request starting tomorrow; returns the response."""

    async def _request(borrower: User, listing: Listing, days: int = 7, payment_method_id: str | None = "pm_card_visa"):
        start = date.today() + timedelta(days=1)
        payload = {
            "listing_id": str(listing.id),
            "start_date": start.isoformat(),
            "end_date": (start + timedelta(days=days)).isoformat(),
        }
        if payment_method_id:
            payload["payment_method_id"] = payment_method_id
        return await client.post("/transactions/", json=payload, headers=_auth_headers(borrower))

    return _request


@pytest.fixture
def act(client):
    """POST a transaction action as a user; returns the response."""

    async def _act(user: User, transaction_id: str, action: str, payload: dict | None = None):
        return await client.post(
            f"/transactions/{transaction_id}/{action}", json=payload, headers=_auth_headers(user)
        )

    return _act


@pytest.fixture
async def lender(make_user):
    return await make_user(email="lender@example.com", first_name="Lena", stripe_connect_account_id="acct_lender")


@pytest.fixture
async def borrower(make_user):
    return await make_user(email="borrower@example.com", first_name="Bo")


@pytest.fixture
async def admin(make_user):
    return await make_user(email="admin@example.com", role="admin")


@pytest.fixture
async def listing(make_listing, lender):
    return await make_listing(lender)


class FakeRedis:
    """The counter commands the action throttle uses, kept in a dict."""

    def __init__(self):
        self.counts: dict[str, int] = {}
        self.ttls: dict[str, int] = {}

    async def incr(self, key: str) -> int:
        self.counts[key] = self.counts.get(key, 0) + 1
        return self.counts[key]

    async def expire(self, key: str, seconds: int) -> bool:
        self.ttls[key] = seconds
        return key in self.counts


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()
