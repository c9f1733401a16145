"""Unit tests for the API client."""

import asyncio
from datetime import date
from decimal import Decimal

import httpx
import pytest

from app.domain.access_gate import AccessReason, BorrowerProfile, ListingScope, SubscriptionTier, Visibility
from app.sdk import (
    AccessDenied,
    ClientError,
    LendingClient,
    NetworkFailure,
    PaymentFailed,
    StateConflict,
    ValidationFailed,
)

TXN_ID = "5f0c8a0e-6a55-4b8e-9f2d-0c1d2e3f4a5b"


def _client(handler, **kwargs) -> LendingClient:
    return LendingClient("http://api.test/api/v1", token="t", transport=httpx.MockTransport(handler), **kwargs)


def _unreachable(request: httpx.Request) -> httpx.Response:
    raise httpx.ConnectError("connection refused", request=request)


@pytest.mark.asyncio
async def test_invalid_rating_never_reaches_the_server():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, json={})

    async with _client(handler) as client:
        with pytest.raises(ValidationFailed):
            await client.rate(TXN_ID, 0)

    assert calls == []


@pytest.mark.asyncio
async def test_invalid_dates_and_conditions_fail_locally():
    async with _client(_unreachable) as client:
        with pytest.raises(ValidationFailed):
            await client.create_transaction(TXN_ID, date(2026, 5, 8), date(2026, 5, 1))
        with pytest.raises(ValidationFailed):
            await client.confirm_return(TXN_ID, "shattered")


@pytest.mark.asyncio
async def test_duplicate_action_joins_in_flight_request():
    posts = []

    async def handler(request):
        if request.method == "POST":
            posts.append(request.url.path)
            await asyncio.sleep(0.05)
        return httpx.Response(200, json={"transaction": {"id": TXN_ID, "status": "paid"}})

    async with _client(handler) as client:
        first, second = await asyncio.gather(client.approve(TXN_ID), client.approve(TXN_ID))

    assert first == second
    assert posts == [f"/api/v1/transactions/{TXN_ID}/approve"]


@pytest.mark.asyncio
async def test_different_action_while_in_flight_conflicts():
    async def handler(request):
        await asyncio.sleep(0.05)
        return httpx.Response(200, json={"transaction": {"id": TXN_ID}})

    async with _client(handler) as client:
        approve = asyncio.create_task(client.approve(TXN_ID))
        await asyncio.sleep(0)
        with pytest.raises(StateConflict):
            await client.decline(TXN_ID)
        await approve


@pytest.mark.asyncio
async def test_slot_released_after_completion():
    posts = []

    def handler(request):
        if request.method == "POST":
            posts.append(request.url.path)
        return httpx.Response(200, json={"transaction": {"id": TXN_ID}})

    async with _client(handler) as client:
        await client.approve(TXN_ID)
        await client.approve(TXN_ID)

    assert len(posts) == 2


@pytest.mark.asyncio
async def test_failure_carries_refreshed_transaction():
    def handler(request):
        if request.method == "POST":
            return httpx.Response(
                409,
                json={"detail": "Cannot approve", "code": "STATE_CHANGED", "current_status": "cancelled"},
            )
        return httpx.Response(200, json={"id": TXN_ID, "status": "cancelled"})

    async with _client(handler) as client:
        with pytest.raises(StateConflict) as exc_info:
            await client.approve(TXN_ID)

    assert exc_info.value.current_status == "cancelled"
    assert exc_info.value.transaction == {"id": TXN_ID, "status": "cancelled"}


@pytest.mark.asyncio
async def test_error_taxonomy():
    responses = {
        "/api/v1/transactions/": httpx.Response(
            403, json={"detail": "Plus required", "code": "PLUS_REQUIRED", "reason": "subscription", "required_tier": "plus"}
        ),
        f"/api/v1/transactions/{TXN_ID}/confirm-payment": httpx.Response(402, json={"detail": "Declined"}),
        f"/api/v1/transactions/{TXN_ID}/approve": httpx.Response(503, json={"detail": "Unknown"}),
        f"/api/v1/transactions/{TXN_ID}": httpx.Response(200, json={"id": TXN_ID}),
    }

    async with _client(lambda request: responses[request.url.path]) as client:
        with pytest.raises(AccessDenied) as denied:
            await client.create_transaction(TXN_ID, date(2026, 5, 1), date(2026, 5, 8))
        with pytest.raises(PaymentFailed):
            await client.confirm_payment(TXN_ID)
        with pytest.raises(NetworkFailure):
            await client.approve(TXN_ID)

    assert denied.value.reason == "subscription"
    assert denied.value.required_tier == "plus"


@pytest.mark.asyncio
async def test_check_access_fails_open_when_unreachable():
    async with _client(_unreachable) as client:
        decision = await client.check_access(TXN_ID)

    assert decision.can_access is True


@pytest.mark.asyncio
async def test_check_access_fail_open_applies_local_rules():
    listing = ListingScope(visibility=Visibility.NEIGHBORHOOD, is_free=False, price_per_day=Decimal("5"))
    borrower = BorrowerProfile(user_id=None, subscription_tier=SubscriptionTier.FREE, is_verified=True)

    async with _client(_unreachable) as client:
        decision = await client.check_access(TXN_ID, listing=listing, borrower=borrower)

    assert decision.can_access is False
    assert decision.reason == AccessReason.SUBSCRIPTION


@pytest.mark.asyncio
async def test_check_access_fail_closed():
    async with _client(_unreachable, fail_open=False) as client:
        with pytest.raises(NetworkFailure):
            await client.check_access(TXN_ID)


@pytest.mark.asyncio
async def test_check_access_fails_open_on_server_error():
    def handler(request):
        return httpx.Response(500, json={"detail": "boom"})

    async with _client(handler) as client:
        decision = await client.check_access(TXN_ID)

    assert decision.can_access is True


@pytest.mark.asyncio
async def test_check_access_raises_client_errors():
    def handler(request):
        return httpx.Response(404, json={"detail": "Listing not found"})

    async with _client(handler) as client:
        with pytest.raises(ClientError) as exc_info:
            await client.check_access(TXN_ID)

    assert exc_info.value.status_code == 404


@pytest.mark.asyncio
async def test_pickup_and_return_use_action_paths():
    posts = []

    def handler(request):
        posts.append(request.url.path)
        return httpx.Response(200, json={"transaction": {"id": TXN_ID}})

    async with _client(handler) as client:
        await client.confirm_pickup(TXN_ID, "good")
        await client.confirm_return(TXN_ID, "good")

    assert posts == [f"/api/v1/transactions/{TXN_ID}/pickup", f"/api/v1/transactions/{TXN_ID}/return"]
