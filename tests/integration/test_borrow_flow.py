"""Integration tests for the borrow lifecycle through the API."""

from decimal import Decimal

import pytest
from sqlalchemy import func, select

from app.core.middleware import transaction_limiter
from app.database import async_session_factory
from app.gateways.base import FailureKind
from app.models.admin import AuditLog, Dispute
from app.models.listing import Listing
from app.models.notification import Notification


async def _count(model, **filters) -> int:
    async with async_session_factory() as session:
        query = select(func.count()).select_from(model)
        for name, value in filters.items():
            query = query.where(getattr(model, name) == value)
        return (await session.execute(query)).scalar()


async def _paid_and_picked_up(request_borrow, act, borrower, lender, listing) -> str:
    response = await request_borrow(borrower, listing)
    txn_id = response.json()["transaction"]["id"]
    assert (await act(lender, txn_id, "approve")).status_code == 200
    assert (await act(lender, txn_id, "pickup", {"condition": "good"})).status_code == 200
    return txn_id


@pytest.mark.asyncio
async def test_create_paid_request_places_hold(request_borrow, gateway, borrower, listing):
    """7 days at 5/day with a 20 deposit holds 55 on the card."""
    response = await request_borrow(borrower, listing, days=7)

    assert response.status_code == 201
    body = response.json()
    txn = body["transaction"]
    assert txn["status"] == "pending"
    assert txn["payment_status"] == "authorized"
    assert Decimal(str(txn["rental_fee"])) == Decimal("35")
    assert Decimal(str(txn["total_amount"])) == Decimal("55")
    assert body["requires_payment"] is False

    (intent,) = gateway.ledger.intents.values()
    assert intent.amount == 5500
    assert intent.status == "requires_capture"


@pytest.mark.asyncio
async def test_request_without_payment_method_returns_payment_sheet(request_borrow, borrower, listing):
    response = await request_borrow(borrower, listing, payment_method_id=None)

    body = response.json()
    assert body["transaction"]["payment_status"] == "none"
    assert body["requires_payment"] is True
    assert body["payment_sheet"]["client_secret"]
    assert body["payment_sheet"]["ephemeral_key"]
    assert body["payment_sheet"]["customer_id"]


@pytest.mark.asyncio
@pytest.mark.parametrize("days,expected", [(1, 201), (14, 201), (15, 422)])
async def test_duration_bounds(request_borrow, borrower, listing, days, expected):
    response = await request_borrow(borrower, listing, days=days)

    assert response.status_code == expected


@pytest.mark.asyncio
async def test_duration_below_minimum(request_borrow, make_listing, borrower, lender):
    listing = await make_listing(lender, min_duration=3)

    response = await request_borrow(borrower, listing, days=2)

    assert response.status_code == 422
    assert response.json()["code"] == "VALIDATION_FAILED"


@pytest.mark.asyncio
async def test_cannot_borrow_own_listing(request_borrow, lender, listing):
    response = await request_borrow(lender, listing)

    assert response.status_code == 422


@pytest.mark.asyncio
async def test_unavailable_listing(request_borrow, make_listing, borrower, lender):
    listing = await make_listing(lender, is_available=False)

    response = await request_borrow(borrower, listing)

    assert response.status_code == 400


@pytest.mark.asyncio
async def test_free_rental_never_touches_payments(request_borrow, act, gateway, make_listing, make_user, lender):
    borrower = await make_user(subscription_tier="free", is_verified=False)
    listing = await make_listing(lender, is_free=True, price_per_day=Decimal("0"), deposit_amount=Decimal("0"))

    created = await request_borrow(borrower, listing, payment_method_id=None)
    txn_id = created.json()["transaction"]["id"]
    approved = await act(lender, txn_id, "approve")

    assert created.status_code == 201
    assert Decimal(str(created.json()["transaction"]["rental_fee"])) == 0
    assert approved.json()["transaction"]["status"] == "approved"
    assert approved.json()["transaction"]["payment_status"] == "none"
    assert gateway.ledger.intents == {}


@pytest.mark.asyncio
async def test_approve_captures_hold_and_marks_listing_unavailable(request_borrow, act, gateway, borrower, lender, listing):
    txn_id = (await request_borrow(borrower, listing)).json()["transaction"]["id"]

    response = await act(lender, txn_id, "approve", {"message": "Sure, pick up after 5"})

    assert response.status_code == 200
    txn = response.json()["transaction"]
    assert txn["status"] == "paid"
    assert txn["payment_status"] == "captured"
    assert txn["lender_response"] == "Sure, pick up after 5"
    async with async_session_factory() as session:
        assert (await session.get(Listing, listing.id)).is_available is False


@pytest.mark.asyncio
async def test_approving_twice_captures_once(request_borrow, act, gateway, borrower, lender, listing):
    txn_id = (await request_borrow(borrower, listing)).json()["transaction"]["id"]

    first = await act(lender, txn_id, "approve")
    second = await act(lender, txn_id, "approve")

    assert first.status_code == second.status_code == 200
    assert second.json()["transaction"]["status"] == "paid"
    (intent,) = gateway.ledger.intents.values()
    assert intent.captures == 1
    assert await _count(AuditLog, action="payment_capture") == 1


@pytest.mark.asyncio
async def test_approve_by_borrower_forbidden(request_borrow, act, borrower, listing):
    txn_id = (await request_borrow(borrower, listing)).json()["transaction"]["id"]

    response = await act(borrower, txn_id, "approve")

    assert response.status_code == 403


@pytest.mark.asyncio
async def test_outsider_cannot_view_transaction(client, auth, request_borrow, make_user, borrower, listing):
    txn_id = (await request_borrow(borrower, listing)).json()["transaction"]["id"]
    outsider = await make_user()

    response = await client.get(f"/transactions/{txn_id}", headers=auth(outsider))

    assert response.status_code == 403


@pytest.mark.asyncio
async def test_decline_releases_authorized_hold(request_borrow, act, gateway, borrower, lender, listing):
    txn_id = (await request_borrow(borrower, listing)).json()["transaction"]["id"]

    response = await act(lender, txn_id, "decline", {"message": "Away that week"})

    txn = response.json()["transaction"]
    assert txn["status"] == "cancelled"
    assert txn["payment_status"] == "released"
    (intent,) = gateway.ledger.intents.values()
    assert intent.status == "canceled"
    assert intent.captures == 0


@pytest.mark.asyncio
async def test_borrower_cancel_after_approval_conflicts(request_borrow, act, borrower, lender, listing):
    txn_id = (await request_borrow(borrower, listing)).json()["transaction"]["id"]
    await act(lender, txn_id, "approve")

    response = await act(borrower, txn_id, "cancel")

    assert response.status_code == 409
    assert response.json()["code"] == "STATE_CHANGED"
    assert response.json()["current_status"] == "paid"


@pytest.mark.asyncio
async def test_declined_capture_leaves_transaction_pending(request_borrow, act, gateway, borrower, lender, listing):
    txn_id = (await request_borrow(borrower, listing)).json()["transaction"]["id"]
    gateway.fail_next("capture_payment", FailureKind.DECLINED)

    failed = await act(lender, txn_id, "approve")
    retried = await act(lender, txn_id, "approve")

    assert failed.status_code == 402
    assert retried.status_code == 200
    assert retried.json()["transaction"]["status"] == "paid"


@pytest.mark.asyncio
async def test_capture_network_failure_is_indeterminate(request_borrow, act, gateway, borrower, lender, listing):
    txn_id = (await request_borrow(borrower, listing)).json()["transaction"]["id"]
    gateway.fail_next("capture_payment", FailureKind.NETWORK)

    response = await act(lender, txn_id, "approve")

    assert response.status_code == 503
    assert response.json()["code"] == "PAYMENT_STATUS_UNKNOWN"


@pytest.mark.asyncio
async def test_good_return_settles_without_dispute(request_borrow, act, gateway, borrower, lender, listing):
    txn_id = await _paid_and_picked_up(request_borrow, act, borrower, lender, listing)

    marked = await act(borrower, txn_id, "mark-returned")
    confirmed = await act(lender, txn_id, "return", {"condition": "good"})

    assert marked.json()["transaction"]["status"] == "return_pending"
    txn = confirmed.json()["transaction"]
    assert txn["status"] == "returned"
    assert txn["payment_status"] == "refunded"
    assert await _count(Dispute) == 0
    assert [r["amount"] for r in gateway.ledger.refunds] == [2000]
    assert [t["amount"] for t in gateway.ledger.transfers] == [3430]
    async with async_session_factory() as session:
        stored = await session.get(Listing, listing.id)
        assert stored.is_available is True
        assert stored.times_borrowed == 1


@pytest.mark.asyncio
async def test_worse_return_opens_exactly_one_dispute(request_borrow, act, gateway, borrower, lender, listing):
    txn_id = await _paid_and_picked_up(request_borrow, act, borrower, lender, listing)

    response = await act(lender, txn_id, "return", {"condition": "worn", "notes": "Chuck is cracked"})
    replay = await act(lender, txn_id, "return", {"condition": "worn", "notes": "Chuck is cracked"})

    assert response.json()["transaction"]["status"] == "disputed"
    assert response.json()["transaction"]["payment_status"] == "captured"
    assert replay.status_code == 200
    assert await _count(Dispute) == 1
    assert gateway.ledger.refunds == []
    assert gateway.ledger.transfers == []


@pytest.mark.asyncio
async def test_confirm_return_with_unknown_condition(request_borrow, act, borrower, lender, listing):
    txn_id = await _paid_and_picked_up(request_borrow, act, borrower, lender, listing)

    response = await act(lender, txn_id, "return", {"condition": "destroyed"})

    assert response.status_code == 422


@pytest.mark.asyncio
async def test_notifications_recorded_after_commit(request_borrow, act, borrower, lender, listing):
    txn_id = (await request_borrow(borrower, listing)).json()["transaction"]["id"]
    await act(lender, txn_id, "approve")

    assert await _count(Notification, user_id=lender.id, notification_type="borrow_request") == 1
    assert await _count(Notification, user_id=borrower.id, notification_type="request_approved") == 1


@pytest.mark.asyncio
async def test_list_transactions_by_role(client, auth, request_borrow, borrower, lender, listing):
    await request_borrow(borrower, listing)

    as_borrower = await client.get("/transactions/", params={"role": "borrower"}, headers=auth(borrower))
    as_lender = await client.get("/transactions/", params={"role": "borrower"}, headers=auth(lender))

    assert as_borrower.json()["total"] == 1
    assert as_borrower.json()["items"][0]["is_borrower"] is True
    assert as_lender.json()["total"] == 0


@pytest.mark.asyncio
async def test_unauthenticated_request_rejected(client, listing):
    response = await client.get("/transactions/")

    assert response.status_code == 401


@pytest.mark.asyncio
async def test_list_transactions_by_status(client, auth, request_borrow, borrower, listing):
    await request_borrow(borrower, listing)

    pending = await client.get("/transactions/", params={"status": "pending"}, headers=auth(borrower))
    completed = await client.get("/transactions/", params={"status": "completed"}, headers=auth(borrower))
    unknown = await client.get("/transactions/", params={"status": "bogus"}, headers=auth(borrower))

    assert pending.json()["total"] == 1
    assert completed.json()["total"] == 0
    assert unknown.status_code == 422


@pytest.mark.asyncio
async def test_hammering_one_transaction_is_throttled(monkeypatch, fake_redis, request_borrow, act, borrower, lender, listing):
    response = await request_borrow(borrower, listing)
    txn_id = response.json()["transaction"]["id"]
    monkeypatch.setattr(transaction_limiter, "enabled", True)
    monkeypatch.setattr(transaction_limiter, "per_transaction", 2)
    monkeypatch.setattr(transaction_limiter, "_redis", fake_redis)

    first = await act(lender, txn_id, "approve")
    replay = await act(lender, txn_id, "approve")
    throttled = await act(lender, txn_id, "approve")

    assert first.status_code == replay.status_code == 200
    assert throttled.status_code == 429
    assert throttled.json()["code"] == "RATE_LIMITED"
    assert throttled.headers["Retry-After"] == "60"
