"""The API client driving a borrow through the real application."""

from datetime import date, timedelta

import httpx
import pytest

from app.core.security import create_access_token
from app.main import app as fastapi_app
from app.sdk import LendingClient, StateConflict


def _sdk(user) -> LendingClient:
    return LendingClient(
        "http://test/api/v1",
        token=create_access_token({"sub": str(user.id)}),
        transport=httpx.ASGITransport(app=fastapi_app),
    )


@pytest.mark.asyncio
async def test_borrow_round_trip(gateway, borrower, lender, listing):
    start = date.today() + timedelta(days=2)

    async with _sdk(borrower) as as_borrower, _sdk(lender) as as_lender:
        access = await as_borrower.check_access(listing.id)
        created = await as_borrower.create_transaction(
            listing.id, start, start + timedelta(days=7), payment_method_id="pm_card_visa"
        )
        txn_id = created["transaction"]["id"]
        await as_lender.approve(txn_id)
        await as_lender.confirm_pickup(txn_id, "like_new")
        await as_borrower.mark_returned(txn_id)
        returned = await as_lender.confirm_return(txn_id, "like_new")
        rated = await as_borrower.rate(txn_id, 5)

    assert access.can_access is True
    assert returned["transaction"]["status"] == "returned"
    assert rated["transaction"]["my_rating"] == 5


@pytest.mark.asyncio
async def test_rejected_action_reports_server_state(borrower, lender, listing):
    start = date.today() + timedelta(days=2)

    async with _sdk(borrower) as as_borrower, _sdk(lender) as as_lender:
        created = await as_borrower.create_transaction(
            listing.id, start, start + timedelta(days=3), payment_method_id="pm_card_visa"
        )
        txn_id = created["transaction"]["id"]
        await as_lender.decline(txn_id)

        with pytest.raises(StateConflict) as exc_info:
            await as_lender.approve(txn_id)

    assert exc_info.value.current_status == "cancelled"
    assert exc_info.value.transaction["status"] == "cancelled"
