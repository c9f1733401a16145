"""Integration tests for ratings and dispute resolution."""

from decimal import Decimal

import pytest


@pytest.fixture
def returned_transaction(request_borrow, act, borrower, lender, listing):
    """Drive a paid request through to a return in the given condition."""

    async def _drive(condition: str = "good") -> str:
        txn_id = (await request_borrow(borrower, listing)).json()["transaction"]["id"]
        await act(lender, txn_id, "approve")
        await act(lender, txn_id, "pickup", {"condition": "good"})
        await act(borrower, txn_id, "mark-returned")
        response = await act(lender, txn_id, "return", {"condition": condition})
        assert response.status_code == 200
        return txn_id

    return _drive


@pytest.fixture
async def dispute_id(client, auth, returned_transaction, borrower) -> str:
    await returned_transaction("worn")
    listed = await client.get("/disputes/", headers=auth(borrower))
    assert listed.json()["total"] == 1
    return listed.json()["items"][0]["id"]


# Ratings


@pytest.mark.asyncio
async def test_both_ratings_complete_the_transaction(act, returned_transaction, borrower, lender):
    txn_id = await returned_transaction()

    first = await act(borrower, txn_id, "rate", {"rating": 5, "comment": "Great drill"})
    second = await act(lender, txn_id, "rate", {"rating": 4})

    assert first.json()["transaction"]["status"] == "returned"
    assert first.json()["transaction"]["my_rating"] == 5
    assert second.json()["transaction"]["status"] == "completed"


@pytest.mark.asyncio
async def test_second_rating_rejected(act, returned_transaction, borrower):
    txn_id = await returned_transaction()
    await act(borrower, txn_id, "rate", {"rating": 5})

    response = await act(borrower, txn_id, "rate", {"rating": 2})

    assert response.status_code == 409


@pytest.mark.asyncio
async def test_rating_out_of_range_rejected(act, returned_transaction, borrower):
    txn_id = await returned_transaction()

    response = await act(borrower, txn_id, "rate", {"rating": 0})

    assert response.status_code == 422


@pytest.mark.asyncio
async def test_rating_before_return_rejected(request_borrow, act, borrower, listing):
    txn_id = (await request_borrow(borrower, listing)).json()["transaction"]["id"]

    response = await act(borrower, txn_id, "rate", {"rating": 5})

    assert response.status_code == 409


@pytest.mark.asyncio
async def test_outsider_cannot_rate(act, make_user, returned_transaction):
    txn_id = await returned_transaction()
    outsider = await make_user()

    response = await act(outsider, txn_id, "rate", {"rating": 3})

    assert response.status_code == 403


# Disputes


@pytest.mark.asyncio
async def test_dispute_records_condition_change(client, auth, dispute_id, lender):
    response = await client.get(f"/disputes/{dispute_id}", headers=auth(lender))

    dispute = response.json()
    assert dispute["status"] == "open"
    assert "good → worn" in dispute["reason"]
    assert dispute["opened_by_id"] == str(lender.id)


@pytest.mark.asyncio
async def test_outsider_cannot_see_dispute(client, auth, make_user, dispute_id):
    outsider = await make_user()

    response = await client.get(f"/disputes/{dispute_id}", headers=auth(outsider))

    assert response.status_code == 404


@pytest.mark.asyncio
async def test_evidence_capped_per_dispute(client, auth, dispute_id, borrower, lender):
    urls = [f"https://img.example.com/{i}.jpg" for i in range(10)]

    first = await client.post(f"/disputes/{dispute_id}/evidence", json={"urls": urls}, headers=auth(borrower))
    second = await client.post(f"/disputes/{dispute_id}/evidence", json={"urls": urls}, headers=auth(lender))
    over = await client.post(
        f"/disputes/{dispute_id}/evidence", json={"urls": ["https://img.example.com/x.jpg"]}, headers=auth(borrower)
    )

    assert first.status_code == 200
    assert len(second.json()["evidence_urls"]) == 20
    assert over.status_code == 422


@pytest.mark.asyncio
async def test_evidence_request_size_limited(client, auth, dispute_id, borrower):
    urls = [f"https://img.example.com/{i}.jpg" for i in range(11)]

    response = await client.post(f"/disputes/{dispute_id}/evidence", json={"urls": urls}, headers=auth(borrower))

    assert response.status_code == 422


@pytest.mark.asyncio
async def test_only_admin_resolves(client, auth, dispute_id, lender):
    response = await client.post(
        f"/disputes/{dispute_id}/resolve", json={"outcome": "lender"}, headers=auth(lender)
    )

    assert response.status_code == 403


@pytest.mark.asyncio
async def test_split_resolution_settles_deposit(client, auth, gateway, dispute_id, admin, borrower):
    await client.post(f"/disputes/{dispute_id}/review", headers=auth(admin))

    response = await client.post(
        f"/disputes/{dispute_id}/resolve",
        json={"outcome": "split", "lender_percent": 70, "notes": "Minor damage"},
        headers=auth(admin),
    )

    assert response.status_code == 200
    dispute = response.json()
    assert dispute["status"] == "resolved"
    assert Decimal(str(dispute["deposit_to_lender"])) == Decimal("14")
    assert Decimal(str(dispute["deposit_to_borrower"])) == Decimal("6")
    assert [r["amount"] for r in gateway.ledger.refunds] == [600]
    assert [t["amount"] for t in gateway.ledger.transfers] == [4830]

    txn = await client.get(f"/transactions/{dispute['transaction_id']}", headers=auth(borrower))
    assert txn.json()["status"] == "disputed"
    assert txn.json()["payment_status"] == "refunded"


@pytest.mark.asyncio
async def test_dispute_resolves_only_once(client, auth, gateway, dispute_id, admin, borrower):
    first = await client.post(f"/disputes/{dispute_id}/resolve", json={"outcome": "lender"}, headers=auth(admin))
    replay = await client.post(f"/disputes/{dispute_id}/resolve", json={"outcome": "lender"}, headers=auth(admin))
    different = await client.post(
        f"/disputes/{dispute_id}/resolve", json={"outcome": "borrower"}, headers=auth(admin)
    )
    evidence = await client.post(
        f"/disputes/{dispute_id}/evidence", json={"urls": ["https://img.example.com/late.jpg"]}, headers=auth(borrower)
    )

    assert first.status_code == 200
    assert replay.json() == first.json()
    assert different.status_code == 409
    assert evidence.status_code == 409
    assert len(gateway.ledger.transfers) == 1
