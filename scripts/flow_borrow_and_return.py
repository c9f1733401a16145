#!/usr/bin/env python3
"""
Complete borrow, return and rating flow script.

DO NOT ADD BUSINESS LOGIC HERE.
This script only orchestrates API calls through the client.
All rules live in the backend.

Usage:
    python scripts/flow_borrow_and_return.py --listing-id <UUID> \
        --borrower-token <JWT> --lender-token <JWT> --start 2026-11-01 --days 7

    Add --return-condition worn to end in a dispute instead of a clean return.
    Tokens come from scripts/create_user.py.

Flow:
    1. Check access (borrower)
    2. Request the item with a test card
    3. Approve (lender), capturing the hold
    4. Confirm pickup (lender)
    5. Mark returned (borrower)
    6. Confirm return (lender)
    7. Rate each other
"""

import argparse
import asyncio
import json
import sys
from datetime import date, timedelta

from app.sdk import ClientError, LendingClient

BASE_URL = "http://localhost:8000/api/v1"


def print_step(step: int, title: str):
    """Print step header."""
    print(f"\n{'='*60}")
    print(f"STEP {step}: {title}")
    print("="*60)


def print_transaction(result: dict):
    txn = result.get("transaction", result)
    fields = ["id", "status", "payment_status", "rental_fee", "deposit_amount", "total_amount"]
    print(json.dumps({k: txn.get(k) for k in fields if k in txn}, indent=2))
    if result.get("noop"):
        print(f"(no change: {result.get('message')})")


async def run(args) -> None:
    start = date.fromisoformat(args.start)

    async with LendingClient(args.base_url, token=args.borrower_token) as borrower, \
            LendingClient(args.base_url, token=args.lender_token) as lender:

        print_step(1, "Check access")
        decision = await borrower.check_access(args.listing_id)
        print(json.dumps(decision.to_dict(), indent=2))
        if not decision.can_access:
            sys.exit(1)

        print_step(2, "Request item")
        created = await borrower.create_transaction(
            args.listing_id,
            start,
            start + timedelta(days=args.days),
            message="Script borrow request",
            payment_method_id=args.payment_method,
        )
        print_transaction(created)
        txn_id = created["transaction"]["id"]

        print_step(3, "Approve (lender)")
        print_transaction(await lender.approve(txn_id))

        print_step(4, "Confirm pickup (lender)")
        print_transaction(await lender.confirm_pickup(txn_id, args.pickup_condition))

        print_step(5, "Mark returned (borrower)")
        print_transaction(await borrower.mark_returned(txn_id))

        print_step(6, f"Confirm return as {args.return_condition} (lender)")
        returned = await lender.confirm_return(txn_id, args.return_condition)
        print_transaction(returned)

        if returned["transaction"]["status"] == "disputed":
            print("\nReturned in worse condition: dispute opened, awaiting admin resolution")
            return

        print_step(7, "Rate each other")
        await borrower.rate(txn_id, 5, "Worked great")
        print_transaction(await lender.rate(txn_id, 5, "Returned spotless"))

    print("\n" + "="*60)
    print("FULL FLOW COMPLETE")
    print("="*60)


def main():
    parser = argparse.ArgumentParser(description="Borrow, return and rate flow")
    parser.add_argument("--listing-id", required=True, help="Listing UUID")
    parser.add_argument("--borrower-token", required=True)
    parser.add_argument("--lender-token", required=True)
    parser.add_argument("--start", default=(date.today() + timedelta(days=1)).isoformat(), help="Start date (YYYY-MM-DD)")
    parser.add_argument("--days", type=int, default=7, help="Borrow length in days")
    parser.add_argument("--payment-method", default="pm_card_visa", help="Payment method id")
    parser.add_argument("--pickup-condition", default="good")
    parser.add_argument("--return-condition", default="good")
    parser.add_argument("--base-url", default=BASE_URL)
    args = parser.parse_args()

    try:
        asyncio.run(run(args))
    except ClientError as e:
        print(f"ERROR ({e.status_code}, {e.code}): {e.message}")
        if e.transaction:
            print_transaction(e.transaction)
        sys.exit(1)


if __name__ == "__main__":
    main()
