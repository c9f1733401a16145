"""Unit tests for rental pricing and deposit splits."""

from datetime import date, datetime
from decimal import Decimal

import pytest

from app.domain.pricing import calculate_pricing, percent_of, rental_days, split_deposit, to_cents


def test_week_rental_with_deposit():
    pricing = calculate_pricing(7, Decimal("5.00"), Decimal("20.00"))

    assert pricing.rental_fee == Decimal("35.00")
    assert pricing.deposit_amount == Decimal("20.00")
    assert pricing.total == Decimal("55.00")
    assert pricing.requires_payment is True


def test_platform_fee_comes_out_of_lender_payout():
    pricing = calculate_pricing(7, Decimal("5.00"), Decimal("20.00"), platform_fee_percent=2.0)

    assert pricing.platform_fee == Decimal("0.70")
    assert pricing.lender_payout == Decimal("34.30")


def test_free_listing_collects_nothing():
    pricing = calculate_pricing(3, Decimal("10.00"), Decimal("50.00"), is_free=True)

    assert pricing.rental_fee == Decimal("0.00")
    assert pricing.deposit_amount == Decimal("0.00")
    assert pricing.requires_payment is False


def test_rental_days_between_dates():
    assert rental_days(date(2026, 5, 1), date(2026, 5, 8)) == 7


def test_rental_days_rounds_partial_days_up():
    assert rental_days(datetime(2026, 5, 1, 9), datetime(2026, 5, 2, 10)) == 2


@pytest.mark.parametrize(
    "percent,expected",
    [
        (0, (Decimal("0.00"), Decimal("20.00"))),
        (50, (Decimal("10.00"), Decimal("10.00"))),
        (100, (Decimal("20.00"), Decimal("0.00"))),
    ],
)
def test_split_deposit(percent, expected):
    assert split_deposit(Decimal("20.00"), percent) == expected


def test_split_deposit_always_sums_to_deposit():
    to_lender, to_borrower = split_deposit(Decimal("33.33"), 33)

    assert to_lender + to_borrower == Decimal("33.33")


def test_percent_of():
    assert percent_of(Decimal("20.00"), 2.0) == Decimal("0.40")


def test_to_cents():
    assert to_cents(Decimal("55.00")) == 5500
    assert to_cents(Decimal("0.005")) == 1
