"""Rental pricing.

Amounts are Decimal dollars throughout; conversion to the smallest currency
unit happens only at the payment gateway boundary via ``to_cents``.
"""

import math
from dataclasses import dataclass
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal

CENT = Decimal("0.01")


@dataclass(frozen=True)
class PricingBreakdown:
    """Money owed for a single borrow request."""

    rental_days: int
    daily_rate: Decimal
    rental_fee: Decimal
    deposit_amount: Decimal
    platform_fee: Decimal
    lender_payout: Decimal

    @property
    def total(self) -> Decimal:
        """Amount held on the borrower's card: rental fee plus deposit."""
        return self.rental_fee + self.deposit_amount

    @property
    def requires_payment(self) -> bool:
        return self.total > 0


def _money(value: Decimal | float | int | str | None) -> Decimal:
    return Decimal(str(value or 0)).quantize(CENT, rounding=ROUND_HALF_UP)


def rental_days(start: date | datetime, end: date | datetime) -> int:
    """Whole days between start and end, partial days rounded up."""
    if isinstance(start, datetime) and isinstance(end, datetime):
        return math.ceil((end - start).total_seconds() / 86400)
    return (end - start).days


def calculate_pricing(
    days: int,
    price_per_day: Decimal | float | int | None,
    deposit_amount: Decimal | float | int | None,
    is_free: bool = False,
    platform_fee_percent: float = 2.0,
) -> PricingBreakdown:
    """Price a rental of ``days`` days.

    Free listings never collect money: both the fee and the deposit are zero.

    Args:
        days: Rental length in days
        price_per_day: Listing daily price
        deposit_amount: Listing refundable deposit
        is_free: Listing is offered for free
        platform_fee_percent: Platform commission on the rental fee

    Returns:
        PricingBreakdown with fee, deposit, commission and lender payout
    """
    if is_free:
        daily_rate = Decimal("0.00")
        deposit = Decimal("0.00")
    else:
        daily_rate = _money(price_per_day)
        deposit = _money(deposit_amount)

    rental_fee = _money(daily_rate * days)
    platform_fee = _money(rental_fee * Decimal(str(platform_fee_percent)) / Decimal("100"))

    return PricingBreakdown(
        rental_days=days,
        daily_rate=daily_rate,
        rental_fee=rental_fee,
        deposit_amount=deposit,
        platform_fee=platform_fee,
        lender_payout=rental_fee - platform_fee,
    )


def split_deposit(deposit_amount: Decimal, lender_percent: int) -> tuple[Decimal, Decimal]:
    """Split a deposit between lender and borrower.

    Returns:
        (deposit_to_lender, deposit_to_borrower); the two always sum to the deposit
    """
    to_lender = _money(Decimal(deposit_amount) * Decimal(lender_percent) / Decimal("100"))
    return to_lender, _money(deposit_amount) - to_lender


def percent_of(amount: Decimal, percent: float) -> Decimal:
    return _money(Decimal(amount) * Decimal(str(percent)) / Decimal("100"))


def to_cents(amount: Decimal | float | int) -> int:
    """Convert dollars to integer cents for the payment gateway."""
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
