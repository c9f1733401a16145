"""Borrow transaction database model."""

from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import CheckConstraint, Date, DateTime, ForeignKey, Integer, Numeric, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from app.database import Base, utcnow


class BorrowTransaction(Base):
    """A single borrow of a listing, from request to completion."""

    __tablename__ = "borrow_transactions"
    __table_args__ = (
        CheckConstraint("end_date > start_date", name="ck_borrow_transactions_dates"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    listing_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("listings.id"), nullable=False, index=True
    )
    borrower_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=False, index=True
    )
    lender_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=False, index=True
    )

    # Status
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="pending", index=True
    )  # pending, approved, paid, picked_up, return_pending, returned, disputed, cancelled, completed
    payment_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="none"
    )  # none, authorized, captured, released, refunded

    # Dates
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    rental_days: Mapped[int] = mapped_column(Integer, nullable=False)

    # Pricing (dollars)
    daily_rate: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0"))
    rental_fee: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0"))
    deposit_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0"))
    platform_fee: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0"))
    lender_payout: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0"))

    # Stripe
    stripe_payment_intent_id: Mapped[str | None] = mapped_column(String(255), index=True)
    stripe_transfer_id: Mapped[str | None] = mapped_column(String(255))

    # Condition
    condition_at_pickup: Mapped[str | None] = mapped_column(String(20))
    condition_at_return: Mapped[str | None] = mapped_column(String(20))
    condition_notes: Mapped[str | None] = mapped_column(Text)

    # Messages
    borrower_message: Mapped[str | None] = mapped_column(Text)
    lender_response: Mapped[str | None] = mapped_column(Text)

    # Timestamps
    actual_pickup_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    actual_return_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow
    )

    @property
    def total_amount(self) -> Decimal:
        """Amount held on the borrower's card."""
        return (self.rental_fee or Decimal("0")) + (self.deposit_amount or Decimal("0"))

    @property
    def requires_payment(self) -> bool:
        return self.total_amount > 0

    def role_of(self, user_id: uuid.UUID) -> str | None:
        """``borrower``, ``lender`` or None for outsiders."""
        if user_id == self.borrower_id:
            return "borrower"
        if user_id == self.lender_id:
            return "lender"
        return None
