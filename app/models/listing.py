"""Listing database model."""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import Boolean, CheckConstraint, DateTime, ForeignKey, Integer, Numeric, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from app.database import Base, utcnow


class Listing(Base):
    """An item offered for lending."""

    __tablename__ = "listings"
    __table_args__ = (
        CheckConstraint(
            "min_duration > 0 AND min_duration <= max_duration",
            name="ck_listings_duration_bounds",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    owner_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=False, index=True
    )

    # Basic Info
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    condition: Mapped[str] = mapped_column(
        String(20), nullable=False, default="good"
    )  # like_new, good, fair, worn
    visibility: Mapped[str] = mapped_column(
        String(20), nullable=False, default="neighborhood", index=True
    )  # close_friends, neighborhood, town

    # Pricing (dollars)
    is_free: Mapped[bool] = mapped_column(Boolean, default=False)
    price_per_day: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0"))
    deposit_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0"))

    # Duration bounds (days)
    min_duration: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    max_duration: Mapped[int] = mapped_column(Integer, nullable=False, default=14)

    # Status
    is_available: Mapped[bool] = mapped_column(Boolean, default=True)
    status: Mapped[str] = mapped_column(
        String(20), default="active", index=True
    )  # active, paused, deleted

    # Stats
    times_borrowed: Mapped[int] = mapped_column(Integer, default=0)
    total_earnings: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0"))

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow
    )
