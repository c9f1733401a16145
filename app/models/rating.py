"""Rating database model."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import Boolean, CheckConstraint, DateTime, ForeignKey, Integer, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from app.database import Base, utcnow


class Rating(Base):
    """One party's rating of the other for a transaction."""

    __tablename__ = "ratings"
    __table_args__ = (
        UniqueConstraint("transaction_id", "rater_id", name="uq_ratings_transaction_rater"),
        CheckConstraint("rating BETWEEN 1 AND 5", name="ck_ratings_range"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    transaction_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("borrow_transactions.id"), nullable=False, index=True
    )
    rater_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False)
    rated_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=False, index=True
    )

    # True when the borrower rates the lender
    is_lender_rating: Mapped[bool] = mapped_column(Boolean, nullable=False)
    rating: Mapped[int] = mapped_column(Integer, nullable=False)  # 1-5
    comment: Mapped[str | None] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )
