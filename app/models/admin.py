"""Admin-related database models."""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import JSON, CheckConstraint, DateTime, ForeignKey, Integer, Numeric, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from app.database import Base, utcnow


class AuditLog(Base):
    """Audit log for tracking important actions."""

    __tablename__ = "audit_logs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id"), index=True
    )

    # Action details
    action: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    resource_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    resource_id: Mapped[uuid.UUID | None] = mapped_column(Uuid)

    # Changes
    old_values: Mapped[dict | None] = mapped_column(JSON)
    new_values: Mapped[dict | None] = mapped_column(JSON)

    # Request info
    ip_address: Mapped[str | None] = mapped_column(String(45))
    user_agent: Mapped[str | None] = mapped_column(Text)

    # Timestamp
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), index=True
    )


class Dispute(Base):
    """Condition-mismatch dispute, at most one per transaction."""

    __tablename__ = "disputes"
    __table_args__ = (
        CheckConstraint(
            "lender_percent IS NULL OR (lender_percent >= 0 AND lender_percent <= 100)",
            name="ck_disputes_lender_percent",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    transaction_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("borrow_transactions.id"), nullable=False, unique=True
    )
    opened_by_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=False
    )

    # Details
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    evidence_urls: Mapped[list[str]] = mapped_column(JSON, default=list)

    # Status: open → under_review → resolved
    status: Mapped[str] = mapped_column(String(20), default="open", index=True)

    # Resolution (set exactly once)
    resolution_outcome: Mapped[str | None] = mapped_column(String(20))  # lender, borrower, split
    lender_percent: Mapped[int | None] = mapped_column(Integer)
    deposit_to_lender: Mapped[Decimal | None] = mapped_column(Numeric(10, 2))
    deposit_to_borrower: Mapped[Decimal | None] = mapped_column(Numeric(10, 2))
    organizer_fee: Mapped[Decimal | None] = mapped_column(Numeric(10, 2))
    resolution_notes: Mapped[str | None] = mapped_column(Text)
    resolved_by_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey("users.id"))
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow
    )
