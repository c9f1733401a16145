"""User database model."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from sqlalchemy import Boolean, DateTime, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from app.database import Base, utcnow


class User(Base):
    """User account model.

    Subscription tier and verification are owned by the subscription and
    identity workflows; the lending core only reads them.
    """

    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    role: Mapped[str] = mapped_column(
        String(20), nullable=False, default="member"
    )  # member, admin

    # Profile
    first_name: Mapped[str | None] = mapped_column(String(100))
    last_name: Mapped[str | None] = mapped_column(String(100))
    city: Mapped[str | None] = mapped_column(String(100))

    # Access
    subscription_tier: Mapped[str] = mapped_column(
        String(20), nullable=False, default="free"
    )  # free, plus
    is_verified: Mapped[bool] = mapped_column(Boolean, default=False)
    verification_grace_until: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    # Stripe
    stripe_customer_id: Mapped[str | None] = mapped_column(String(255))
    stripe_connect_account_id: Mapped[str | None] = mapped_column(String(255))

    # Push notification token
    push_token: Mapped[str | None] = mapped_column(Text)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow
    )

    @property
    def full_name(self) -> str:
        """Get user's full name."""
        parts = [self.first_name, self.last_name]
        return " ".join(p for p in parts if p) or "Member"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    @property
    def is_effectively_verified(self) -> bool:
        """Verified, or still inside the post-signup verification grace window."""
        if self.is_verified:
            return True
        grace = self.verification_grace_until
        if grace is None:
            return False
        if grace.tzinfo is None:
            grace = grace.replace(tzinfo=UTC)
        return grace > datetime.now(UTC)
