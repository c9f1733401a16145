"""Initial database schema.

Revision ID: 001_initial
Revises: None
Create Date: 2026-10-18

Creates all initial tables for the Borrowhood lending platform:
- Users
- Listings
- Borrow transactions
- Ratings
- Notifications
- Admin (audit logs, disputes)
"""

from typing import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers
revision: str = "001_initial"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Create all database tables."""

    # ==================== USERS ====================
    op.create_table(
        "users",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("email", sa.String(255), unique=True, nullable=False, index=True),
        sa.Column("role", sa.String(20), nullable=False, server_default="member"),
        sa.Column("first_name", sa.String(100)),
        sa.Column("last_name", sa.String(100)),
        sa.Column("city", sa.String(100)),
        sa.Column("subscription_tier", sa.String(20), nullable=False, server_default="free"),
        sa.Column("is_verified", sa.Boolean, server_default=sa.false()),
        sa.Column("verification_grace_until", sa.DateTime(timezone=True)),
        sa.Column("is_active", sa.Boolean, server_default=sa.true()),
        sa.Column("stripe_customer_id", sa.String(255)),
        sa.Column("stripe_connect_account_id", sa.String(255)),
        sa.Column("push_token", sa.Text),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), onupdate=sa.func.now()),
    )

    # ==================== LISTINGS ====================
    op.create_table(
        "listings",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("owner_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False, index=True),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("description", sa.Text),
        sa.Column("condition", sa.String(20), nullable=False, server_default="good"),
        sa.Column("visibility", sa.String(20), nullable=False, server_default="neighborhood", index=True),
        sa.Column("is_free", sa.Boolean, server_default=sa.false()),
        sa.Column("price_per_day", sa.Numeric(10, 2), server_default="0"),
        sa.Column("deposit_amount", sa.Numeric(10, 2), server_default="0"),
        sa.Column("min_duration", sa.Integer, nullable=False, server_default="1"),
        sa.Column("max_duration", sa.Integer, nullable=False, server_default="14"),
        sa.Column("is_available", sa.Boolean, server_default=sa.true()),
        sa.Column("status", sa.String(20), server_default="active", index=True),
        sa.Column("times_borrowed", sa.Integer, server_default="0"),
        sa.Column("total_earnings", sa.Numeric(10, 2), server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), onupdate=sa.func.now()),
        sa.CheckConstraint(
            "min_duration > 0 AND min_duration <= max_duration",
            name="ck_listings_duration_bounds",
        ),
    )

    # ==================== TRANSACTIONS ====================
    op.create_table(
        "borrow_transactions",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("listing_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("listings.id"), nullable=False, index=True),
        sa.Column("borrower_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False, index=True),
        sa.Column("lender_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False, index=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending", index=True),
        sa.Column("payment_status", sa.String(20), nullable=False, server_default="none"),
        sa.Column("start_date", sa.Date, nullable=False),
        sa.Column("end_date", sa.Date, nullable=False),
        sa.Column("rental_days", sa.Integer, nullable=False),
        sa.Column("daily_rate", sa.Numeric(10, 2), server_default="0"),
        sa.Column("rental_fee", sa.Numeric(10, 2), server_default="0"),
        sa.Column("deposit_amount", sa.Numeric(10, 2), server_default="0"),
        sa.Column("platform_fee", sa.Numeric(10, 2), server_default="0"),
        sa.Column("lender_payout", sa.Numeric(10, 2), server_default="0"),
        sa.Column("stripe_payment_intent_id", sa.String(255), index=True),
        sa.Column("stripe_transfer_id", sa.String(255)),
        sa.Column("condition_at_pickup", sa.String(20)),
        sa.Column("condition_at_return", sa.String(20)),
        sa.Column("condition_notes", sa.Text),
        sa.Column("borrower_message", sa.Text),
        sa.Column("lender_response", sa.Text),
        sa.Column("actual_pickup_at", sa.DateTime(timezone=True)),
        sa.Column("actual_return_at", sa.DateTime(timezone=True)),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), onupdate=sa.func.now()),
        sa.CheckConstraint("end_date > start_date", name="ck_borrow_transactions_dates"),
    )

    # ==================== RATINGS ====================
    op.create_table(
        "ratings",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("transaction_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("borrow_transactions.id"), nullable=False, index=True),
        sa.Column("rater_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("rated_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False, index=True),
        sa.Column("is_lender_rating", sa.Boolean, nullable=False),
        sa.Column("rating", sa.Integer, nullable=False),
        sa.Column("comment", sa.Text),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("transaction_id", "rater_id", name="uq_ratings_transaction_rater"),
        sa.CheckConstraint("rating BETWEEN 1 AND 5", name="ck_ratings_range"),
    )

    # ==================== NOTIFICATIONS ====================
    op.create_table(
        "notifications",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("notification_type", sa.String(50), nullable=False),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("body", sa.Text, nullable=False),
        sa.Column("data", postgresql.JSONB),
        sa.Column("transaction_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("borrow_transactions.id")),
        sa.Column("is_read", sa.Boolean, server_default=sa.false()),
        sa.Column("push_sent", sa.Boolean, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # ==================== ADMIN ====================
    op.create_table(
        "audit_logs",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id"), index=True),
        sa.Column("action", sa.String(100), nullable=False, index=True),
        sa.Column("resource_type", sa.String(50), nullable=False, index=True),
        sa.Column("resource_id", postgresql.UUID(as_uuid=True)),
        sa.Column("old_values", postgresql.JSONB),
        sa.Column("new_values", postgresql.JSONB),
        sa.Column("ip_address", sa.String(45)),
        sa.Column("user_agent", sa.Text),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), index=True),
    )

    op.create_table(
        "disputes",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("transaction_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("borrow_transactions.id"), nullable=False, unique=True),
        sa.Column("opened_by_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("reason", sa.Text, nullable=False),
        sa.Column("evidence_urls", postgresql.JSONB, server_default="[]"),
        sa.Column("status", sa.String(20), server_default="open", index=True),
        sa.Column("resolution_outcome", sa.String(20)),
        sa.Column("lender_percent", sa.Integer),
        sa.Column("deposit_to_lender", sa.Numeric(10, 2)),
        sa.Column("deposit_to_borrower", sa.Numeric(10, 2)),
        sa.Column("organizer_fee", sa.Numeric(10, 2)),
        sa.Column("resolution_notes", sa.Text),
        sa.Column("resolved_by_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id")),
        sa.Column("resolved_at", sa.DateTime(timezone=True)),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), onupdate=sa.func.now()),
        sa.CheckConstraint(
            "lender_percent IS NULL OR (lender_percent >= 0 AND lender_percent <= 100)",
            name="ck_disputes_lender_percent",
        ),
    )


def downgrade() -> None:
    """Drop all database tables in reverse order."""
    op.drop_table("disputes")
    op.drop_table("audit_logs")
    op.drop_table("notifications")
    op.drop_table("ratings")
    op.drop_table("borrow_transactions")
    op.drop_table("listings")
    op.drop_table("users")
