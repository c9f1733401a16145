"""Condition dispute service."""

import logging
from datetime import UTC, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.exceptions import AuthorizationError, NotFoundError, TransactionConflict, ValidationError
from app.domain.dispute_state import (
    DisputeStatus,
    ResolutionOutcome,
    assert_dispute_transition,
    can_add_evidence,
    can_resolve_dispute,
    lender_percent_for,
)
from app.domain.payment_state import PaymentStatus, assert_payment_transition
from app.domain.pricing import percent_of, split_deposit
from app.domain.transaction_state import NotificationType
from app.models.admin import Dispute
from app.models.listing import Listing
from app.models.transaction import BorrowTransaction
from app.models.user import User
from app.services.audit_service import audit_service
from app.services.notification_service import PendingNotification
from app.services.payment_orchestrator import PaymentOrchestrator, payment_orchestrator

logger = logging.getLogger(__name__)


class DisputeService:
    """Service for the condition dispute lifecycle."""

    def __init__(self, payments: PaymentOrchestrator | None = None):
        self.payments = payments or payment_orchestrator

    async def open_for_return_mismatch(
        self,
        db: AsyncSession,
        txn: BorrowTransaction,
        opened_by: UUID,
        pickup_condition: str | None,
        return_condition: str,
        notes: str | None = None,
    ) -> Dispute:
        """Open the dispute for a worse-condition return.

        A transaction has at most one dispute; an existing one is returned.
        """
        existing = await db.execute(select(Dispute).where(Dispute.transaction_id == txn.id))
        dispute = existing.scalar_one_or_none()
        if dispute:
            return dispute

        reason = f"Item returned in worse condition: {pickup_condition} → {return_condition}."
        if notes:
            reason = f"{reason} {notes}"

        dispute = Dispute(
            transaction_id=txn.id,
            opened_by_id=opened_by,
            reason=reason,
            evidence_urls=[],
            status=DisputeStatus.OPEN.value,
        )
        db.add(dispute)
        await db.flush()

        await audit_service.log_dispute_action(
            db,
            user_id=opened_by,
            action="dispute_open",
            dispute_id=dispute.id,
            old_status=None,
            new_status=dispute.status,
        )
        logger.info(f"Opened dispute {dispute.id} for transaction {txn.id}: {reason}")
        return dispute

    async def start_review(self, db: AsyncSession, dispute_id: UUID, admin: User) -> Dispute:
        """Move dispute to under_review status."""
        return await self._move(db, dispute_id, admin, DisputeStatus.UNDER_REVIEW, "dispute_review")

    async def reopen(self, db: AsyncSession, dispute_id: UUID, admin: User) -> Dispute:
        """Send a dispute under review back to open for more information."""
        return await self._move(db, dispute_id, admin, DisputeStatus.OPEN, "dispute_reopen")

    async def _move(
        self, db: AsyncSession, dispute_id: UUID, admin: User, target: DisputeStatus, action: str
    ) -> Dispute:
        self._require_admin(admin)
        dispute = await self._get_dispute(db, dispute_id, for_update=True)
        old_status = dispute.status
        assert_dispute_transition(old_status, target.value)
        dispute.status = target.value

        await audit_service.log_dispute_action(
            db,
            user_id=admin.id,
            action=action,
            dispute_id=dispute.id,
            old_status=old_status,
            new_status=target.value,
        )
        await db.commit()
        return dispute

    async def resolve(
        self,
        db: AsyncSession,
        dispute_id: UUID,
        resolved_by: User,
        outcome: str,
        lender_percent: int | None = None,
        notes: str | None = None,
    ) -> tuple[Dispute, list[PendingNotification]]:
        """Resolve a dispute and settle the deposit.

        Returns:
            (resolved dispute, notifications for both parties)
        """
        self._require_admin(resolved_by)
        outcome = ResolutionOutcome(outcome)
        percent = lender_percent_for(outcome, lender_percent)

        dispute = await self._get_dispute(db, dispute_id, for_update=True)
        allowed, error = can_resolve_dispute(dispute.status, dispute.lender_percent)
        if not allowed:
            raise TransactionConflict(error, current_status=dispute.status)
        assert_dispute_transition(dispute.status, DisputeStatus.RESOLVED.value)

        txn = await self._get_transaction(db, dispute.transaction_id)
        lender = await db.get(User, txn.lender_id)

        deposit = txn.deposit_amount or Decimal("0")
        to_lender, to_borrower = split_deposit(deposit, percent)

        old_status = dispute.status
        dispute.status = DisputeStatus.RESOLVED.value
        dispute.resolution_outcome = outcome.value
        dispute.lender_percent = percent
        dispute.deposit_to_lender = to_lender
        dispute.deposit_to_borrower = to_borrower
        dispute.organizer_fee = percent_of(deposit, settings.organizer_fee_percent)
        dispute.resolution_notes = notes
        dispute.resolved_by_id = resolved_by.id
        dispute.resolved_at = datetime.now(UTC)

        await self.payments.settle_dispute(db, txn, lender, to_lender, to_borrower, resolved_by.id)
        if txn.payment_status == PaymentStatus.CAPTURED.value and deposit > 0:
            assert_payment_transition(txn.payment_status, PaymentStatus.REFUNDED.value)
            txn.payment_status = PaymentStatus.REFUNDED.value

        await audit_service.log_dispute_action(
            db,
            user_id=resolved_by.id,
            action="dispute_settle",
            dispute_id=dispute.id,
            old_status=old_status,
            new_status=dispute.status,
            outcome=outcome.value,
            lender_percent=percent,
        )
        await db.commit()
        logger.info(
            f"Resolved dispute {dispute.id} ({outcome.value}, {percent}% to lender): "
            f"{to_lender} to lender, {to_borrower} to borrower"
        )

        listing = await db.get(Listing, txn.listing_id)
        data = {
            "listing_title": listing.title if listing else "your item",
            "dispute_id": str(dispute.id),
            "outcome": outcome.value,
        }
        notifications = [
            PendingNotification(user_id, NotificationType.DISPUTE_RESOLVED, txn.id, data)
            for user_id in (txn.borrower_id, txn.lender_id)
        ]
        return dispute, notifications

    async def add_evidence(self, db: AsyncSession, dispute_id: UUID, user: User, urls: list[str]) -> Dispute:
        """Attach evidence urls; only the parties may, until resolution."""
        if not urls or len(urls) > settings.max_evidence_per_request:
            raise ValidationError(f"Provide between 1 and {settings.max_evidence_per_request} evidence urls")

        dispute = await self._get_dispute(db, dispute_id, for_update=True)
        txn = await self._get_transaction(db, dispute.transaction_id)
        if txn.role_of(user.id) is None:
            raise AuthorizationError("Only the borrower or lender can add evidence")

        allowed, error = can_add_evidence(dispute.status)
        if not allowed:
            raise TransactionConflict(error, current_status=dispute.status)

        current = list(dispute.evidence_urls or [])
        if len(current) + len(urls) > settings.max_dispute_evidence:
            raise ValidationError(
                f"A dispute holds at most {settings.max_dispute_evidence} evidence urls "
                f"({len(current)} already attached)"
            )

        # Reassign so the JSON column is marked dirty
        dispute.evidence_urls = current + list(urls)
        await db.commit()
        return dispute

    async def get(self, db: AsyncSession, dispute_id: UUID, user: User) -> Dispute:
        dispute = await self._get_dispute(db, dispute_id)
        if not user.is_admin:
            txn = await self._get_transaction(db, dispute.transaction_id)
            if txn.role_of(user.id) is None:
                raise NotFoundError("Dispute", str(dispute_id))
        return dispute

    async def list_disputes(
        self,
        db: AsyncSession,
        user: User,
        status: str | None = None,
        page: int = 1,
        page_size: int = 20,
    ) -> tuple[list[Dispute], int]:
        """Disputes visible to the user: all for admins, their own otherwise."""
        query = select(Dispute)
        if not user.is_admin:
            query = query.join(BorrowTransaction, BorrowTransaction.id == Dispute.transaction_id).where(
                or_(BorrowTransaction.borrower_id == user.id, BorrowTransaction.lender_id == user.id)
            )
        if status:
            query = query.where(Dispute.status == DisputeStatus(status).value)

        count_result = await db.execute(select(func.count()).select_from(query.subquery()))
        total = count_result.scalar() or 0

        offset = (page - 1) * page_size
        result = await db.execute(query.order_by(Dispute.created_at.desc()).offset(offset).limit(page_size))
        return list(result.scalars().all()), total

    def _require_admin(self, user: User) -> None:
        if not user.is_admin:
            raise AuthorizationError("Only admins can manage disputes")

    async def _get_dispute(self, db: AsyncSession, dispute_id: UUID, for_update: bool = False) -> Dispute:
        """Get dispute by ID or raise NotFoundError."""
        query = select(Dispute).where(Dispute.id == dispute_id)
        if for_update:
            query = query.with_for_update().execution_options(populate_existing=True)
        result = await db.execute(query)
        dispute = result.scalar_one_or_none()
        if not dispute:
            raise NotFoundError("Dispute", str(dispute_id))
        return dispute

    async def _get_transaction(self, db: AsyncSession, transaction_id: UUID) -> BorrowTransaction:
        txn = await db.get(BorrowTransaction, transaction_id)
        if not txn:
            raise NotFoundError("Transaction", str(transaction_id))
        return txn


dispute_service = DisputeService()
