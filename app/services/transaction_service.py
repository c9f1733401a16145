"""Borrow transaction service.

Every state-changing action follows the same shape:

1. load the row ``FOR UPDATE`` so actions on one transaction are serialized
2. decide with the pure state machine
3. carry out the transition's effects (payment, dispute, listing)
4. persist the new status, audit and commit
5. hand back the notifications for dispatch after the commit

Any failure in 3 raises before the commit and leaves the persisted status
unchanged.
"""

import logging
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from uuid import UUID

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.exceptions import (
    AccessDenied,
    AuthorizationError,
    ListingNotAvailable,
    NotFoundError,
    TransactionConflict,
    ValidationError,
)
from app.domain.access_gate import AccessDecision, AccessGate, BorrowerProfile, ListingScope
from app.domain.condition import ItemCondition
from app.domain.pricing import calculate_pricing, rental_days
from app.domain.rating_gate import assert_can_rate, direction, required_ratings, validate_rating_value
from app.domain.transaction_state import (
    Approve,
    Cancel,
    ConfirmPayment,
    ConfirmPickup,
    ConfirmReturn,
    Decline,
    Effect,
    Event,
    MarkReturned,
    NoOp,
    NotificationType,
    Notify,
    PartyRole,
    RatingSubmitted,
    Rejected,
    RejectionKind,
    TransactionSnapshot,
    TransactionStatus,
    Transition,
    apply_event,
)
from app.models.listing import Listing
from app.models.rating import Rating
from app.models.transaction import BorrowTransaction
from app.models.user import User
from app.services.audit_service import audit_service
from app.services.dispute_service import DisputeService, dispute_service
from app.services.notification_service import PendingNotification
from app.services.payment_orchestrator import PaymentOrchestrator, PaymentSheetCredentials, payment_orchestrator

logger = logging.getLogger(__name__)


@dataclass
class ActionResult:
    """Outcome of a transaction action as seen by the API."""

    transaction: BorrowTransaction
    noop: bool = False
    message: str | None = None
    requires_payment: bool = False
    credentials: PaymentSheetCredentials | None = None
    notifications: list[PendingNotification] = field(default_factory=list)


class TransactionService:
    """Service for the borrow transaction lifecycle."""

    def __init__(
        self,
        payments: PaymentOrchestrator | None = None,
        disputes: DisputeService | None = None,
        gate: AccessGate | None = None,
    ):
        self.payments = payments or payment_orchestrator
        self.disputes = disputes or dispute_service
        self._gate = gate

    @property
    def gate(self) -> AccessGate:
        # Built per use so checker and fail-open settings are read fresh
        return self._gate or AccessGate()

    # ==================== ACCESS ====================

    async def check_access(self, db: AsyncSession, listing_id: UUID, user: User) -> AccessDecision:
        listing = await self._get_listing(db, listing_id)
        return await self.gate.check(await self._listing_scope(db, listing), BorrowerProfile.from_user(user))

    # ==================== CREATE ====================

    async def create(
        self,
        db: AsyncSession,
        borrower: User,
        listing_id: UUID,
        start_date: date,
        end_date: date,
        message: str | None = None,
        payment_method_id: str | None = None,
    ) -> ActionResult:
        """Create a borrow request, placing the payment hold for paid rentals."""
        if end_date <= start_date:
            raise ValidationError("End date must be after start date")

        listing = await self._get_listing(db, listing_id)
        if listing.owner_id == borrower.id:
            raise ValidationError("You cannot borrow your own item")
        if listing.status != "active" or not listing.is_available:
            raise ListingNotAvailable("This item is not available to borrow right now")

        days = rental_days(start_date, end_date)
        if days < listing.min_duration or days > listing.max_duration:
            raise ValidationError(
                f"Borrow duration must be between {listing.min_duration} and {listing.max_duration} days"
            )

        decision = await self.gate.check(await self._listing_scope(db, listing), BorrowerProfile.from_user(borrower))
        if not decision.can_access:
            raise AccessDenied(decision.reason.value, required_tier=decision.required_tier)

        pricing = calculate_pricing(
            days,
            listing.price_per_day,
            listing.deposit_amount,
            is_free=listing.is_free,
            platform_fee_percent=settings.platform_fee_percent,
        )

        txn = BorrowTransaction(
            listing_id=listing.id,
            borrower_id=borrower.id,
            lender_id=listing.owner_id,
            status=TransactionStatus.PENDING.value,
            payment_status="none",
            start_date=start_date,
            end_date=end_date,
            rental_days=pricing.rental_days,
            daily_rate=pricing.daily_rate,
            rental_fee=pricing.rental_fee,
            deposit_amount=pricing.deposit_amount,
            platform_fee=pricing.platform_fee,
            lender_payout=pricing.lender_payout,
            borrower_message=message,
        )
        db.add(txn)
        await db.flush()

        credentials = None
        if pricing.requires_payment:
            payment_status, credentials = await self.payments.authorize_hold(db, txn, borrower, payment_method_id)
            txn.payment_status = payment_status.value

        await audit_service.log_transition(
            db,
            user_id=borrower.id,
            action="transaction_create",
            transaction_id=txn.id,
            old_status="none",
            new_status=txn.status,
            old_payment_status="none",
            new_payment_status=txn.payment_status,
        )
        await db.commit()
        logger.info(f"Transaction {txn.id} created for listing {listing.id} ({pricing.total} held)")

        notifications = self._notifications(
            txn, listing, (Notify(PartyRole.LENDER, NotificationType.BORROW_REQUEST),)
        )
        return ActionResult(
            transaction=txn,
            requires_payment=pricing.requires_payment and txn.payment_status == "none",
            credentials=credentials,
            notifications=notifications,
        )

    # ==================== READS ====================

    async def get_for_party(self, db: AsyncSession, transaction_id: UUID, user: User) -> BorrowTransaction:
        txn = await db.get(BorrowTransaction, transaction_id)
        if not txn:
            raise NotFoundError("Transaction", str(transaction_id))
        if txn.role_of(user.id) is None and not user.is_admin:
            raise AuthorizationError("Not authorized to view this transaction")
        return txn

    async def list_for_user(
        self,
        db: AsyncSession,
        user: User,
        role: str | None = None,
        status: str | None = None,
        page: int = 1,
        page_size: int = 20,
    ) -> tuple[list[BorrowTransaction], int]:
        query = select(BorrowTransaction)
        if role == PartyRole.BORROWER.value:
            query = query.where(BorrowTransaction.borrower_id == user.id)
        elif role == PartyRole.LENDER.value:
            query = query.where(BorrowTransaction.lender_id == user.id)
        else:
            query = query.where(
                or_(BorrowTransaction.borrower_id == user.id, BorrowTransaction.lender_id == user.id)
            )
        if status:
            query = query.where(BorrowTransaction.status == TransactionStatus(status).value)

        count_result = await db.execute(select(func.count()).select_from(query.subquery()))
        total = count_result.scalar() or 0

        offset = (page - 1) * page_size
        result = await db.execute(
            query.order_by(BorrowTransaction.created_at.desc()).offset(offset).limit(page_size)
        )
        return list(result.scalars().all()), total

    async def my_rating(self, db: AsyncSession, transaction_id: UUID, user_id: UUID) -> int | None:
        result = await db.execute(
            select(Rating.rating).where(Rating.transaction_id == transaction_id, Rating.rater_id == user_id)
        )
        return result.scalar_one_or_none()

    async def payment_status(self, db: AsyncSession, transaction_id: UUID, user: User) -> dict:
        """Live payment status, bringing the stored status forward if it lags."""
        txn = await self.get_for_party(db, transaction_id, user)
        intent_status, payment_status = await self.payments.reconcile(db, txn)
        await db.commit()
        return {
            "transaction_id": txn.id,
            "status": txn.status,
            "payment_status": payment_status.value,
            "intent_status": intent_status,
            "requires_payment": txn.requires_payment,
        }

    # ==================== ACTIONS ====================

    async def approve(
        self, db: AsyncSession, transaction_id: UUID, user: User, message: str | None = None
    ) -> ActionResult:
        txn, role = await self._load_for_update(db, transaction_id, user)
        outcome = self._decide(txn, Approve(role))
        if isinstance(outcome, NoOp):
            return ActionResult(txn, noop=True, message=outcome.reason)

        if message:
            txn.lender_response = message
        return await self._apply(db, txn, outcome, user, "approve")

    async def decline(
        self, db: AsyncSession, transaction_id: UUID, user: User, message: str | None = None
    ) -> ActionResult:
        txn, role = await self._load_for_update(db, transaction_id, user)
        outcome = self._decide(txn, Decline(role))
        if message:
            txn.lender_response = message
        return await self._apply(db, txn, outcome, user, "decline")

    async def cancel(self, db: AsyncSession, transaction_id: UUID, user: User) -> ActionResult:
        txn, role = await self._load_for_update(db, transaction_id, user)
        outcome = self._decide(txn, Cancel(role))
        return await self._apply(db, txn, outcome, user, "cancel")

    async def confirm_payment(self, db: AsyncSession, transaction_id: UUID, user: User) -> ActionResult:
        """Re-check the hold after the borrower used the payment sheet."""
        txn, role = await self._load_for_update(db, transaction_id, user)

        intent_status = None
        credentials = None
        if (
            role == PartyRole.BORROWER
            and txn.requires_payment
            and txn.status in (TransactionStatus.PENDING.value, TransactionStatus.APPROVED.value)
        ):
            hold = await self.payments.confirm_hold(txn, user)
            intent_status = hold.intent_status
            credentials = hold.credentials

        outcome = self._decide(txn, ConfirmPayment(role, intent_status))
        if isinstance(outcome, NoOp):
            return ActionResult(
                txn,
                noop=True,
                message=outcome.reason,
                requires_payment=outcome.requires_payment,
                credentials=credentials,
            )
        return await self._apply(db, txn, outcome, user, "confirm_payment")

    async def confirm_pickup(
        self, db: AsyncSession, transaction_id: UUID, user: User, condition: str | None = None
    ) -> ActionResult:
        txn, role = await self._load_for_update(db, transaction_id, user)
        outcome = self._decide(txn, ConfirmPickup(role))
        if isinstance(outcome, NoOp):
            return ActionResult(txn, noop=True, message=outcome.reason)

        if condition is None:
            listing = await self._get_listing(db, txn.listing_id)
            condition = listing.condition
        txn.condition_at_pickup = ItemCondition(condition).value
        txn.actual_pickup_at = datetime.now(UTC)
        return await self._apply(db, txn, outcome, user, "confirm_pickup")

    async def mark_returned(self, db: AsyncSession, transaction_id: UUID, user: User) -> ActionResult:
        txn, role = await self._load_for_update(db, transaction_id, user)
        outcome = self._decide(txn, MarkReturned(role))
        if isinstance(outcome, NoOp):
            return ActionResult(txn, noop=True, message=outcome.reason)
        return await self._apply(db, txn, outcome, user, "mark_returned")

    async def confirm_return(
        self,
        db: AsyncSession,
        transaction_id: UUID,
        user: User,
        condition: str,
        notes: str | None = None,
    ) -> ActionResult:
        """Lender confirms the return; a worse condition opens a dispute."""
        condition = ItemCondition(condition)
        txn, role = await self._load_for_update(db, transaction_id, user)
        outcome = self._decide(txn, ConfirmReturn(role, condition))

        txn.condition_at_return = condition.value
        txn.condition_notes = notes
        txn.actual_return_at = datetime.now(UTC)
        return await self._apply(db, txn, outcome, user, "confirm_return")

    async def rate(
        self,
        db: AsyncSession,
        transaction_id: UUID,
        user: User,
        rating: int,
        comment: str | None = None,
    ) -> ActionResult:
        """Record the user's rating of the other party."""
        validate_rating_value(rating)
        txn = await self._lock(db, transaction_id)
        role_name = txn.role_of(user.id)

        existing = await self.my_rating(db, txn.id, user.id)
        assert_can_rate(txn.status, role_name is not None, existing is not None)
        role = PartyRole(role_name)

        rater_is_borrower = role == PartyRole.BORROWER
        current_status = txn.status
        db.add(
            Rating(
                transaction_id=txn.id,
                rater_id=user.id,
                rated_id=txn.lender_id if rater_is_borrower else txn.borrower_id,
                is_lender_rating=direction(rater_is_borrower),
                rating=rating,
                comment=comment,
            )
        )
        try:
            await db.flush()
        except IntegrityError:
            await db.rollback()
            raise TransactionConflict("You have already rated this transaction", current_status=current_status)

        count_result = await db.execute(
            select(func.count()).select_from(Rating).where(Rating.transaction_id == txn.id)
        )
        ratings_count = count_result.scalar() or 0

        outcome = self._decide(txn, RatingSubmitted(role, ratings_count, required_ratings()))
        return await self._apply(db, txn, outcome, user, "rate")

    # ==================== INTERNALS ====================

    async def _lock(self, db: AsyncSession, transaction_id: UUID) -> BorrowTransaction:
        result = await db.execute(
            select(BorrowTransaction)
            .where(BorrowTransaction.id == transaction_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        txn = result.scalar_one_or_none()
        if not txn:
            raise NotFoundError("Transaction", str(transaction_id))
        return txn

    async def _load_for_update(
        self, db: AsyncSession, transaction_id: UUID, user: User
    ) -> tuple[BorrowTransaction, PartyRole]:
        txn = await self._lock(db, transaction_id)
        role = txn.role_of(user.id)
        if role is None:
            raise AuthorizationError("You are not a party to this transaction")
        return txn, PartyRole(role)

    def _decide(self, txn: BorrowTransaction, event: Event) -> Transition | NoOp:
        outcome = apply_event(TransactionSnapshot.from_model(txn), event)
        if isinstance(outcome, Rejected):
            if outcome.kind == RejectionKind.FORBIDDEN:
                raise AuthorizationError(outcome.reason)
            raise TransactionConflict(outcome.reason, current_status=txn.status)
        return outcome

    async def _apply(
        self,
        db: AsyncSession,
        txn: BorrowTransaction,
        outcome: Transition | NoOp,
        actor: User,
        action: str,
    ) -> ActionResult:
        if isinstance(outcome, NoOp):
            return ActionResult(txn, noop=True, message=outcome.reason)

        listing = await db.get(Listing, txn.listing_id)
        old_status, old_payment_status = txn.status, txn.payment_status

        for effect in outcome.effects:
            if effect == Effect.CAPTURE_PAYMENT:
                await self.payments.capture(db, txn, actor.id)
            elif effect == Effect.RELEASE_HOLD:
                await self.payments.release(db, txn, actor.id)
            elif effect == Effect.SETTLE_RETURN:
                lender = await db.get(User, txn.lender_id)
                await self.payments.settle_return(db, txn, lender, actor.id)
            elif effect == Effect.OPEN_DISPUTE:
                await self.disputes.open_for_return_mismatch(
                    db,
                    txn,
                    opened_by=actor.id,
                    pickup_condition=txn.condition_at_pickup,
                    return_condition=txn.condition_at_return,
                    notes=txn.condition_notes,
                )
            elif effect == Effect.MARK_LISTING_UNAVAILABLE:
                listing.is_available = False
            elif effect == Effect.MARK_LISTING_AVAILABLE:
                listing.is_available = True

        txn.status = outcome.status.value
        txn.payment_status = outcome.payment_status.value
        if outcome.status == TransactionStatus.RETURNED and old_status != TransactionStatus.RETURNED.value:
            listing.times_borrowed = (listing.times_borrowed or 0) + 1
            listing.total_earnings = (listing.total_earnings or 0) + txn.lender_payout

        await audit_service.log_transition(
            db,
            user_id=actor.id,
            action=f"transaction_{action}",
            transaction_id=txn.id,
            old_status=old_status,
            new_status=txn.status,
            old_payment_status=old_payment_status,
            new_payment_status=txn.payment_status,
        )
        await db.commit()
        if old_status != txn.status:
            logger.info(f"Transaction {txn.id}: {old_status} → {txn.status} ({action})")

        return ActionResult(
            transaction=txn,
            notifications=self._notifications(txn, listing, outcome.notifications),
        )

    def _notifications(
        self, txn: BorrowTransaction, listing: Listing, notifies: tuple[Notify, ...]
    ) -> list[PendingNotification]:
        data = {"listing_title": listing.title, "status": txn.status}
        return [
            PendingNotification(
                user_id=txn.borrower_id if n.recipient == PartyRole.BORROWER else txn.lender_id,
                type=n.type,
                transaction_id=txn.id,
                data=dict(data),
            )
            for n in notifies
        ]

    async def _get_listing(self, db: AsyncSession, listing_id: UUID) -> Listing:
        listing = await db.get(Listing, listing_id)
        if not listing or listing.status == "deleted":
            raise NotFoundError("Listing", str(listing_id))
        return listing

    async def _listing_scope(self, db: AsyncSession, listing: Listing) -> ListingScope:
        owner_city = None
        if listing.visibility == "town":
            owner = await db.get(User, listing.owner_id)
            owner_city = owner.city if owner else None
        return ListingScope.from_listing(listing, owner_city=owner_city)


transaction_service = TransactionService()
