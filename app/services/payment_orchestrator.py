"""Payment orchestration for borrow transactions.

Coordinates the authorization hold, capture, release and settlement of a
transaction's payment with the gateway. Gateway failures are classified
into the error taxonomy:

- declined  -> PaymentDeclined (402), the borrower may retry
- network   -> PaymentIndeterminate (503), the outcome is unknown and the
               caller must re-query payment status before acting
- error     -> PaymentError (402)

Methods perform gateway calls and write audit entries; they never change
``status``/``payment_status`` themselves, the transaction service does that
from the state machine outcome.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.exceptions import PaymentDeclined, PaymentError, PaymentIndeterminate, ValidationError
from app.domain.payment_state import (
    AWAITING_CUSTOMER_STATUSES,
    PaymentStatus,
    PAYMENT_TRANSITIONS,
    payment_status_for_intent,
)
from app.domain.pricing import to_cents
from app.gateways.base import FailureKind, PaymentResult
from app.models.transaction import BorrowTransaction
from app.models.user import User
from app.services.audit_service import audit_service
from app.services.gateway_service import GatewayService, gateway_service

logger = logging.getLogger(__name__)


@dataclass
class PaymentSheetCredentials:
    """What the mobile payment sheet needs to confirm the hold."""

    client_secret: str | None
    ephemeral_key: str | None
    customer_id: str | None

    def to_dict(self) -> dict:
        return {
            "client_secret": self.client_secret,
            "ephemeral_key": self.ephemeral_key,
            "customer_id": self.customer_id,
        }


@dataclass
class HoldStatus:
    """Live state of a transaction's hold."""

    intent_status: str | None
    credentials: PaymentSheetCredentials | None = None

    @property
    def awaiting_customer(self) -> bool:
        return self.intent_status in AWAITING_CUSTOMER_STATUSES


def _raise_for_failure(result, operation: str) -> None:
    if result.success:
        return
    message = result.error_message or f"Payment {operation} failed"
    if result.failure_kind == FailureKind.DECLINED:
        raise PaymentDeclined(message)
    if result.failure_kind == FailureKind.NETWORK:
        raise PaymentIndeterminate(
            f"Payment processor unreachable during {operation}, re-check payment status"
        )
    raise PaymentError(message)


class PaymentOrchestrator:
    """Drives the payment side of the transaction lifecycle."""

    def __init__(self, gateway: GatewayService | None = None):
        self.gateway = gateway or gateway_service

    # Holds

    async def ensure_customer(self, db: AsyncSession, borrower: User) -> str:
        """Processor customer for the borrower, created on first use."""
        if borrower.stripe_customer_id:
            return borrower.stripe_customer_id

        result = await self.gateway.create_customer(
            email=borrower.email,
            name=borrower.full_name,
            metadata={"user_id": str(borrower.id)},
        )
        _raise_for_failure(result, "customer setup")
        borrower.stripe_customer_id = result.customer_id
        await db.flush()
        return result.customer_id

    async def payment_sheet(
        self,
        customer_id: str | None,
        client_secret: str | None,
    ) -> PaymentSheetCredentials:
        """Fresh credentials for the payment sheet.

        An ephemeral key failure is not fatal: the client can ask again via
        confirm-payment.
        """
        ephemeral_key = None
        if customer_id:
            key = await self.gateway.create_ephemeral_key(customer_id)
            if key.success:
                ephemeral_key = key.ephemeral_key
            else:
                logger.warning(f"Ephemeral key failed for customer {customer_id}: {key.error_message}")
        return PaymentSheetCredentials(client_secret, ephemeral_key, customer_id)

    async def authorize_hold(
        self,
        db: AsyncSession,
        txn: BorrowTransaction,
        borrower: User,
        payment_method_id: str | None = None,
    ) -> tuple[PaymentStatus, PaymentSheetCredentials]:
        """Place a manual-capture hold for rental fee plus deposit.

        Returns:
            (payment status to record, payment sheet credentials)
        """
        amount = to_cents(txn.total_amount)
        if amount < settings.min_charge_cents:
            raise ValidationError(
                f"Total must be at least {settings.min_charge_cents / 100:.2f} {settings.currency.upper()}"
            )

        customer_id = await self.ensure_customer(db, borrower)
        result = await self.gateway.create_payment(
            amount=amount,
            currency=settings.currency,
            reference_id=str(txn.id),
            description=f"Borrow hold for transaction {txn.id}",
            customer_id=customer_id,
            payment_method_id=payment_method_id,
            metadata={"listing_id": str(txn.listing_id), "borrower_id": str(borrower.id)},
        )
        _raise_for_failure(result, "authorization")

        txn.stripe_payment_intent_id = result.transaction_id
        payment_status = PaymentStatus.NONE
        if result.status == "requires_capture":
            payment_status = PaymentStatus.AUTHORIZED
            await audit_service.log_payment_action(
                db,
                user_id=borrower.id,
                action="payment_authorize",
                transaction_id=txn.id,
                amount=amount,
                gateway_reference=result.transaction_id,
                old_status=PaymentStatus.NONE.value,
                new_status=PaymentStatus.AUTHORIZED.value,
            )

        logger.info(f"Hold {result.transaction_id} for transaction {txn.id}: {amount} cents, {result.status}")
        credentials = await self.payment_sheet(customer_id, result.client_secret)
        return payment_status, credentials

    async def fetch_intent(self, txn: BorrowTransaction) -> PaymentResult:
        """Live intent for the transaction's hold."""
        result = await self.gateway.retrieve_payment(txn.stripe_payment_intent_id)
        _raise_for_failure(result, "status check")
        return result

    async def confirm_hold(self, txn: BorrowTransaction, borrower: User) -> HoldStatus:
        """Re-query the hold after the borrower used the payment sheet.

        A sheet the borrower cancelled or has not finished is not an error:
        fresh credentials are returned and nothing changes.
        """
        if not txn.stripe_payment_intent_id:
            return HoldStatus(intent_status=None)

        intent = await self.fetch_intent(txn)
        if intent.status == "canceled":
            raise PaymentError("This payment was cancelled, please request the item again")

        status = HoldStatus(intent_status=intent.status)
        if status.awaiting_customer:
            status.credentials = await self.payment_sheet(borrower.stripe_customer_id, intent.client_secret)
        return status

    async def capture(self, db: AsyncSession, txn: BorrowTransaction, actor_id: UUID) -> None:
        """Capture the authorized hold."""
        result = await self.gateway.capture_payment(txn.stripe_payment_intent_id, str(txn.id))
        if not result.success and result.failure_kind != FailureKind.NETWORK:
            # A capture that already went through (earlier attempt whose commit failed)
            live = await self.gateway.retrieve_payment(txn.stripe_payment_intent_id)
            if live.success and live.status == "succeeded":
                logger.info(f"Hold {txn.stripe_payment_intent_id} already captured")
                result = live
        _raise_for_failure(result, "capture")

        await audit_service.log_payment_action(
            db,
            user_id=actor_id,
            action="payment_capture",
            transaction_id=txn.id,
            amount=to_cents(txn.total_amount),
            gateway_reference=txn.stripe_payment_intent_id,
            old_status=txn.payment_status,
            new_status=PaymentStatus.CAPTURED.value,
        )
        logger.info(f"Captured hold {txn.stripe_payment_intent_id} for transaction {txn.id}")

    async def release(self, db: AsyncSession, txn: BorrowTransaction, actor_id: UUID) -> None:
        """Cancel the uncaptured hold so it can never be captured."""
        result = await self.gateway.cancel_payment(txn.stripe_payment_intent_id, str(txn.id))
        if not result.success and result.status == "canceled":
            result = PaymentResult(success=True, transaction_id=txn.stripe_payment_intent_id, status="canceled")
        _raise_for_failure(result, "release")

        await audit_service.log_payment_action(
            db,
            user_id=actor_id,
            action="payment_release",
            transaction_id=txn.id,
            amount=to_cents(txn.total_amount),
            gateway_reference=txn.stripe_payment_intent_id,
            old_status=txn.payment_status,
            new_status=PaymentStatus.RELEASED.value,
        )
        logger.info(f"Released hold {txn.stripe_payment_intent_id} for transaction {txn.id}")

    # Settlement

    async def _refund_borrower(
        self, db: AsyncSession, txn: BorrowTransaction, amount: Decimal, actor_id: UUID, reason: str
    ) -> None:
        if amount <= 0 or not txn.stripe_payment_intent_id:
            return
        cents = to_cents(amount)
        result = await self.gateway.process_refund(txn.stripe_payment_intent_id, cents, reason)
        _raise_for_failure(result, "deposit refund")
        await audit_service.log_payment_action(
            db,
            user_id=actor_id,
            action="deposit_refund",
            transaction_id=txn.id,
            amount=cents,
            gateway_reference=result.refund_id,
        )

    async def _pay_lender(
        self, db: AsyncSession, txn: BorrowTransaction, lender: User, amount: Decimal, actor_id: UUID, kind: str
    ) -> None:
        if amount <= 0:
            return
        if not lender.stripe_connect_account_id:
            logger.info(f"Lender {lender.id} has no payout account, payout for {txn.id} deferred")
            return
        cents = to_cents(amount)
        result = await self.gateway.create_transfer(
            amount=cents,
            currency=settings.currency,
            destination=lender.stripe_connect_account_id,
            reference_id=str(txn.id),
            metadata={"type": kind},
        )
        _raise_for_failure(result, "lender payout")
        txn.stripe_transfer_id = result.transfer_id
        await audit_service.log_payment_action(
            db,
            user_id=actor_id,
            action="lender_transfer",
            transaction_id=txn.id,
            amount=cents,
            gateway_reference=result.transfer_id,
        )

    async def settle_return(
        self, db: AsyncSession, txn: BorrowTransaction, lender: User, actor_id: UUID
    ) -> None:
        """Clean return: deposit back to the borrower, rental payout to the lender."""
        await self._refund_borrower(db, txn, txn.deposit_amount, actor_id, "Deposit returned after clean return")
        await self._pay_lender(db, txn, lender, txn.lender_payout, actor_id, "rental_payout")

    async def settle_dispute(
        self,
        db: AsyncSession,
        txn: BorrowTransaction,
        lender: User,
        deposit_to_lender: Decimal,
        deposit_to_borrower: Decimal,
        actor_id: UUID,
    ) -> None:
        """Split the deposit per the dispute resolution; the rental payout is unaffected."""
        if txn.payment_status != PaymentStatus.CAPTURED.value:
            logger.info(f"Transaction {txn.id} has no captured payment, nothing to settle")
            return
        await self._refund_borrower(db, txn, deposit_to_borrower, actor_id, "Deposit share after dispute")
        await self._pay_lender(
            db, txn, lender, txn.lender_payout + deposit_to_lender, actor_id, "dispute_settlement"
        )

    # Reconciliation

    async def reconcile(self, db: AsyncSession, txn: BorrowTransaction) -> tuple[str | None, PaymentStatus]:
        """Bring ``payment_status`` forward to what the processor reports.

        Returns:
            (live intent status, payment status after reconciliation)
        """
        current = PaymentStatus(txn.payment_status)
        if not txn.stripe_payment_intent_id:
            return None, current

        intent = await self.fetch_intent(txn)
        live = payment_status_for_intent(intent.status)
        if live is not None and live != current and live in PAYMENT_TRANSITIONS[current]:
            logger.warning(f"Reconciled transaction {txn.id} payment {current.value} → {live.value}")
            await audit_service.log_payment_action(
                db,
                user_id=None,
                action="payment_reconcile",
                transaction_id=txn.id,
                amount=intent.amount or 0,
                gateway_reference=txn.stripe_payment_intent_id,
                old_status=current.value,
                new_status=live.value,
            )
            txn.payment_status = live.value
            return intent.status, live
        return intent.status, current


payment_orchestrator = PaymentOrchestrator()
