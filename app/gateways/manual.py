"""Manual payment gateway adapter.

Deterministic in-process gateway for development and tests. Intents live in
memory and move through the same statuses Stripe reports, so the rest of
the system cannot tell the difference. Failures can be queued with
``fail_next`` to exercise decline and network paths.
"""

import itertools
from dataclasses import dataclass, field

from app.gateways.base import (
    CustomerResult,
    FailureKind,
    GatewayType,
    PaymentGateway,
    PaymentResult,
    RefundResult,
    TransferResult,
)


@dataclass
class ManualIntent:
    id: str
    amount: int
    currency: str
    reference_id: str
    status: str
    customer_id: str | None = None
    amount_refunded: int = 0
    captures: int = 0

    @property
    def client_secret(self) -> str:
        return f"{self.id}_secret"


@dataclass
class _QueuedFailure:
    operation: str
    kind: FailureKind
    message: str


@dataclass
class ManualLedger:
    """Everything the manual gateway has been asked to do."""

    intents: dict[str, ManualIntent] = field(default_factory=dict)
    refunds: list[dict] = field(default_factory=list)
    transfers: list[dict] = field(default_factory=list)


class ManualGateway(PaymentGateway):
    """In-memory payment gateway.

    Holds created without a payment method wait for the borrower
    (``requires_payment_method``) until ``complete_customer_action`` is
    called, mirroring the mobile payment sheet.
    """

    def __init__(self) -> None:
        self._ids = itertools.count(1)
        self._failures: list[_QueuedFailure] = []
        self.ledger = ManualLedger()

    @property
    def gateway_type(self) -> GatewayType:
        return GatewayType.MANUAL

    # Simulation controls

    def reset(self) -> None:
        self._failures.clear()
        self.ledger = ManualLedger()

    def fail_next(self, operation: str, kind: FailureKind = FailureKind.DECLINED, message: str | None = None) -> None:
        """Make the next call of ``operation`` (e.g. "capture_payment") fail."""
        self._failures.append(_QueuedFailure(operation, kind, message or f"Simulated {kind.value} failure"))

    def complete_customer_action(self, transaction_id: str) -> None:
        """Borrower finished the payment sheet: the hold is now authorized."""
        intent = self.ledger.intents[transaction_id]
        if intent.status in ("requires_payment_method", "requires_confirmation", "requires_action"):
            intent.status = "requires_capture"

    def _take_failure(self, operation: str) -> _QueuedFailure | None:
        for failure in self._failures:
            if failure.operation == operation:
                self._failures.remove(failure)
                return failure
        return None

    def _next_id(self, prefix: str) -> str:
        return f"{prefix}_manual_{next(self._ids)}"

    # Gateway interface

    async def create_customer(self, email: str, name: str | None = None, metadata: dict | None = None) -> CustomerResult:
        failure = self._take_failure("create_customer")
        if failure:
            return CustomerResult(success=False, error_message=failure.message, failure_kind=failure.kind)
        return CustomerResult(success=True, customer_id=self._next_id("cus"))

    async def create_ephemeral_key(self, customer_id: str) -> CustomerResult:
        failure = self._take_failure("create_ephemeral_key")
        if failure:
            return CustomerResult(success=False, error_message=failure.message, failure_kind=failure.kind)
        return CustomerResult(success=True, customer_id=customer_id, ephemeral_key=self._next_id("ek"))

    async def create_payment(
        self,
        amount: int,
        currency: str,
        reference_id: str,
        description: str,
        customer_id: str | None = None,
        payment_method_id: str | None = None,
        metadata: dict | None = None,
    ) -> PaymentResult:
        """Create an in-memory hold; confirmed at once when a payment method is given."""
        failure = self._take_failure("create_payment")
        if failure:
            return PaymentResult(success=False, error_message=failure.message, failure_kind=failure.kind)

        intent = ManualIntent(
            id=self._next_id("pi"),
            amount=amount,
            currency=currency,
            reference_id=reference_id,
            status="requires_capture" if payment_method_id else "requires_payment_method",
            customer_id=customer_id,
        )
        self.ledger.intents[intent.id] = intent
        return self._result(intent)

    async def retrieve_payment(self, transaction_id: str) -> PaymentResult:
        failure = self._take_failure("retrieve_payment")
        if failure:
            return PaymentResult(
                success=False,
                transaction_id=transaction_id,
                error_message=failure.message,
                failure_kind=failure.kind,
            )
        intent = self.ledger.intents.get(transaction_id)
        if intent is None:
            return PaymentResult(success=False, error_message="No such payment intent", failure_kind=FailureKind.ERROR)
        return self._result(intent)

    async def capture_payment(self, transaction_id: str, reference_id: str) -> PaymentResult:
        failure = self._take_failure("capture_payment")
        if failure:
            return PaymentResult(
                success=False,
                transaction_id=transaction_id,
                error_message=failure.message,
                failure_kind=failure.kind,
            )
        intent = self.ledger.intents.get(transaction_id)
        if intent is None or intent.status != "requires_capture":
            status = intent.status if intent else "missing"
            return PaymentResult(
                success=False,
                transaction_id=transaction_id,
                status=status,
                error_message=f"Cannot capture intent in status {status}",
                failure_kind=FailureKind.ERROR,
            )
        intent.status = "succeeded"
        intent.captures += 1
        return self._result(intent)

    async def cancel_payment(self, transaction_id: str, reference_id: str) -> PaymentResult:
        failure = self._take_failure("cancel_payment")
        if failure:
            return PaymentResult(
                success=False,
                transaction_id=transaction_id,
                error_message=failure.message,
                failure_kind=failure.kind,
            )
        intent = self.ledger.intents.get(transaction_id)
        if intent is None or intent.status == "succeeded":
            status = intent.status if intent else "missing"
            return PaymentResult(
                success=False,
                transaction_id=transaction_id,
                status=status,
                error_message=f"Cannot cancel intent in status {status}",
                failure_kind=FailureKind.ERROR,
            )
        intent.status = "canceled"
        return self._result(intent)

    async def process_refund(
        self,
        transaction_id: str,
        amount: int,
        reason: str,
    ) -> RefundResult:
        failure = self._take_failure("process_refund")
        if failure:
            return RefundResult(success=False, error_message=failure.message, failure_kind=failure.kind)
        intent = self.ledger.intents.get(transaction_id)
        if intent is None or intent.status != "succeeded" or intent.amount_refunded + amount > intent.amount:
            return RefundResult(
                success=False,
                error_message="Refund exceeds captured amount",
                failure_kind=FailureKind.ERROR,
            )
        intent.amount_refunded += amount
        refund_id = self._next_id("re")
        self.ledger.refunds.append(
            {"id": refund_id, "payment_intent": transaction_id, "amount": amount, "reason": reason}
        )
        return RefundResult(success=True, refund_id=refund_id, raw_response={"status": "succeeded"})

    async def create_transfer(
        self,
        amount: int,
        currency: str,
        destination: str,
        reference_id: str,
        metadata: dict | None = None,
    ) -> TransferResult:
        failure = self._take_failure("create_transfer")
        if failure:
            return TransferResult(success=False, error_message=failure.message, failure_kind=failure.kind)
        transfer_id = self._next_id("tr")
        self.ledger.transfers.append(
            {
                "id": transfer_id,
                "amount": amount,
                "currency": currency,
                "destination": destination,
                "reference_id": reference_id,
                "metadata": metadata or {},
            }
        )
        return TransferResult(success=True, transfer_id=transfer_id)

    def _result(self, intent: ManualIntent) -> PaymentResult:
        return PaymentResult(
            success=True,
            transaction_id=intent.id,
            status=intent.status,
            client_secret=intent.client_secret,
            amount=intent.amount,
            raw_response={"id": intent.id, "status": intent.status},
        )
