"""Base payment gateway interface.

All gateway adapters must implement this interface.
Business logic should NOT live in adapters - only gateway communication.
Amounts are always in the smallest currency unit (cents).
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum


class GatewayType(str, Enum):
    """Supported payment gateways."""

    STRIPE = "stripe"
    MANUAL = "manual"


class FailureKind(str, Enum):
    """How a failed gateway call should be treated by callers."""

    DECLINED = "declined"  # card or wallet refused, user may retry
    NETWORK = "network"  # outcome unknown, re-query before acting
    ERROR = "error"  # hard processor error


@dataclass
class PaymentResult:
    """Result of a payment intent operation."""

    success: bool
    transaction_id: str | None = None
    status: str | None = None
    client_secret: str | None = None
    amount: int | None = None
    error_message: str | None = None
    failure_kind: FailureKind | None = None
    raw_response: dict | None = None


@dataclass
class RefundResult:
    """Result of a refund operation."""

    success: bool
    refund_id: str | None = None
    error_message: str | None = None
    failure_kind: FailureKind | None = None
    raw_response: dict | None = None


@dataclass
class TransferResult:
    """Result of a payout transfer to a connected account."""

    success: bool
    transfer_id: str | None = None
    error_message: str | None = None
    failure_kind: FailureKind | None = None
    raw_response: dict | None = None


@dataclass
class CustomerResult:
    """Result of a customer or ephemeral key operation."""

    success: bool
    customer_id: str | None = None
    ephemeral_key: str | None = None
    error_message: str | None = None
    failure_kind: FailureKind | None = None


class PaymentGateway(ABC):
    """Abstract base class for payment gateways."""

    @property
    @abstractmethod
    def gateway_type(self) -> GatewayType:
        """Return the gateway type."""
        pass

    @abstractmethod
    async def create_customer(self, email: str, name: str | None = None, metadata: dict | None = None) -> CustomerResult:
        """Create a processor customer for a borrower."""
        pass

    @abstractmethod
    async def create_ephemeral_key(self, customer_id: str) -> CustomerResult:
        """Create a short-lived key the mobile payment sheet uses for the customer."""
        pass

    @abstractmethod
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
        """Create a manual-capture payment intent (authorization hold).

        Args:
            amount: Amount in smallest currency unit
            currency: Currency code
            reference_id: Internal reference (transaction id)
            description: Payment description
            customer_id: Processor customer
            payment_method_id: When given, confirm the hold immediately
            metadata: Additional metadata

        Returns:
            PaymentResult with intent id, status and client secret
        """
        pass

    @abstractmethod
    async def retrieve_payment(self, transaction_id: str) -> PaymentResult:
        """Fetch the live status of a payment intent."""
        pass

    @abstractmethod
    async def capture_payment(self, transaction_id: str, reference_id: str) -> PaymentResult:
        """Capture an authorized hold."""
        pass

    @abstractmethod
    async def cancel_payment(self, transaction_id: str, reference_id: str) -> PaymentResult:
        """Release an uncaptured hold."""
        pass

    @abstractmethod
    async def process_refund(
        self,
        transaction_id: str,
        amount: int,
        reason: str,
    ) -> RefundResult:
        """Refund part of a captured payment.

        Args:
            transaction_id: Original payment intent ID
            amount: Refund amount in smallest currency unit
            reason: Refund reason

        Returns:
            RefundResult with refund details
        """
        pass

    @abstractmethod
    async def create_transfer(
        self,
        amount: int,
        currency: str,
        destination: str,
        reference_id: str,
        metadata: dict | None = None,
    ) -> TransferResult:
        """Pay out to a connected (lender) account."""
        pass
