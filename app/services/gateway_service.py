"""Payment gateway service.

Routes payment operations to the configured gateway adapter.
No business logic here - only gateway coordination.
"""

from app.config import settings
from app.gateways.base import (
    CustomerResult,
    GatewayType,
    PaymentGateway,
    PaymentResult,
    RefundResult,
    TransferResult,
)
from app.gateways.manual import ManualGateway
from app.gateways.stripe_gateway import StripeGateway


def _is_production() -> bool:
    """Check if running in production environment."""
    return settings.environment == "production"


def _assert_production_for_real_gateway(gateway_type: GatewayType) -> None:
    """Block real gateway operations in non-production environments.

    Raises:
        RuntimeError: If attempting real gateway operation outside production
    """
    if gateway_type == GatewayType.STRIPE and not _is_production() and not settings.stripe_test_mode:
        raise RuntimeError(
            f"Cannot execute real {gateway_type.value} gateway operations "
            f"in {settings.environment} environment. Set ENVIRONMENT=production or STRIPE_TEST_MODE=true."
        )


class GatewayService:
    """Service for managing payment gateway operations."""

    def __init__(self, default_gateway: str | GatewayType | None = None):
        self._gateways: dict[GatewayType, PaymentGateway] = {}
        self._default = default_gateway

    def get_gateway(self, gateway_type: str | GatewayType | None = None) -> PaymentGateway:
        """Get or create gateway instance."""
        gateway_type = gateway_type or self._default or settings.payment_gateway
        if isinstance(gateway_type, str):
            try:
                gateway_type = GatewayType(gateway_type)
            except ValueError:
                gateway_type = GatewayType.MANUAL

        if gateway_type not in self._gateways:
            if gateway_type == GatewayType.STRIPE:
                self._gateways[gateway_type] = StripeGateway()
            else:
                self._gateways[gateway_type] = ManualGateway()

        return self._gateways[gateway_type]

    def _real_gateway(self) -> PaymentGateway:
        gateway = self.get_gateway()
        # Environment safety: block real gateway in non-production
        _assert_production_for_real_gateway(gateway.gateway_type)
        return gateway

    async def create_customer(self, email: str, name: str | None = None, metadata: dict | None = None) -> CustomerResult:
        return await self._real_gateway().create_customer(email=email, name=name, metadata=metadata)

    async def create_ephemeral_key(self, customer_id: str) -> CustomerResult:
        return await self._real_gateway().create_ephemeral_key(customer_id)

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
        """Create an authorization hold via the configured gateway."""
        return await self._real_gateway().create_payment(
            amount=amount,
            currency=currency,
            reference_id=reference_id,
            description=description,
            customer_id=customer_id,
            payment_method_id=payment_method_id,
            metadata=metadata,
        )

    async def retrieve_payment(self, transaction_id: str) -> PaymentResult:
        """Fetch live payment status via gateway."""
        return await self._real_gateway().retrieve_payment(transaction_id)

    async def capture_payment(self, transaction_id: str, reference_id: str) -> PaymentResult:
        return await self._real_gateway().capture_payment(transaction_id, reference_id)

    async def cancel_payment(self, transaction_id: str, reference_id: str) -> PaymentResult:
        return await self._real_gateway().cancel_payment(transaction_id, reference_id)

    async def process_refund(
        self,
        transaction_id: str,
        amount: int,
        reason: str,
    ) -> RefundResult:
        """Process refund via gateway."""
        return await self._real_gateway().process_refund(
            transaction_id=transaction_id,
            amount=amount,
            reason=reason,
        )

    async def create_transfer(
        self,
        amount: int,
        currency: str,
        destination: str,
        reference_id: str,
        metadata: dict | None = None,
    ) -> TransferResult:
        return await self._real_gateway().create_transfer(
            amount=amount,
            currency=currency,
            destination=destination,
            reference_id=reference_id,
            metadata=metadata,
        )


# Singleton instance
gateway_service = GatewayService()
