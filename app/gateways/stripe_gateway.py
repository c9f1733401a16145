"""Stripe payment gateway adapter.

The stripe library is synchronous, so every call runs in a worker thread.
Holds are created with ``capture_method="manual"`` and every mutating call
carries an idempotency key derived from our transaction id.
"""

import asyncio
import logging
from collections.abc import Callable
from typing import Any

import stripe

from app.config import settings
from app.gateways.base import (
    CustomerResult,
    FailureKind,
    GatewayType,
    PaymentGateway,
    PaymentResult,
    RefundResult,
    TransferResult,
)

logger = logging.getLogger(__name__)


def _classify(error: Exception) -> FailureKind:
    if isinstance(error, stripe.CardError):
        return FailureKind.DECLINED
    if isinstance(error, stripe.APIConnectionError):
        return FailureKind.NETWORK
    return FailureKind.ERROR


class StripeGateway(PaymentGateway):
    """Stripe payment gateway implementation."""

    def __init__(self):
        self.secret_key = settings.stripe_secret_key
        self.api_version = settings.stripe_api_version

    @property
    def gateway_type(self) -> GatewayType:
        return GatewayType.STRIPE

    async def _call(self, func: Callable[..., Any], **kwargs) -> Any:
        stripe.api_key = self.secret_key
        stripe.api_version = self.api_version
        return await asyncio.to_thread(func, **kwargs)

    async def create_customer(self, email: str, name: str | None = None, metadata: dict | None = None) -> CustomerResult:
        if not self.secret_key:
            return CustomerResult(success=False, error_message="Stripe not configured", failure_kind=FailureKind.ERROR)

        try:
            customer = await self._call(
                stripe.Customer.create,
                email=email,
                name=name,
                metadata=metadata or {},
            )
            return CustomerResult(success=True, customer_id=customer.id)
        except stripe.StripeError as e:
            logger.error(f"Stripe customer creation failed: {e}")
            return CustomerResult(success=False, error_message=str(e), failure_kind=_classify(e))

    async def create_ephemeral_key(self, customer_id: str) -> CustomerResult:
        if not self.secret_key:
            return CustomerResult(success=False, error_message="Stripe not configured", failure_kind=FailureKind.ERROR)

        try:
            key = await self._call(
                stripe.EphemeralKey.create,
                customer=customer_id,
                stripe_version=self.api_version,
            )
            return CustomerResult(success=True, customer_id=customer_id, ephemeral_key=key.secret)
        except stripe.StripeError as e:
            logger.error(f"Stripe ephemeral key failed for {customer_id}: {e}")
            return CustomerResult(success=False, error_message=str(e), failure_kind=_classify(e))

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
        """Create a manual-capture Stripe PaymentIntent."""
        if not self.secret_key:
            return PaymentResult(success=False, error_message="Stripe not configured", failure_kind=FailureKind.ERROR)

        params: dict[str, Any] = {
            "amount": amount,
            "currency": currency.lower(),
            "description": description,
            "capture_method": "manual",
            "metadata": {"transaction_id": reference_id, **(metadata or {})},
            "idempotency_key": f"hold-{reference_id}",
        }
        if customer_id:
            params["customer"] = customer_id
        if payment_method_id:
            params.update(payment_method=payment_method_id, confirm=True, off_session=False)
        else:
            params["automatic_payment_methods"] = {"enabled": True}

        try:
            intent = await self._call(stripe.PaymentIntent.create, **params)
            return PaymentResult(
                success=True,
                transaction_id=intent.id,
                status=intent.status,
                client_secret=intent.client_secret,
                amount=intent.amount,
                raw_response={"id": intent.id, "status": intent.status},
            )
        except stripe.StripeError as e:
            logger.warning(f"Stripe hold failed for {reference_id}: {e}")
            return PaymentResult(success=False, error_message=str(e), failure_kind=_classify(e))

    async def retrieve_payment(self, transaction_id: str) -> PaymentResult:
        """Fetch Stripe PaymentIntent status."""
        if not self.secret_key:
            return PaymentResult(success=False, error_message="Stripe not configured", failure_kind=FailureKind.ERROR)

        try:
            intent = await self._call(stripe.PaymentIntent.retrieve, id=transaction_id)
            return PaymentResult(
                success=True,
                transaction_id=intent.id,
                status=intent.status,
                client_secret=intent.client_secret,
                amount=intent.amount,
                raw_response={"status": intent.status},
            )
        except stripe.StripeError as e:
            return PaymentResult(
                success=False,
                transaction_id=transaction_id,
                error_message=str(e),
                failure_kind=_classify(e),
            )

    async def capture_payment(self, transaction_id: str, reference_id: str) -> PaymentResult:
        if not self.secret_key:
            return PaymentResult(success=False, error_message="Stripe not configured", failure_kind=FailureKind.ERROR)

        try:
            intent = await self._call(
                stripe.PaymentIntent.capture,
                intent=transaction_id,
                idempotency_key=f"capture-{reference_id}",
            )
            return PaymentResult(
                success=intent.status == "succeeded",
                transaction_id=intent.id,
                status=intent.status,
                amount=intent.amount_received,
                error_message=None if intent.status == "succeeded" else f"Capture left intent {intent.status}",
                failure_kind=None if intent.status == "succeeded" else FailureKind.ERROR,
            )
        except stripe.StripeError as e:
            logger.error(f"Stripe capture failed for {transaction_id}: {e}")
            return PaymentResult(
                success=False,
                transaction_id=transaction_id,
                error_message=str(e),
                failure_kind=_classify(e),
            )

    async def cancel_payment(self, transaction_id: str, reference_id: str) -> PaymentResult:
        if not self.secret_key:
            return PaymentResult(success=False, error_message="Stripe not configured", failure_kind=FailureKind.ERROR)

        try:
            intent = await self._call(
                stripe.PaymentIntent.cancel,
                intent=transaction_id,
                idempotency_key=f"release-{reference_id}",
            )
            return PaymentResult(success=True, transaction_id=intent.id, status=intent.status)
        except stripe.StripeError as e:
            logger.error(f"Stripe release failed for {transaction_id}: {e}")
            return PaymentResult(
                success=False,
                transaction_id=transaction_id,
                error_message=str(e),
                failure_kind=_classify(e),
            )

    async def process_refund(
        self,
        transaction_id: str,
        amount: int,
        reason: str,
    ) -> RefundResult:
        """Process Stripe refund."""
        if not self.secret_key:
            return RefundResult(success=False, error_message="Stripe not configured", failure_kind=FailureKind.ERROR)

        try:
            refund = await self._call(
                stripe.Refund.create,
                payment_intent=transaction_id,
                amount=amount,
                reason="requested_by_customer",
                metadata={"reason": reason[:500]},
                idempotency_key=f"refund-{transaction_id}-{amount}",
            )
            return RefundResult(
                success=refund.status in ("succeeded", "pending"),
                refund_id=refund.id,
                raw_response={"status": refund.status, "id": refund.id},
            )
        except stripe.StripeError as e:
            logger.error(f"Stripe refund failed for {transaction_id}: {e}")
            return RefundResult(success=False, error_message=str(e), failure_kind=_classify(e))

    async def create_transfer(
        self,
        amount: int,
        currency: str,
        destination: str,
        reference_id: str,
        metadata: dict | None = None,
    ) -> TransferResult:
        if not self.secret_key:
            return TransferResult(success=False, error_message="Stripe not configured", failure_kind=FailureKind.ERROR)

        try:
            transfer = await self._call(
                stripe.Transfer.create,
                amount=amount,
                currency=currency.lower(),
                destination=destination,
                metadata={"transaction_id": reference_id, **(metadata or {})},
                idempotency_key=f"transfer-{reference_id}",
            )
            return TransferResult(success=True, transfer_id=transfer.id, raw_response={"id": transfer.id})
        except stripe.StripeError as e:
            logger.error(f"Stripe transfer failed for {reference_id}: {e}")
            return TransferResult(success=False, error_message=str(e), failure_kind=_classify(e))
