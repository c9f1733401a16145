"""Financial and lifecycle audit trail service."""

from typing import Any
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from app.models.admin import AuditLog


class AuditService:
    """Service for immutable audit logging."""

    # Actions that move money
    FINANCIAL_ACTIONS = {
        "payment_authorize",
        "payment_capture",
        "payment_release",
        "deposit_refund",
        "lender_transfer",
        "dispute_settle",
    }

    async def log_action(
        self,
        db: AsyncSession,
        user_id: UUID | None,
        action: str,
        resource_type: str,
        resource_id: UUID,
        old_values: dict[str, Any] | None = None,
        new_values: dict[str, Any] | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> AuditLog:
        """Log an action (immutable).

        Args:
            db: Database session
            user_id: User performing the action, None for system actions
            action: Action name (e.g., "transaction_approve")
            resource_type: Resource type (e.g., "transaction", "dispute")
            resource_id: Resource ID
            old_values: Previous state
            new_values: New state
            ip_address: Client IP
            user_agent: Client user agent

        Returns:
            Created audit log entry
        """
        audit = AuditLog(
            user_id=user_id,
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            old_values=old_values,
            new_values=new_values,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        db.add(audit)
        return audit

    async def log_payment_action(
        self,
        db: AsyncSession,
        user_id: UUID | None,
        action: str,
        transaction_id: UUID,
        amount: int,
        gateway_reference: str | None = None,
        old_status: str | None = None,
        new_status: str | None = None,
    ) -> AuditLog:
        """Log a money movement; ``amount`` is in cents."""
        new_values: dict[str, Any] = {"amount": amount}
        if gateway_reference:
            new_values["gateway_reference"] = gateway_reference
        if new_status:
            new_values["payment_status"] = new_status

        return await self.log_action(
            db=db,
            user_id=user_id,
            action=action,
            resource_type="transaction",
            resource_id=transaction_id,
            old_values={"payment_status": old_status} if old_status else None,
            new_values=new_values,
        )

    async def log_transition(
        self,
        db: AsyncSession,
        user_id: UUID,
        action: str,
        transaction_id: UUID,
        old_status: str,
        new_status: str,
        old_payment_status: str | None = None,
        new_payment_status: str | None = None,
    ) -> AuditLog:
        """Log a transaction status change."""
        old_values: dict[str, Any] = {"status": old_status}
        new_values: dict[str, Any] = {"status": new_status}
        if old_payment_status != new_payment_status:
            old_values["payment_status"] = old_payment_status
            new_values["payment_status"] = new_payment_status

        return await self.log_action(
            db=db,
            user_id=user_id,
            action=action,
            resource_type="transaction",
            resource_id=transaction_id,
            old_values=old_values,
            new_values=new_values,
        )

    async def log_dispute_action(
        self,
        db: AsyncSession,
        user_id: UUID,
        action: str,
        dispute_id: UUID,
        old_status: str | None,
        new_status: str,
        outcome: str | None = None,
        lender_percent: int | None = None,
    ) -> AuditLog:
        """Log dispute action."""
        new_values: dict[str, Any] = {"status": new_status}
        if outcome:
            new_values["outcome"] = outcome
        if lender_percent is not None:
            new_values["lender_percent"] = lender_percent

        return await self.log_action(
            db=db,
            user_id=user_id,
            action=action,
            resource_type="dispute",
            resource_id=dispute_id,
            old_values={"status": old_status} if old_status else None,
            new_values=new_values,
        )


audit_service = AuditService()
