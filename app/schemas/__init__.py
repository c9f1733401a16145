"""Pydantic schemas for API validation."""

from app.schemas.dispute import (
    DisputeListResponse,
    DisputeResolve,
    DisputeResponse,
    EvidenceCreate,
)
from app.schemas.transaction import (
    AccessCheckResponse,
    ActionRequest,
    ActionResponse,
    PaymentSheetResponse,
    PaymentStatusResponse,
    PickupRequest,
    RateRequest,
    ReturnRequest,
    TransactionCreate,
    TransactionListResponse,
    TransactionResponse,
)

__all__ = [
    # Transaction
    "TransactionCreate",
    "ActionRequest",
    "PickupRequest",
    "ReturnRequest",
    "RateRequest",
    "TransactionResponse",
    "TransactionListResponse",
    "ActionResponse",
    "PaymentSheetResponse",
    "AccessCheckResponse",
    "PaymentStatusResponse",
    # Dispute
    "DisputeResolve",
    "EvidenceCreate",
    "DisputeResponse",
    "DisputeListResponse",
]
