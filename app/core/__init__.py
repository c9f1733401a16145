"""Core utilities and security modules."""

from app.core.exceptions import (
    AccessDenied,
    AppException,
    AuthenticationError,
    AuthorizationError,
    ExternalServiceError,
    ListingNotAvailable,
    NotFoundError,
    PaymentDeclined,
    PaymentError,
    PaymentIndeterminate,
    TransactionConflict,
    ValidationError,
)
from app.core.security import (
    create_access_token,
    verify_token,
)

__all__ = [
    "AccessDenied",
    "AppException",
    "AuthenticationError",
    "AuthorizationError",
    "ExternalServiceError",
    "ListingNotAvailable",
    "NotFoundError",
    "PaymentDeclined",
    "PaymentError",
    "PaymentIndeterminate",
    "TransactionConflict",
    "ValidationError",
    "create_access_token",
    "verify_token",
]
