"""Python client for the lending API."""

from app.sdk.client import LendingClient
from app.sdk.errors import (
    AccessDenied,
    ClientError,
    NetworkFailure,
    PaymentFailed,
    StateConflict,
    ValidationFailed,
)

__all__ = [
    "LendingClient",
    "ClientError",
    "ValidationFailed",
    "AccessDenied",
    "NetworkFailure",
    "PaymentFailed",
    "StateConflict",
]
