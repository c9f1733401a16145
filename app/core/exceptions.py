"""Custom application exceptions."""

from typing import Any

from fastapi import HTTPException, status


class AppException(HTTPException):
    """Base application exception."""

    code: str | None = None

    def __init__(
        self,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail: str = "An unexpected error occurred",
        headers: dict[str, str] | None = None,
    ) -> None:
        super().__init__(status_code=status_code, detail=detail, headers=headers)

    def to_content(self) -> dict[str, Any]:
        """Body rendered by the application exception handler."""
        content: dict[str, Any] = {"detail": self.detail}
        if self.code:
            content["code"] = self.code
        return content


class ValidationError(AppException):
    """Validation error exception."""

    code = "VALIDATION_FAILED"

    def __init__(self, detail: str = "Validation failed", errors: list[dict[str, Any]] | None = None) -> None:
        self.errors = errors
        super().__init__(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=detail)


class NotFoundError(AppException):
    """Resource not found exception."""

    def __init__(self, resource: str = "Resource", identifier: str | None = None) -> None:
        detail = f"{resource} not found"
        if identifier:
            detail = f"{resource} with ID '{identifier}' not found"
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=detail)


class AuthenticationError(AppException):
    """Authentication failed exception."""

    def __init__(self, detail: str = "Authentication failed") -> None:
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            headers={"WWW-Authenticate": "Bearer"},
        )


class AuthorizationError(AppException):
    """Authorization denied exception."""

    def __init__(self, detail: str = "You don't have permission to access this resource") -> None:
        super().__init__(status_code=status.HTTP_403_FORBIDDEN, detail=detail)


class AccessDenied(AppException):
    """Borrow request blocked by subscription tier, verification or location.

    Rendered with a machine-readable ``reason`` so clients can show the
    upgrade or verification prompt instead of a generic error.
    """

    CODES = {
        "subscription": "PLUS_REQUIRED",
        "verification": "VERIFICATION_REQUIRED",
        "town": "TOWN_MISMATCH",
    }

    def __init__(self, reason: str, required_tier: str | None = None, detail: str | None = None) -> None:
        self.reason = reason
        self.required_tier = required_tier
        self.code = self.CODES.get(reason, "ACCESS_DENIED")
        if detail is None:
            if reason == "subscription":
                detail = f"{(required_tier or 'plus').capitalize()} subscription required"
            elif reason == "town":
                detail = "This item is only available to verified users in the same town"
            else:
                detail = "Identity verification required"
        super().__init__(status_code=status.HTTP_403_FORBIDDEN, detail=detail)

    def to_content(self) -> dict[str, Any]:
        content = super().to_content()
        content["reason"] = self.reason
        if self.required_tier:
            content["required_tier"] = self.required_tier
        return content


class ListingNotAvailable(AppException):
    """Listing not available exception."""

    def __init__(self, detail: str = "This item is not available") -> None:
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


class TransactionConflict(AppException):
    """Transaction is no longer in the state the caller expected."""

    code = "STATE_CHANGED"

    def __init__(self, detail: str = "Transaction state changed, refresh and try again", current_status: str | None = None) -> None:
        self.current_status = current_status
        super().__init__(status_code=status.HTTP_409_CONFLICT, detail=detail)

    def to_content(self) -> dict[str, Any]:
        content = super().to_content()
        if self.current_status:
            content["current_status"] = self.current_status
        return content


class PaymentError(AppException):
    """Payment processing error."""

    code = "PAYMENT_FAILED"

    def __init__(self, detail: str = "Payment processing failed") -> None:
        super().__init__(status_code=status.HTTP_402_PAYMENT_REQUIRED, detail=detail)


class PaymentDeclined(PaymentError):
    """Card or wallet declined by the processor."""

    code = "PAYMENT_DECLINED"

    def __init__(self, detail: str = "Your payment was declined") -> None:
        super().__init__(detail=detail)


class PaymentIndeterminate(AppException):
    """The processor could not be reached; outcome unknown until re-queried."""

    code = "PAYMENT_STATUS_UNKNOWN"

    def __init__(self, detail: str = "Payment processor unreachable, re-check payment status") -> None:
        super().__init__(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=detail)


class RateLimitExceeded(AppException):
    """Rate limit exceeded exception."""

    code = "RATE_LIMITED"

    def __init__(self, detail: str = "Too many requests. Please try again later.", retry_after: int | None = None) -> None:
        headers = {"Retry-After": str(retry_after)} if retry_after else None
        super().__init__(status_code=status.HTTP_429_TOO_MANY_REQUESTS, detail=detail, headers=headers)


class ExternalServiceError(AppException):
    """External service error."""

    code = "SERVICE_UNAVAILABLE"

    def __init__(self, service: str, detail: str | None = None) -> None:
        message = f"External service '{service}' is unavailable"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=message)
