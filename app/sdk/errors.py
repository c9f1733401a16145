"""Client-side error taxonomy.

Every failure the client surfaces is a ``ClientError``. When the failure
concerned a transaction, ``transaction`` holds the authoritative record
fetched from the server after the failure, or None if that fetch failed too.
"""

from typing import Any

import httpx


class ClientError(Exception):
    """Base client error."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        code: str | None = None,
        transaction: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code
        self.transaction = transaction


class ValidationFailed(ClientError):
    """Input rejected, locally before sending or by the server."""


class AccessDenied(ClientError):
    """Subscription tier or verification blocks the request."""

    def __init__(self, message: str, reason: str | None = None, required_tier: str | None = None, **kwargs) -> None:
        super().__init__(message, **kwargs)
        self.reason = reason
        self.required_tier = required_tier


class NetworkFailure(ClientError):
    """Server or processor unreachable; the outcome must be re-checked."""


class PaymentFailed(ClientError):
    """Payment declined or failed."""


class StateConflict(ClientError):
    """Transaction moved on; refresh and try again."""

    def __init__(self, message: str, current_status: str | None = None, **kwargs) -> None:
        super().__init__(message, **kwargs)
        self.current_status = current_status


def error_from_response(response: httpx.Response) -> ClientError:
    """Map an error response to the matching ``ClientError``."""
    try:
        body = response.json()
    except ValueError:
        body = {}
    if not isinstance(body, dict):
        body = {}

    detail = body.get("detail", response.reason_phrase)
    if not isinstance(detail, str):
        # FastAPI request validation errors carry a list of issues
        detail = "; ".join(str(item.get("msg", item)) if isinstance(item, dict) else str(item) for item in detail)
    kwargs = {"status_code": response.status_code, "code": body.get("code")}

    if response.status_code in (400, 422):
        return ValidationFailed(detail, **kwargs)
    if response.status_code == 403 and body.get("reason"):
        return AccessDenied(detail, reason=body["reason"], required_tier=body.get("required_tier"), **kwargs)
    if response.status_code == 402:
        return PaymentFailed(detail, **kwargs)
    if response.status_code == 409:
        return StateConflict(detail, current_status=body.get("current_status"), **kwargs)
    if response.status_code in (502, 503, 504):
        return NetworkFailure(detail, **kwargs)
    return ClientError(detail, **kwargs)
