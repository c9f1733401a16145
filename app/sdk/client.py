"""Async client for the lending API.

The server is the authority on every transaction. The client:

- runs the access gate before a request is made, allowing when the server
  cannot be asked
- validates input (dates, ratings, conditions) before any network call
- keeps at most one action in flight per transaction; a repeated call
  while it runs joins it instead of submitting again
- never assumes an action succeeded: after any failure it re-fetches the
  transaction and attaches the server's record to the raised error
- shields a submitted request from the caller's cancellation so the
  outcome is still observed and the in-flight slot is released
"""

import asyncio
import logging
from datetime import date
from typing import Any
from uuid import UUID

import httpx

from app.core.exceptions import ValidationError as ServerValidationError
from app.domain.access_gate import AccessDecision, AccessReason, BorrowerProfile, ListingScope, evaluate_access
from app.domain.condition import ItemCondition
from app.domain.rating_gate import validate_rating_value
from app.sdk.errors import ClientError, NetworkFailure, StateConflict, ValidationFailed, error_from_response

logger = logging.getLogger(__name__)


class LendingClient:
    """Client for ``/api/v1`` transaction and dispute endpoints."""

    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
        fail_open: bool = True,
    ):
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=timeout,
            transport=transport,
        )
        self.fail_open = fail_open
        self._in_flight: dict[str, tuple[str, asyncio.Task]] = {}

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "LendingClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise NetworkFailure(f"Could not reach the server: {e}") from e
        if response.is_error:
            raise error_from_response(response)
        return response.json()

    # Reads

    async def get_transaction(self, transaction_id: UUID | str) -> dict:
        return await self._request("GET", f"/transactions/{transaction_id}")

    async def list_transactions(
        self, role: str | None = None, status: str | None = None, page: int = 1
    ) -> dict:
        params: dict[str, Any] = {"page": page}
        if role:
            params["role"] = role
        if status:
            params["status"] = status
        return await self._request("GET", "/transactions/", params=params)

    async def payment_status(self, transaction_id: UUID | str) -> dict:
        return await self._request("GET", f"/transactions/{transaction_id}/payment-status")

    async def check_access(
        self,
        listing_id: UUID | str,
        listing: ListingScope | None = None,
        borrower: BorrowerProfile | None = None,
    ) -> AccessDecision:
        """Ask the server whether the listing may be requested.

        When the server cannot be reached or answers with a server error the
        local rules are applied without the subscription check (or access is
        simply allowed when no local data is given); the create call remains
        the authority. Client errors (401, 404, ...) are raised.
        """
        try:
            data = await self._request("GET", "/transactions/access-check", params={"listing_id": str(listing_id)})
        except ClientError as e:
            if e.status_code is not None and e.status_code < 500:
                raise
            if not self.fail_open:
                raise
            logger.warning(f"Access check for listing {listing_id} unavailable, allowing: {e}")
            if listing is not None and borrower is not None:
                return evaluate_access(listing, borrower, None)
            return AccessDecision(True)

        reason = data.get("reason")
        return AccessDecision(
            can_access=data["can_access"],
            reason=AccessReason(reason) if reason else None,
            required_tier=data.get("required_tier"),
        )

    # Create

    async def create_transaction(
        self,
        listing_id: UUID | str,
        start_date: date,
        end_date: date,
        message: str | None = None,
        payment_method_id: str | None = None,
    ) -> dict:
        if end_date <= start_date:
            raise ValidationFailed("End date must be after start date")
        payload: dict[str, Any] = {
            "listing_id": str(listing_id),
            "start_date": start_date.isoformat(),
            "end_date": end_date.isoformat(),
        }
        if message:
            payload["message"] = message
        if payment_method_id:
            payload["payment_method_id"] = payment_method_id
        return await self._request("POST", "/transactions/", json=payload)

    # Transitions

    async def approve(self, transaction_id: UUID | str, message: str | None = None) -> dict:
        return await self._transition(transaction_id, "approve", {"message": message} if message else None)

    async def decline(self, transaction_id: UUID | str, message: str | None = None) -> dict:
        return await self._transition(transaction_id, "decline", {"message": message} if message else None)

    async def cancel(self, transaction_id: UUID | str) -> dict:
        return await self._transition(transaction_id, "cancel")

    async def confirm_payment(self, transaction_id: UUID | str) -> dict:
        return await self._transition(transaction_id, "confirm-payment")

    async def confirm_pickup(self, transaction_id: UUID | str, condition: str | None = None) -> dict:
        payload = {"condition": self._condition(condition)} if condition else None
        return await self._transition(transaction_id, "pickup", payload)

    async def mark_returned(self, transaction_id: UUID | str) -> dict:
        return await self._transition(transaction_id, "mark-returned")

    async def confirm_return(self, transaction_id: UUID | str, condition: str, notes: str | None = None) -> dict:
        payload = {"condition": self._condition(condition), "notes": notes}
        return await self._transition(transaction_id, "return", payload)

    async def rate(self, transaction_id: UUID | str, rating: int, comment: str | None = None) -> dict:
        try:
            validate_rating_value(rating)
        except ServerValidationError as e:
            raise ValidationFailed(e.detail) from e
        return await self._transition(transaction_id, "rate", {"rating": rating, "comment": comment})

    # Disputes

    async def add_evidence(self, dispute_id: UUID | str, urls: list[str]) -> dict:
        if not urls or len(urls) > 10:
            raise ValidationFailed("Provide between 1 and 10 evidence urls")
        return await self._request("POST", f"/disputes/{dispute_id}/evidence", json={"urls": urls})

    # Internals

    def _condition(self, condition: str) -> str:
        try:
            return ItemCondition(condition).value
        except ValueError:
            raise ValidationFailed(f"Unknown condition: {condition}")

    async def _transition(self, transaction_id: UUID | str, action: str, payload: dict | None = None) -> dict:
        key = str(transaction_id)
        current = self._in_flight.get(key)
        if current is not None:
            running_action, task = current
            if running_action != action:
                raise StateConflict(f"'{running_action}' is still in progress for this transaction")
        else:
            task = asyncio.create_task(self._submit(key, action, payload))
            self._in_flight[key] = (action, task)
            task.add_done_callback(lambda t: self._release(key, t))

        # The request keeps running if this caller is cancelled
        return await asyncio.shield(task)

    def _release(self, key: str, task: asyncio.Task) -> None:
        current = self._in_flight.get(key)
        if current is not None and current[1] is task:
            del self._in_flight[key]
        if not task.cancelled():
            # Mark the outcome observed even when every caller went away
            task.exception()

    async def _submit(self, transaction_id: str, action: str, payload: dict | None) -> dict:
        try:
            return await self._request("POST", f"/transactions/{transaction_id}/{action}", json=payload)
        except ClientError as e:
            try:
                e.transaction = await self.get_transaction(transaction_id)
            except ClientError:
                logger.warning(f"Could not refresh transaction {transaction_id} after failed {action}")
            raise
