"""Borrow access gate.

Decides whether a prospective borrower may request a listing. Rules are
evaluated in order and the first failing rule wins:

1. Paid rental and borrower is not on ``plus`` -> subscription (plus).
2. Subscription access check for the listing's visibility says no
   -> subscription (tier reported by the check).
3. Paid rental or ``town`` visibility and borrower not verified
   -> verification.
4. ``town`` visibility and borrower not in the lender's city -> town.
5. Otherwise allow.

Rule 1 runs before rule 3, so a free-tier unverified borrower asking for a
paid or town listing is told to upgrade before being told to verify.

If the subscription check itself fails the gate fails open: rule 2 is
skipped and the transaction endpoint remains the authority. The
``access_check_fail_open`` setting turns this off.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from uuid import UUID

import httpx

from app.config import settings
from app.core.exceptions import ExternalServiceError

logger = logging.getLogger(__name__)


class Visibility(str, Enum):
    """Audience a listing is shared with."""

    CLOSE_FRIENDS = "close_friends"
    NEIGHBORHOOD = "neighborhood"
    TOWN = "town"


class SubscriptionTier(str, Enum):
    FREE = "free"
    PLUS = "plus"


class AccessReason(str, Enum):
    SUBSCRIPTION = "subscription"
    VERIFICATION = "verification"
    TOWN = "town"


# Minimum tier per visibility scope
VISIBILITY_TIERS: dict[Visibility, SubscriptionTier] = {
    Visibility.CLOSE_FRIENDS: SubscriptionTier.FREE,
    Visibility.NEIGHBORHOOD: SubscriptionTier.FREE,
    Visibility.TOWN: SubscriptionTier.PLUS,
}


@dataclass(frozen=True)
class AccessDecision:
    """Outcome of the gate: ``{can_access, reason?, required_tier?}``."""

    can_access: bool
    reason: AccessReason | None = None
    required_tier: str | None = None

    def to_dict(self) -> dict:
        result: dict = {"can_access": self.can_access}
        if self.reason is not None:
            result["reason"] = self.reason.value
        if self.required_tier is not None:
            result["required_tier"] = self.required_tier
        return result


@dataclass(frozen=True)
class SubscriptionCheck:
    """Answer of the subscription access collaborator."""

    can_access: bool
    required_tier: str | None = None


@dataclass(frozen=True)
class ListingScope:
    """The listing fields the gate looks at."""

    visibility: Visibility
    is_free: bool
    price_per_day: Decimal
    owner_city: str | None = None

    @property
    def is_paid_rental(self) -> bool:
        return not self.is_free and Decimal(self.price_per_day or 0) > 0

    @classmethod
    def from_listing(cls, listing, owner_city: str | None = None) -> "ListingScope":
        return cls(
            visibility=Visibility(listing.visibility),
            is_free=bool(listing.is_free),
            price_per_day=Decimal(str(listing.price_per_day or 0)),
            owner_city=owner_city,
        )


@dataclass(frozen=True)
class BorrowerProfile:
    """The user fields the gate looks at."""

    user_id: UUID | None
    subscription_tier: SubscriptionTier
    is_verified: bool
    city: str | None = None

    @classmethod
    def from_user(cls, user) -> "BorrowerProfile":
        return cls(
            user_id=user.id,
            subscription_tier=SubscriptionTier(user.subscription_tier or "free"),
            is_verified=user.is_effectively_verified,
            city=user.city,
        )


def same_city(first: str | None, second: str | None) -> bool:
    """Case-insensitive city match; an unknown city never matches."""
    if not first or not second:
        return False
    return first.strip().casefold() == second.strip().casefold()


def evaluate_access(
    listing: ListingScope,
    borrower: BorrowerProfile,
    external_check: SubscriptionCheck | None,
) -> AccessDecision:
    """Apply the gate rules in order.

    ``external_check`` is None when the subscription check could not be
    performed; that rule is then skipped.
    """
    if listing.is_paid_rental and borrower.subscription_tier != SubscriptionTier.PLUS:
        return AccessDecision(False, AccessReason.SUBSCRIPTION, SubscriptionTier.PLUS.value)

    if external_check is not None and not external_check.can_access:
        return AccessDecision(False, AccessReason.SUBSCRIPTION, external_check.required_tier)

    if (listing.is_paid_rental or listing.visibility == Visibility.TOWN) and not borrower.is_verified:
        return AccessDecision(False, AccessReason.VERIFICATION)

    if listing.visibility == Visibility.TOWN and not same_city(borrower.city, listing.owner_city):
        return AccessDecision(False, AccessReason.TOWN)

    return AccessDecision(True)


class SubscriptionAccessChecker(ABC):
    """Collaborator answering whether a tier can reach a visibility scope."""

    @abstractmethod
    async def check(self, borrower: BorrowerProfile, visibility: Visibility) -> SubscriptionCheck:
        pass


class LocalSubscriptionAccessChecker(SubscriptionAccessChecker):
    """Answers from the borrower's stored tier."""

    async def check(self, borrower: BorrowerProfile, visibility: Visibility) -> SubscriptionCheck:
        required = VISIBILITY_TIERS[Visibility(visibility)]
        if required == SubscriptionTier.PLUS and borrower.subscription_tier != SubscriptionTier.PLUS:
            return SubscriptionCheck(can_access=False, required_tier=required.value)
        return SubscriptionCheck(can_access=True, required_tier=required.value)


class HttpSubscriptionAccessChecker(SubscriptionAccessChecker):
    """Asks the subscription service over HTTP."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 5.0,
        token: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.token = token
        self.transport = transport

    async def check(self, borrower: BorrowerProfile, visibility: Visibility) -> SubscriptionCheck:
        headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}
        params = {"visibility": Visibility(visibility).value}
        if borrower.user_id is not None:
            params["user_id"] = str(borrower.user_id)

        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            response = await client.get(f"{self.base_url}/access-check", params=params, headers=headers)
            response.raise_for_status()
            data = response.json()

        return SubscriptionCheck(
            can_access=bool(data.get("canAccess", data.get("can_access", False))),
            required_tier=data.get("requiredTier", data.get("required_tier")),
        )


def get_subscription_checker() -> SubscriptionAccessChecker:
    """Checker selected by the ``subscription_access_backend`` setting."""
    if settings.subscription_access_backend == "http":
        if not settings.subscription_service_url:
            raise ExternalServiceError("subscriptions", "subscription_service_url is not configured")
        return HttpSubscriptionAccessChecker(
            settings.subscription_service_url,
            timeout=settings.subscription_check_timeout,
        )
    return LocalSubscriptionAccessChecker()


class AccessGate:
    """Runs the subscription check and applies the gate rules."""

    def __init__(
        self,
        checker: SubscriptionAccessChecker | None = None,
        fail_open: bool | None = None,
    ):
        self.checker = checker or get_subscription_checker()
        self.fail_open = settings.access_check_fail_open if fail_open is None else fail_open

    async def check(self, listing: ListingScope, borrower: BorrowerProfile) -> AccessDecision:
        try:
            external = await self.checker.check(borrower, listing.visibility)
        except (httpx.HTTPError, ExternalServiceError) as e:
            if not self.fail_open:
                raise ExternalServiceError("subscriptions", str(e)) from e
            logger.warning(
                f"Subscription access check failed for user {borrower.user_id}, "
                f"allowing ({listing.visibility.value}): {e}"
            )
            external = None

        decision = evaluate_access(listing, borrower, external)
        if not decision.can_access:
            logger.info(
                f"Access denied for user {borrower.user_id}: "
                f"{decision.reason.value} (required tier {decision.required_tier})"
            )
        return decision
