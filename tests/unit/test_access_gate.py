"""Unit tests for the borrow access gate."""

from decimal import Decimal
from uuid import uuid4

import httpx
import pytest

from app.core.exceptions import ExternalServiceError
from app.domain.access_gate import (
    AccessGate,
    AccessReason,
    BorrowerProfile,
    HttpSubscriptionAccessChecker,
    ListingScope,
    LocalSubscriptionAccessChecker,
    SubscriptionAccessChecker,
    SubscriptionCheck,
    SubscriptionTier,
    Visibility,
    evaluate_access,
)


def _listing(visibility=Visibility.NEIGHBORHOOD, is_free=False, price="5.00", owner_city="Springfield") -> ListingScope:
    return ListingScope(visibility=visibility, is_free=is_free, price_per_day=Decimal(price), owner_city=owner_city)


def _borrower(tier=SubscriptionTier.PLUS, verified=True, city="Springfield") -> BorrowerProfile:
    return BorrowerProfile(user_id=uuid4(), subscription_tier=tier, is_verified=verified, city=city)


class _FailingChecker(SubscriptionAccessChecker):
    async def check(self, borrower, visibility):
        raise httpx.ConnectError("subscription service down")


def test_paid_rental_requires_plus():
    decision = evaluate_access(_listing(), _borrower(tier=SubscriptionTier.FREE), SubscriptionCheck(True))

    assert decision.can_access is False
    assert decision.reason == AccessReason.SUBSCRIPTION
    assert decision.required_tier == "plus"


def test_subscription_rule_wins_over_verification():
    """Rules are ordered; an unverified free-tier borrower gets the subscription reason."""
    decision = evaluate_access(
        _listing(), _borrower(tier=SubscriptionTier.FREE, verified=False), SubscriptionCheck(True)
    )

    assert decision.reason == AccessReason.SUBSCRIPTION


def test_external_check_denial_reports_its_tier():
    decision = evaluate_access(
        _listing(is_free=True, price="0"),
        _borrower(tier=SubscriptionTier.FREE),
        SubscriptionCheck(can_access=False, required_tier="plus"),
    )

    assert decision.can_access is False
    assert decision.reason == AccessReason.SUBSCRIPTION
    assert decision.required_tier == "plus"


def test_town_listing_requires_verification():
    decision = evaluate_access(
        _listing(visibility=Visibility.TOWN, is_free=True, price="0"),
        _borrower(verified=False),
        SubscriptionCheck(True),
    )

    assert decision.can_access is False
    assert decision.reason == AccessReason.VERIFICATION
    assert decision.to_dict() == {"can_access": False, "reason": "verification"}


def test_town_listing_requires_same_city():
    town = _listing(visibility=Visibility.TOWN, is_free=True, price="0", owner_city="Springfield")

    elsewhere = evaluate_access(town, _borrower(city="Shelbyville"), SubscriptionCheck(True))
    unknown = evaluate_access(town, _borrower(city=None), SubscriptionCheck(True))
    same = evaluate_access(town, _borrower(city="  springfield "), SubscriptionCheck(True))

    assert elsewhere.reason == AccessReason.TOWN
    assert elsewhere.to_dict() == {"can_access": False, "reason": "town"}
    assert unknown.reason == AccessReason.TOWN
    assert same.can_access is True


def test_city_is_ignored_below_town_visibility():
    decision = evaluate_access(_listing(owner_city=None), _borrower(city="Shelbyville"), SubscriptionCheck(True))

    assert decision.can_access is True


def test_verification_checked_before_city():
    decision = evaluate_access(
        _listing(visibility=Visibility.TOWN, is_free=True, price="0", owner_city="Shelbyville"),
        _borrower(verified=False),
        SubscriptionCheck(True),
    )

    assert decision.reason == AccessReason.VERIFICATION


@pytest.mark.asyncio
async def test_unverified_free_tier_on_town_listing_is_asked_to_upgrade_first():
    """Rule order: the town tier requirement is reported before verification."""
    gate = AccessGate(checker=LocalSubscriptionAccessChecker(), fail_open=True)
    town = _listing(visibility=Visibility.TOWN, is_free=True, price="0")

    free_tier = await gate.check(town, _borrower(tier=SubscriptionTier.FREE, verified=False))
    plus_tier = await gate.check(town, _borrower(tier=SubscriptionTier.PLUS, verified=False))

    assert free_tier.to_dict() == {"can_access": False, "reason": "subscription", "required_tier": "plus"}
    assert plus_tier.to_dict() == {"can_access": False, "reason": "verification"}


def test_paid_rental_requires_verification():
    decision = evaluate_access(_listing(), _borrower(verified=False), SubscriptionCheck(True))

    assert decision.reason == AccessReason.VERIFICATION


def test_free_neighborhood_listing_open_to_everyone():
    decision = evaluate_access(
        _listing(is_free=True, price="0"),
        _borrower(tier=SubscriptionTier.FREE, verified=False),
        SubscriptionCheck(True),
    )

    assert decision.can_access is True
    assert decision.to_dict() == {"can_access": True}


def test_zero_price_listing_is_not_a_paid_rental():
    assert _listing(is_free=False, price="0").is_paid_rental is False


@pytest.mark.asyncio
async def test_local_checker_gates_town_on_plus():
    checker = LocalSubscriptionAccessChecker()

    town = await checker.check(_borrower(tier=SubscriptionTier.FREE), Visibility.TOWN)
    neighborhood = await checker.check(_borrower(tier=SubscriptionTier.FREE), Visibility.NEIGHBORHOOD)

    assert town.can_access is False
    assert town.required_tier == "plus"
    assert neighborhood.can_access is True


@pytest.mark.asyncio
async def test_gate_fails_open_when_check_unavailable():
    gate = AccessGate(checker=_FailingChecker(), fail_open=True)

    decision = await gate.check(_listing(is_free=True, price="0", visibility=Visibility.TOWN), _borrower())

    assert decision.can_access is True


@pytest.mark.asyncio
async def test_gate_fail_open_still_applies_local_rules():
    gate = AccessGate(checker=_FailingChecker(), fail_open=True)

    decision = await gate.check(_listing(), _borrower(tier=SubscriptionTier.FREE))

    assert decision.can_access is False
    assert decision.reason == AccessReason.SUBSCRIPTION


@pytest.mark.asyncio
async def test_gate_fails_closed_when_configured():
    gate = AccessGate(checker=_FailingChecker(), fail_open=False)

    with pytest.raises(ExternalServiceError):
        await gate.check(_listing(), _borrower())


@pytest.mark.asyncio
async def test_http_checker_reads_camel_case_answer():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/v1/access-check"
        assert request.url.params["visibility"] == "town"
        return httpx.Response(200, json={"canAccess": False, "requiredTier": "plus"})

    checker = HttpSubscriptionAccessChecker("http://subs.test/v1", transport=httpx.MockTransport(handler))

    result = await checker.check(_borrower(), Visibility.TOWN)

    assert result == SubscriptionCheck(can_access=False, required_tier="plus")


@pytest.mark.asyncio
async def test_http_checker_error_status_fails_open_through_gate():
    transport = httpx.MockTransport(lambda request: httpx.Response(500))
    gate = AccessGate(
        checker=HttpSubscriptionAccessChecker("http://subs.test", transport=transport),
        fail_open=True,
    )

    decision = await gate.check(_listing(), _borrower())

    assert decision.can_access is True
