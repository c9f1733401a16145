"""Unit tests for the per-user transaction action throttle."""

from types import SimpleNamespace
from uuid import uuid4

import pytest
import redis.asyncio as redis
from starlette.requests import Request

from app.core.exceptions import RateLimitExceeded
from app.core.middleware import ActionThrottle


def _request(transaction_id: str | None = None) -> Request:
    path_params = {"transaction_id": transaction_id} if transaction_id else {}
    return Request({"type": "http", "method": "POST", "headers": [], "path_params": path_params})


class _DownRedis:
    async def incr(self, key):
        raise redis.ConnectionError("connection refused")


@pytest.mark.asyncio
async def test_repeated_calls_on_one_transaction_are_throttled(fake_redis):
    throttle = ActionThrottle("transaction", per_user=30, per_transaction=2, redis_client=fake_redis, enabled=True)
    user = SimpleNamespace(id=uuid4())

    await throttle(_request("txn-1"), user)
    await throttle(_request("txn-1"), user)
    with pytest.raises(RateLimitExceeded) as exc_info:
        await throttle(_request("txn-1"), user)

    assert exc_info.value.status_code == 429
    assert exc_info.value.headers == {"Retry-After": "60"}
    # Another transaction has its own counter
    await throttle(_request("txn-2"), user)


@pytest.mark.asyncio
async def test_user_limit_spans_transactions(fake_redis):
    throttle = ActionThrottle("transaction", per_user=2, per_transaction=10, redis_client=fake_redis, enabled=True)
    user = SimpleNamespace(id=uuid4())

    await throttle(_request("txn-1"), user)
    await throttle(_request("txn-2"), user)
    with pytest.raises(RateLimitExceeded):
        await throttle(_request("txn-3"), user)

    # Users are counted separately
    await throttle(_request("txn-3"), SimpleNamespace(id=uuid4()))


@pytest.mark.asyncio
async def test_counters_expire_with_the_window(fake_redis):
    throttle = ActionThrottle("rating", per_user=5, per_transaction=5, redis_client=fake_redis, enabled=True)

    await throttle(_request("txn-1"), SimpleNamespace(id=uuid4()))

    assert len(fake_redis.counts) == 2
    assert set(fake_redis.ttls.values()) == {ActionThrottle.WINDOW_SECONDS}


@pytest.mark.asyncio
async def test_unavailable_store_allows_request():
    throttle = ActionThrottle("transaction", per_user=1, per_transaction=1, redis_client=_DownRedis(), enabled=True)

    await throttle(_request("txn-1"), SimpleNamespace(id=uuid4()))


@pytest.mark.asyncio
async def test_disabled_throttle_never_touches_store():
    throttle = ActionThrottle("transaction", per_user=1, per_transaction=1, redis_client=_DownRedis())

    # Test environment turns throttling off unless enabled explicitly
    assert throttle.is_enabled is False
    await throttle(_request("txn-1"), SimpleNamespace(id=uuid4()))
