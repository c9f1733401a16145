"""Request middleware and per-action throttling."""

import logging
import time
from typing import Annotated

import redis.asyncio as redis
from fastapi import Depends, Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from app.api.deps import get_current_user
from app.config import settings
from app.core.exceptions import RateLimitExceeded
from app.models.user import User

logger = logging.getLogger(__name__)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log each request with its duration and tag the response with a request id."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        started = time.perf_counter()
        request_id = request.headers.get("X-Request-ID") or str(time.time_ns())
        request.state.request_id = request_id

        response = await call_next(request)

        duration = time.perf_counter() - started
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Response-Time"] = f"{duration:.3f}s"

        user_id = getattr(request.state, "user_id", "-")
        logger.info(
            f"{request.method} {request.url.path} -> {response.status_code} "
            f"in {duration:.3f}s user={user_id} [{request_id}]"
        )
        if duration > settings.slow_request_seconds:
            logger.warning(f"Slow request: {request.method} {request.url.path} took {duration:.3f}s")
        return response


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add standard security headers to every response."""

    HEADERS = {
        "X-Content-Type-Options": "nosniff",
        "X-Frame-Options": "DENY",
        "Referrer-Policy": "strict-origin-when-cross-origin",
        "Cache-Control": "no-store",
    }

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        response = await call_next(request)
        response.headers.update(self.HEADERS)
        if not settings.debug:
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        return response


class ActionThrottle:
    """Redis-backed limit on state-changing transaction calls.

    Counts the caller's calls in one-minute windows twice: across the whole
    ``scope`` and against the single transaction in the path. Retries stay
    safe because idempotency replays them; this only stops a client from
    hammering one transaction or the API as a whole.

    Used as a route dependency. It resolves the current user itself, so the
    endpoint's own user dependency is served from FastAPI's cache.
    """

    WINDOW_SECONDS = 60

    def __init__(
        self,
        scope: str,
        per_user: int,
        per_transaction: int,
        redis_client: redis.Redis | None = None,
        enabled: bool | None = None,
    ):
        self.scope = scope
        self.per_user = per_user
        self.per_transaction = per_transaction
        self.enabled = enabled
        self._redis = redis_client

    @property
    def is_enabled(self) -> bool:
        if self.enabled is not None:
            return self.enabled
        return settings.environment not in ("development", "test")

    def get_redis(self) -> redis.Redis:
        if self._redis is None:
            self._redis = redis.from_url(settings.redis_url, encoding="utf-8", decode_responses=True)
        return self._redis

    async def _hit(self, key: str) -> int:
        # Fixed window: the first hit starts the expiry
        client = self.get_redis()
        count = await client.incr(key)
        if count == 1:
            await client.expire(key, self.WINDOW_SECONDS)
        return count

    async def __call__(
        self,
        request: Request,
        current_user: Annotated[User, Depends(get_current_user)],
    ) -> None:
        if not self.is_enabled:
            return

        user_key = f"throttle:{self.scope}:{current_user.id}"
        transaction_id = request.path_params.get("transaction_id")

        try:
            if await self._hit(user_key) > self.per_user:
                logger.warning(f"Throttled {self.scope} for user {current_user.id}")
                raise RateLimitExceeded(retry_after=self.WINDOW_SECONDS)

            if transaction_id is not None:
                txn_key = f"throttle:{self.scope}:{current_user.id}:{transaction_id}"
                if await self._hit(txn_key) > self.per_transaction:
                    logger.warning(
                        f"Throttled {self.scope} on transaction {transaction_id} for user {current_user.id}"
                    )
                    raise RateLimitExceeded(
                        "Too many requests for this transaction. Wait for the last one to finish.",
                        retry_after=self.WINDOW_SECONDS,
                    )
        except redis.RedisError as e:
            logger.warning(f"Throttle store unavailable, allowing request: {e}")


transaction_limiter = ActionThrottle(
    "transaction",
    per_user=settings.transaction_actions_per_minute,
    per_transaction=settings.actions_per_transaction_per_minute,
)
rating_limiter = ActionThrottle(
    "rating",
    per_user=settings.rating_actions_per_minute,
    per_transaction=settings.actions_per_transaction_per_minute,
)
