"""Idempotency protection for transaction actions.

A state-changing action is keyed by operation name, transaction id and the
acting user. The first successful execution stores its response body; a
retry with the same key replays that body instead of re-running the action
(and its payment side effects). Failures are never stored so the caller can
retry them.
"""

import asyncio
import hashlib
import json
import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import UUID

from app.config import settings

logger = logging.getLogger(__name__)


class IdempotencyStore:
    """In-memory idempotency key store.

    In production, use Redis or database for persistence across restarts.
    """

    def __init__(self, ttl_hours: int = 24):
        self._keys: dict[str, dict] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._holders: dict[str, int] = {}
        self._ttl = timedelta(hours=ttl_hours)

    def _cleanup_expired(self) -> None:
        """Remove expired keys."""
        now = datetime.now(UTC)
        expired = [k for k, v in self._keys.items() if v["expires_at"] < now]
        for k in expired:
            del self._keys[k]

    def get(self, key: str) -> dict | None:
        """Get stored result for idempotency key."""
        self._cleanup_expired()
        entry = self._keys.get(key)
        if entry and entry["expires_at"] > datetime.now(UTC):
            return entry["result"]
        return None

    def set(self, key: str, result: dict) -> None:
        """Store result for idempotency key."""
        self._keys[key] = {
            "result": result,
            "expires_at": datetime.now(UTC) + self._ttl,
        }

    def exists(self, key: str) -> bool:
        """Check if key exists and is not expired."""
        return self.get(key) is not None

    def acquire_lock(self, key: str) -> asyncio.Lock:
        """Per-key lock so concurrent duplicates wait for the first one.

        Every call must be paired with ``release_lock``.
        """
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
        self._holders[key] = self._holders.get(key, 0) + 1
        return self._locks[key]

    def release_lock(self, key: str) -> None:
        """Forget the key's lock once no caller holds or awaits it."""
        remaining = self._holders.get(key, 1) - 1
        if remaining > 0:
            self._holders[key] = remaining
            return
        self._holders.pop(key, None)
        self._locks.pop(key, None)

    def clear(self) -> None:
        self._keys.clear()
        self._locks.clear()
        self._holders.clear()


# Global store instance
_idempotency_store = IdempotencyStore(ttl_hours=settings.idempotency_ttl_hours)


def generate_idempotency_key(
    operation: str,
    entity_id: UUID | str,
    params: dict[str, Any] | None = None,
) -> str:
    """Generate a deterministic idempotency key.

    Args:
        operation: Operation name (e.g., "transaction_approve")
        entity_id: Primary entity ID
        params: Additional parameters to include in key

    Returns:
        SHA256 hash of operation + entity + params
    """
    key_data = {
        "operation": operation,
        "entity_id": str(entity_id),
        "params": params or {},
    }
    key_str = json.dumps(key_data, sort_keys=True, default=str)
    return hashlib.sha256(key_str.encode()).hexdigest()


def check_idempotency(key: str) -> dict | None:
    """Check if operation was already performed.

    Returns:
        Previous result if found, None otherwise
    """
    return _idempotency_store.get(key)


def store_idempotency_result(key: str, result: dict) -> None:
    """Store operation result for idempotency."""
    _idempotency_store.set(key, result)


def reset_idempotency_store() -> None:
    """Drop every stored key (used by tests)."""
    _idempotency_store.clear()


async def run_idempotent(
    operation: str,
    entity_id: UUID | str,
    action: Callable[[], Awaitable[dict]],
    params: dict[str, Any] | None = None,
) -> dict:
    """Run ``action`` once per key and replay its stored result afterwards."""
    key = generate_idempotency_key(operation, entity_id, params)

    lock = _idempotency_store.acquire_lock(key)
    try:
        async with lock:
            existing = check_idempotency(key)
            if existing is not None:
                logger.info(f"Replaying {operation} for {entity_id}")
                return existing

            result = await action()
            store_idempotency_result(key, result)
            return result
    finally:
        _idempotency_store.release_lock(key)
