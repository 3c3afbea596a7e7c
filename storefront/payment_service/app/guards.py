"""Per-checkout mutual exclusion around payment intent creation."""

from __future__ import annotations

import logging
import secrets
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from .exceptions import IntentInProgress
from .metrics import INTENT_GUARD_ERRORS_TOTAL

logger = logging.getLogger(__name__)

# Delete the key only while it still holds our token.
_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""


class IntentGuard:
    """Stops a double-click from creating two provider orders for one checkout.

    Uses ``SET NX EX`` when a Redis client is available so the lock holds
    across workers; otherwise falls back to a per-process set of held keys.
    This is a UX lock only: a Redis outage lets the call through and the
    settlement path still refuses to pay a transaction twice.
    """

    def __init__(
        self,
        redis_client: Any | None,
        *,
        key_prefix: str = "payment_intent",
        ttl_seconds: int = 30,
    ) -> None:
        self._redis = redis_client
        self._key_prefix = key_prefix
        self._ttl = max(ttl_seconds, 1)
        self._held: set[str] = set()

    def _key(self, transaction_id: str) -> str:
        return f"{self._key_prefix}:{transaction_id}"

    async def _acquire(self, key: str, token: str) -> bool:
        if self._redis is None:
            if key in self._held:
                return False
            self._held.add(key)
            return True
        try:
            return bool(await self._redis.set(key, token, nx=True, ex=self._ttl))
        except Exception:
            INTENT_GUARD_ERRORS_TOTAL.labels(operation="acquire").inc()
            logger.warning("Intent guard unavailable for %s; continuing without lock", key, exc_info=True)
            return True

    async def _release(self, key: str, token: str) -> None:
        if self._redis is None:
            self._held.discard(key)
            return
        try:
            await self._redis.eval(_RELEASE_SCRIPT, 1, key, token)
        except Exception:
            INTENT_GUARD_ERRORS_TOTAL.labels(operation="release").inc()
            logger.warning("Failed to release intent guard %s; it expires in %ss", key, self._ttl, exc_info=True)

    @asynccontextmanager
    async def hold(self, transaction_id: str) -> AsyncIterator[None]:
        key = self._key(transaction_id)
        token = secrets.token_hex(8)
        if not await self._acquire(key, token):
            raise IntentInProgress(transaction_id)
        try:
            yield
        finally:
            await self._release(key, token)
