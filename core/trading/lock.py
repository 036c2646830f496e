"""Per-user trade lock guards.

A guard is a cooperative cancellation token. The rebalance core calls
``assert_held()`` between network-bound steps; once the lock is known to be
lost (or its lease has run out) the call raises ``LockLostError`` and no
further step runs. In-flight exchange calls are never interrupted.
"""

import asyncio
import time
import uuid
from typing import Callable, Optional

from core.logging import get_logger
from core.utils.exceptions import LockLostError, RedisError

logger = get_logger(__name__, component="rebalancer")

# Only touch the key while it still holds our token.
_REFRESH_SCRIPT = """
if redis.call('get', KEYS[1]) == ARGV[1] then
    return redis.call('expire', KEYS[1], ARGV[2])
end
return 0
"""

_RELEASE_SCRIPT = """
if redis.call('get', KEYS[1]) == ARGV[1] then
    return redis.call('del', KEYS[1])
end
return 0
"""


class LockGuard:
    """In-process lock liveness token.

    ``expires_at`` is a deadline on ``clock``; None means the lease never
    runs out on its own and only ``mark_lost`` can trip the guard.
    """

    def __init__(self, user_id: str, expires_at: Optional[float] = None,
                 clock: Callable[[], float] = time.monotonic):
        self.user_id = user_id
        self._expires_at = expires_at
        self._clock = clock
        self._lost_reason: Optional[str] = None

    @property
    def is_held(self) -> bool:
        if self._lost_reason is not None:
            return False
        if self._expires_at is not None and self._clock() >= self._expires_at:
            return False
        return True

    def assert_held(self) -> None:
        if self._lost_reason is not None:
            raise LockLostError(
                f"Trade lock lost for user {self.user_id}",
                user_id=self.user_id,
                reason=self._lost_reason,
            )
        if self._expires_at is not None and self._clock() >= self._expires_at:
            raise LockLostError(
                f"Trade lock lease expired for user {self.user_id}",
                user_id=self.user_id,
                reason="lease_expired",
            )

    def mark_lost(self, reason: str) -> None:
        if self._lost_reason is None:
            logger.warning("Trade lock marked lost", user_id=self.user_id, reason=reason)
            self._lost_reason = reason

    def extend(self, ttl_seconds: float) -> None:
        self._expires_at = self._clock() + ttl_seconds


class RedisLockGuard(LockGuard):
    """Guard backed by a Redis key holding this worker's token.

    The outer consumer acquires the lock and drives ``refresh()`` from its
    heartbeat; each successful refresh extends both the key TTL and the
    local lease.
    """

    def __init__(self, redis_client, user_id: str, key_prefix: str = "trade-lock",
                 ttl_seconds: int = 300, token: Optional[str] = None,
                 clock: Callable[[], float] = time.monotonic):
        super().__init__(user_id, expires_at=None, clock=clock)
        self.redis_client = redis_client
        self.key = f"{key_prefix}:{user_id}"
        self.ttl_seconds = ttl_seconds
        self.token = token or str(uuid.uuid4())

    async def acquire(self) -> bool:
        try:
            acquired = await self.redis_client.set(self.key, self.token, nx=True, ex=self.ttl_seconds)
        except Exception as e:
            raise RedisError(f"Failed to acquire trade lock: {e}", operation="acquire", key=self.key)

        if not acquired:
            return False
        self.extend(self.ttl_seconds)
        return True

    async def refresh(self) -> bool:
        """Extend the lease if the key still holds our token; otherwise mark lost."""
        try:
            extended = await self.redis_client.eval(_REFRESH_SCRIPT, 1, self.key, self.token, self.ttl_seconds)
        except Exception as e:
            raise RedisError(f"Failed to refresh trade lock: {e}", operation="refresh", key=self.key)

        if not extended:
            self.mark_lost("token_mismatch")
            return False
        self.extend(self.ttl_seconds)
        return True

    async def release(self) -> None:
        try:
            await self.redis_client.eval(_RELEASE_SCRIPT, 1, self.key, self.token)
        except Exception as e:
            raise RedisError(f"Failed to release trade lock: {e}", operation="release", key=self.key)
        self.mark_lost("released")

    async def keep_alive(self, interval_seconds: float) -> None:
        """Heartbeat loop; run as a task alongside the rebalance run and cancel it afterwards.

        Redis errors are logged and retried on the next beat: the local
        lease still expires on schedule if the key cannot be refreshed.
        """
        while self.is_held:
            await asyncio.sleep(interval_seconds)
            try:
                await self.refresh()
            except RedisError as e:
                logger.warning("Trade lock heartbeat failed", user_id=self.user_id, error=str(e))
