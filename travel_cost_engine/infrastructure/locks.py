"""
Redis-based distributed lock.

Used by the expiry sweeper so that, with several API processes running,
only one of them deletes expired cache rows per interval.  Cleanup is
idempotent, so the lock only saves duplicate work; it does not guard
correctness.

Acquire is ``SET NX EX``; release is an atomic Lua check-and-delete so a
process never frees a lock that expired and was taken by someone else.
"""

from __future__ import annotations

import uuid

import redis.asyncio as aioredis

LOCK_PREFIX = "travel-cost:lock:"

_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""


class LockNotAcquired(Exception):
    """Raised by ``async with lock`` when another holder owns the key."""


class DistributedLock:
    def __init__(
        self, client: aioredis.Redis, name: str, ttl_seconds: int = 30
    ):
        self.redis = client
        self.key = f"{LOCK_PREFIX}{name}"
        self.ttl = ttl_seconds
        self.token = uuid.uuid4().hex

    async def acquire(self) -> bool:
        """Try once, without blocking. Returns True if we now hold the lock."""
        return bool(
            await self.redis.set(self.key, self.token, nx=True, ex=self.ttl)
        )

    async def release(self) -> bool:
        """Release if still ours. Returns True if the key was deleted."""
        deleted = await self.redis.eval(_RELEASE_SCRIPT, 1, self.key, self.token)
        return bool(deleted)

    async def __aenter__(self) -> "DistributedLock":
        if not await self.acquire():
            raise LockNotAcquired(self.key)
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.release()
