"""
Background Cache Sweeper
========================

Runs ``cleanup_expired_cache`` every ``CACHE_SWEEP_INTERVAL_SECONDS``
(default 1 h).

Concurrency safety
------------------
* **Redis distributed lock** lets only one API process sweep per interval.
  The lock TTL is shorter than the interval, so a crashed holder never
  blocks the next cycle.
* If Redis is unreachable the sweep runs without the lock; cleanup is
  idempotent, so concurrent sweeps only repeat work.
* A sweep racing a calculation can at worst delete an entry that was just
  about to be served; the lookup then misses and recomputes.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from travel_cost_engine.domain.errors import StoreUnavailableError
from travel_cost_engine.infrastructure.locks import DistributedLock
from travel_cost_engine.services.maintenance import CacheMaintenance

logger = logging.getLogger(__name__)

LOCK_NAME = "distance_cache_sweep"


class CacheSweeper:
    def __init__(
        self,
        maintenance: CacheMaintenance,
        redis: aioredis.Redis,
        interval_seconds: int = 3600,
    ):
        self.maintenance = maintenance
        self.redis = redis
        self.interval_seconds = interval_seconds
        self._task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None

    # ── Public API ────────────────────────────────────────────────────

    async def start(self) -> None:
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._loop())
        logger.info("Cache sweeper started (interval=%ds)", self.interval_seconds)

    async def stop(self) -> None:
        if self._stop_event:
            self._stop_event.set()
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        logger.info("Cache sweeper stopped")

    async def run_cycle(self) -> int:
        """Sweep once unless another process holds the lock.

        Returns the number of rows removed.
        """
        lock = DistributedLock(
            self.redis, LOCK_NAME, ttl_seconds=max(1, self.interval_seconds // 2)
        )
        try:
            acquired = await lock.acquire()
        except RedisError as exc:
            logger.warning("Sweep lock unavailable, sweeping without it: %r", exc)
            return await self._sweep() or 0
        if not acquired:
            logger.debug("Sweep lock held by another process - skipping cycle")
            return 0

        # The lock is left to expire on its TTL so that other processes
        # skip the rest of this interval.
        deleted = await self._sweep()
        if deleted is None:
            await self._release_quietly(lock)
            return 0
        return deleted

    # ── Internals ─────────────────────────────────────────────────────

    async def _sweep(self) -> Optional[int]:
        """Rows removed, or None if the cache store was unavailable."""
        try:
            return await self.maintenance.cleanup_expired()
        except StoreUnavailableError:
            logger.exception("Expiry sweep failed")
            return None

    async def _release_quietly(self, lock: DistributedLock) -> None:
        try:
            await lock.release()
        except RedisError as exc:
            logger.warning("Could not release sweep lock: %r", exc)

    async def _loop(self) -> None:
        """Periodic loop: sweep, then sleep for the interval."""
        assert self._stop_event is not None
        while not self._stop_event.is_set():
            try:
                await self.run_cycle()
            except Exception:
                logger.exception("Unhandled error in sweep cycle")
            try:
                await asyncio.wait_for(
                    self._stop_event.wait(), timeout=self.interval_seconds
                )
                break
            except asyncio.TimeoutError:
                pass  # next cycle
