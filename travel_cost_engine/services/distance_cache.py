"""
Distance cache
==============

Wraps the pure distance calculator with a durable lookup table keyed by the
canonical coordinate pair.

Hit path   : live (non-expired) entry -> return it, calculator not invoked.
Miss path  : no entry / expired / ``use_cache=False`` -> compute on the
             snapped pair, then upsert with a fresh ``expires_at``.

Concurrency
-----------
No locking.  Two concurrent misses for the same pair both compute and both
upsert; the calculator is deterministic, so whichever write lands last
stores the same value.

Failure mode
------------
The cache is an optimisation.  If the store errors or exceeds
``timeout_seconds`` the lookup fails open: the distance is computed
directly and the cache write is skipped for that request.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from travel_cost_engine.domain.canonical import (
    DEFAULT_PRECISION,
    CanonicalPair,
    canonical_pair,
)
from travel_cost_engine.domain.distance import distance
from travel_cost_engine.domain.entities import DistanceLookup, GeoCoordinate
from travel_cost_engine.domain.errors import ComputationError, EngineError
from travel_cost_engine.infrastructure.repositories import (
    DistanceCacheRepository,
    utcnow,
)

logger = logging.getLogger(__name__)

STORE_ERRORS = (SQLAlchemyError, OSError, asyncio.TimeoutError)

Calculator = Callable[[GeoCoordinate, GeoCoordinate], float]
Clock = Callable[[], datetime]


class _CacheUnavailable(Exception):
    pass


class DistanceCache:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        ttl: timedelta = timedelta(hours=24),
        precision: int = DEFAULT_PRECISION,
        timeout_seconds: float = 2.0,
        calculator: Calculator = distance,
        clock: Clock = utcnow,
    ):
        self._session_factory = session_factory
        self.ttl = ttl
        self.precision = precision
        self.timeout_seconds = timeout_seconds
        self._calculator = calculator
        self._clock = clock

    async def get_distance(
        self, a: GeoCoordinate, b: GeoCoordinate, use_cache: bool = True
    ) -> float:
        return (await self.lookup(a, b, use_cache=use_cache)).distance_km

    async def lookup(
        self, a: GeoCoordinate, b: GeoCoordinate, use_cache: bool = True
    ) -> DistanceLookup:
        pair = canonical_pair(a, b, self.precision)

        store_ok = True
        if use_cache:
            try:
                cached = await self._with_timeout(self._read(pair))
            except _CacheUnavailable:
                store_ok = False
            else:
                if cached is not None:
                    logger.debug("Distance cache hit for %s", pair.key)
                    return DistanceLookup(distance_km=cached, cache_hit=True)

        km = self._compute(pair)

        if store_ok:
            try:
                await self._with_timeout(self._write(pair, km))
            except _CacheUnavailable:
                pass
        return DistanceLookup(distance_km=km, cache_hit=False)

    # ── Internals ─────────────────────────────────────────────────────

    def _compute(self, pair: CanonicalPair) -> float:
        try:
            return self._calculator(pair.coord_a, pair.coord_b)
        except EngineError:
            raise
        except Exception as exc:
            raise ComputationError(
                f"Distance calculation failed for {pair.key}: {exc}"
            ) from exc

    async def _with_timeout(self, coro):
        try:
            return await asyncio.wait_for(coro, timeout=self.timeout_seconds)
        except STORE_ERRORS as exc:
            logger.warning(
                "Distance cache unavailable, computing directly: %r", exc
            )
            raise _CacheUnavailable() from exc

    async def _read(self, pair: CanonicalPair) -> Optional[float]:
        now = self._clock()
        async with self._session_factory() as session:
            repo = DistanceCacheRepository(session)
            entry = await repo.get_live(pair.key, now)
            if entry is None:
                return None
            await repo.record_hit(pair.key, now)
            await session.commit()
            return entry.distance_km

    async def _write(self, pair: CanonicalPair, km: float) -> None:
        now = self._clock()
        async with self._session_factory() as session:
            await DistanceCacheRepository(session).upsert(
                pair, km, computed_at=now, expires_at=now + self.ttl
            )
            await session.commit()
