"""
Cache maintenance
=================

* **Targeted invalidation** -- after an employee's home address or a
  subproject's site changes, delete every cache entry whose key contains
  an affected location.  Locations for an employee / subproject are taken
  from the audit trail (every location ever calculated for them) plus the
  current location in the directory.
* **Expiry cleanup** -- bulk delete of entries past ``expires_at``.
  Idempotent; run periodically by ``workers.cache_sweeper``.

Both run as a single transaction and return the number of rows removed.
Unlike the lookup path these do not fail open: a maintenance call that
cannot reach the store raises ``StoreUnavailableError``.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Callable

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from travel_cost_engine.domain.canonical import DEFAULT_PRECISION, canonical_point
from travel_cost_engine.domain.entities import (
    CacheInvalidation,
    CacheStats,
    GeoCoordinate,
)
from travel_cost_engine.domain.errors import StoreUnavailableError, ValidationError
from travel_cost_engine.infrastructure.repositories import (
    AuditRepository,
    DistanceCacheRepository,
    LocationRepository,
    utcnow,
)
from travel_cost_engine.services.distance_cache import STORE_ERRORS

logger = logging.getLogger(__name__)


class CacheMaintenance:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        precision: int = DEFAULT_PRECISION,
        timeout_seconds: float = 30.0,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._session_factory = session_factory
        self.precision = precision
        self.timeout_seconds = timeout_seconds
        self._clock = clock

    async def invalidate(self, request: CacheInvalidation) -> int:
        """Delete entries for every selector set on *request*; sum the counts."""
        if request.is_empty():
            raise ValidationError(
                "Provide employee_id, subproject_id or location to invalidate",
                fields=["employee_id", "subproject_id", "location"],
            )
        deleted = await self._run(self._invalidate(request))
        logger.info(
            "Cache invalidated: %d entries (employee=%s subproject=%s location=%s)",
            deleted,
            request.employee_id,
            request.subproject_id,
            request.location,
        )
        return deleted

    async def invalidate_location(self, location: GeoCoordinate) -> int:
        return await self.invalidate(CacheInvalidation(location=location))

    async def invalidate_employee(self, employee_id: str) -> int:
        return await self.invalidate(CacheInvalidation(employee_id=employee_id))

    async def invalidate_subproject(self, subproject_id: str) -> int:
        return await self.invalidate(CacheInvalidation(subproject_id=subproject_id))

    async def cleanup_expired(self) -> int:
        deleted = await self._run(self._cleanup())
        logger.info("Expired cache cleanup removed %d entries", deleted)
        return deleted

    async def stats(self) -> CacheStats:
        total, live = await self._run(self._stats())
        return CacheStats(
            total_entries=total, live_entries=live, expired_entries=total - live
        )

    # ── Internals ─────────────────────────────────────────────────────

    async def _run(self, coro):
        try:
            return await asyncio.wait_for(coro, timeout=self.timeout_seconds)
        except STORE_ERRORS as exc:
            logger.error("Cache maintenance failed: %r", exc)
            raise StoreUnavailableError("cache", repr(exc)) from exc

    def _points(self, locations) -> set[str]:
        return {canonical_point(loc, self.precision) for loc in locations}

    async def _invalidate(self, request: CacheInvalidation) -> int:
        deleted = 0
        async with self._session_factory() as session:
            cache = DistanceCacheRepository(session)
            audit = AuditRepository(session)
            directory = LocationRepository(session)

            if request.location is not None:
                deleted += await cache.delete_touching(
                    self._points([request.location])
                )

            if request.employee_id is not None:
                locations = await audit.employee_locations(request.employee_id)
                home = await directory.employee_home(request.employee_id)
                if home is not None:
                    locations.append(home)
                deleted += await cache.delete_touching(self._points(locations))

            if request.subproject_id is not None:
                locations = await audit.subproject_locations(request.subproject_id)
                site = await directory.subproject_site(request.subproject_id)
                if site is not None:
                    locations.append(site.location)
                deleted += await cache.delete_touching(self._points(locations))

            await session.commit()
        return deleted

    async def _cleanup(self) -> int:
        async with self._session_factory() as session:
            deleted = await DistanceCacheRepository(session).delete_expired(
                self._clock()
            )
            await session.commit()
        return deleted

    async def _stats(self) -> tuple[int, int]:
        async with self._session_factory() as session:
            repo = DistanceCacheRepository(session)
            return await repo.count(), await repo.count(live_at=self._clock())
