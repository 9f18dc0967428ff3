"""
Travel-cost engine facade
=========================

High-level API used by the HTTP layer.  Within a single travel-cost request
the order is fixed: validate -> distance (cache, calculator on miss) ->
allowance -> audit write.  Nothing is shared between requests except the
stores behind the session factory.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from travel_cost_engine.config import Settings
from travel_cost_engine.domain.allowance import (
    AllowanceCalculator,
    Number,
    to_decimal,
    validate_allowance_inputs,
)
from travel_cost_engine.domain.entities import (
    AllowanceResult,
    AuditFilters,
    AuditRecord,
    CacheInvalidation,
    CacheStats,
    DistanceResult,
    GeoCoordinate,
    NewAuditRecord,
    TravelCostResult,
)
from travel_cost_engine.domain.enums import CalculationType
from travel_cost_engine.domain.errors import (
    NotFoundError,
    StoreUnavailableError,
    ValidationError,
)
from travel_cost_engine.infrastructure.repositories import LocationRepository, utcnow
from travel_cost_engine.services.audit_log import CalculationAuditLog
from travel_cost_engine.services.distance_cache import STORE_ERRORS, DistanceCache
from travel_cost_engine.services.maintenance import CacheMaintenance

logger = logging.getLogger(__name__)


class TravelCostEngine:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        cache: DistanceCache,
        audit_log: CalculationAuditLog,
        maintenance: CacheMaintenance,
        allowance: Optional[AllowanceCalculator] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._session_factory = session_factory
        self.cache = cache
        self.audit_log = audit_log
        self.maintenance = maintenance
        self.allowance = allowance or AllowanceCalculator()
        self._clock = clock

    @classmethod
    def from_settings(
        cls,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Settings,
        clock: Callable[[], datetime] = utcnow,
    ) -> "TravelCostEngine":
        return cls(
            session_factory,
            cache=DistanceCache(
                session_factory,
                ttl=timedelta(hours=settings.cache_ttl_hours),
                precision=settings.cache_precision,
                timeout_seconds=settings.cache_timeout_seconds,
                clock=clock,
            ),
            audit_log=CalculationAuditLog(
                session_factory,
                timeout_seconds=settings.audit_timeout_seconds,
                attempts=settings.audit_write_attempts,
                backoff_seconds=settings.audit_retry_backoff_seconds,
                default_limit=settings.audit_default_limit,
                max_limit=settings.audit_max_limit,
                clock=clock,
            ),
            maintenance=CacheMaintenance(
                session_factory, precision=settings.cache_precision, clock=clock
            ),
            clock=clock,
        )

    # ── Calculations ──────────────────────────────────────────────────

    async def calculate_distance(
        self,
        employee_location: GeoCoordinate,
        subproject_location: GeoCoordinate,
        use_cache: bool = True,
    ) -> DistanceResult:
        _require_coordinates(employee_location, subproject_location)
        lookup = await self.cache.lookup(
            employee_location, subproject_location, use_cache=use_cache
        )
        return DistanceResult(
            distance_km=lookup.distance_km,
            cache_used=lookup.cache_hit,
            calculation_timestamp=self._clock(),
        )

    def calculate_allowance(
        self, distance_km: Number, cost_per_km: Number, days: int = 1
    ) -> AllowanceResult:
        return self.allowance.allowance(distance_km, cost_per_km, days)

    async def calculate_travel_cost(
        self,
        employee_id: str,
        subproject_id: str,
        employee_location: GeoCoordinate,
        subproject_location: GeoCoordinate,
        cost_per_km: Number,
        request_context: Optional[dict[str, Any]] = None,
    ) -> TravelCostResult:
        """Distance + allowance for one employee/subproject, always audited.

        Raises ``StoreUnavailableError`` if the audit record cannot be
        written; no result is returned without its audit record.
        """
        _require_ids(employee_id, subproject_id)
        _require_coordinates(employee_location, subproject_location)
        validate_allowance_inputs(0, cost_per_km)

        lookup = await self.cache.lookup(employee_location, subproject_location)
        daily = self.allowance.daily(lookup.distance_km, cost_per_km)
        rate = to_decimal(cost_per_km)

        record = await self.audit_log.record(
            NewAuditRecord(
                calculation_type=CalculationType.TRAVEL_COST,
                employee_id=employee_id,
                subproject_id=subproject_id,
                employee_location=employee_location,
                subproject_location=subproject_location,
                cost_per_km=rate,
                distance_km=lookup.distance_km,
                daily_allowance_chf=daily,
                request_context=request_context,
            )
        )

        result = TravelCostResult(
            employee_id=employee_id,
            subproject_id=subproject_id,
            distance_km=lookup.distance_km,
            cost_per_km=rate,
            daily_allowance_chf=daily,
            weekly_allowance_chf=self.allowance.weekly_estimate(daily),
            monthly_allowance_chf=self.allowance.monthly_estimate(daily),
            calculation_timestamp=record.calculation_timestamp,
            cache_used=lookup.cache_hit,
            audit_id=record.id,
        )
        logger.info(
            "Travel cost employee=%s subproject=%s distance=%.3fkm daily=%s audit=%s",
            employee_id,
            subproject_id,
            result.distance_km,
            result.daily_allowance_chf,
            record.id,
        )
        return result

    async def calculate_travel_cost_by_ids(
        self,
        employee_id: str,
        subproject_id: str,
        *,
        employee_location: Optional[GeoCoordinate] = None,
        subproject_location: Optional[GeoCoordinate] = None,
        cost_per_km: Optional[Number] = None,
        request_context: Optional[dict[str, Any]] = None,
    ) -> TravelCostResult:
        """Resolve whatever the caller did not supply, then calculate."""
        _require_ids(employee_id, subproject_id)
        if cost_per_km is not None:
            validate_allowance_inputs(0, cost_per_km)

        if employee_location is None or subproject_location is None or cost_per_km is None:
            resolved_home, resolved_site, resolved_rate = await self._resolve(
                employee_id,
                subproject_id,
                need_home=employee_location is None,
                need_site=subproject_location is None or cost_per_km is None,
            )
            employee_location = employee_location or resolved_home
            subproject_location = subproject_location or resolved_site
            if cost_per_km is None:
                if resolved_rate is None:
                    raise NotFoundError("Cost rate for subproject", subproject_id)
                cost_per_km = resolved_rate

        return await self.calculate_travel_cost(
            employee_id,
            subproject_id,
            employee_location,
            subproject_location,
            cost_per_km,
            request_context=request_context,
        )

    async def _resolve(
        self, employee_id: str, subproject_id: str, *, need_home: bool, need_site: bool
    ) -> tuple[Optional[GeoCoordinate], Optional[GeoCoordinate], Optional[Decimal]]:
        home = site = None
        try:
            async with self._session_factory() as session:
                directory = LocationRepository(session)
                if need_home:
                    home = await directory.employee_home(employee_id)
                    if home is None:
                        if await directory.employee_exists(employee_id):
                            raise NotFoundError("Home location for employee", employee_id)
                        raise NotFoundError("Employee", employee_id)
                if need_site:
                    site = await directory.subproject_site(subproject_id)
                    if site is None:
                        raise NotFoundError("Subproject", subproject_id)
        except STORE_ERRORS as exc:
            raise StoreUnavailableError("directory", repr(exc)) from exc
        return (
            home,
            site.location if site else None,
            site.cost_per_km if site else None,
        )

    # ── Audit & maintenance ───────────────────────────────────────────

    async def get_calculation_audit(
        self, filters: AuditFilters = AuditFilters()
    ) -> list[AuditRecord]:
        return await self.audit_log.query(filters)

    async def invalidate_cache(self, request: CacheInvalidation) -> int:
        return await self.maintenance.invalidate(request)

    async def cleanup_expired_cache(self) -> int:
        return await self.maintenance.cleanup_expired()

    async def cache_stats(self) -> CacheStats:
        return await self.maintenance.stats()


def _require_coordinates(*coords: GeoCoordinate) -> None:
    names = ("employee_location", "subproject_location")
    bad = [
        name for name, coord in zip(names, coords)
        if not isinstance(coord, GeoCoordinate)
    ]
    if bad:
        raise ValidationError(f"Missing or invalid {', '.join(bad)}", fields=bad)


def _require_ids(employee_id: str, subproject_id: str) -> None:
    bad = [
        name
        for name, value in (("employee_id", employee_id), ("subproject_id", subproject_id))
        if not isinstance(value, str) or not value.strip()
    ]
    if bad:
        raise ValidationError(f"Missing {', '.join(bad)}", fields=bad)
