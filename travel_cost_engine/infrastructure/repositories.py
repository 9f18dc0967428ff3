"""
Repository Pattern -- abstracts DB access so domain logic stays DB-agnostic.

Each repository receives an ``AsyncSession`` (unit-of-work) and exposes
domain-relevant queries only.  Transaction boundaries belong to the caller.
"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterable, Optional

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from .models import (
    CalculationAuditModel,
    DistanceCacheModel,
    EmployeeModel,
    ProjectModel,
    SubprojectModel,
)
from travel_cost_engine.domain.canonical import CanonicalPair
from travel_cost_engine.domain.entities import (
    AuditRecord,
    GeoCoordinate,
    NewAuditRecord,
    SubprojectSite,
)
from travel_cost_engine.domain.enums import CalculationType

_UPSERT_DIALECTS = {"postgresql": pg_insert, "sqlite": sqlite_insert}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalise to aware UTC; naive values are taken to be UTC already."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class DistanceCacheRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_live(
        self, cache_key: str, now: datetime
    ) -> Optional[DistanceCacheModel]:
        result = await self.session.execute(
            select(DistanceCacheModel).where(
                DistanceCacheModel.cache_key == cache_key,
                DistanceCacheModel.expires_at > now,
            )
        )
        return result.scalar_one_or_none()

    async def record_hit(self, cache_key: str, now: datetime) -> None:
        await self.session.execute(
            update(DistanceCacheModel)
            .where(DistanceCacheModel.cache_key == cache_key)
            .values(
                last_accessed=now,
                access_count=DistanceCacheModel.access_count + 1,
            )
            .execution_options(synchronize_session=False)
        )

    async def upsert(
        self,
        pair: CanonicalPair,
        distance_km: float,
        computed_at: datetime,
        expires_at: datetime,
    ) -> None:
        """Insert or overwrite the entry for ``pair.key`` (last writer wins)."""
        values = dict(
            cache_key=pair.key,
            point_a=pair.point_a,
            point_b=pair.point_b,
            distance_km=distance_km,
            computed_at=computed_at,
            expires_at=expires_at,
            last_accessed=computed_at,
            access_count=1,
        )
        insert = _UPSERT_DIALECTS.get(self.session.bind.dialect.name)
        if insert is None:
            await self._merge(values)
            return

        stmt = insert(DistanceCacheModel).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[DistanceCacheModel.cache_key],
            set_={
                "distance_km": stmt.excluded.distance_km,
                "computed_at": stmt.excluded.computed_at,
                "expires_at": stmt.excluded.expires_at,
                "last_accessed": stmt.excluded.last_accessed,
                "access_count": DistanceCacheModel.access_count + 1,
            },
        )
        await self.session.execute(stmt)

    async def _merge(self, values: dict) -> None:
        result = await self.session.execute(
            select(DistanceCacheModel).where(
                DistanceCacheModel.cache_key == values["cache_key"]
            )
        )
        entry = result.scalar_one_or_none()
        if entry is None:
            self.session.add(DistanceCacheModel(**values))
        else:
            for name in ("distance_km", "computed_at", "expires_at", "last_accessed"):
                setattr(entry, name, values[name])
            entry.access_count += 1
        await self.session.flush()

    async def delete_touching(self, points: Iterable[str]) -> int:
        """Delete entries whose key contains any of the canonical *points*."""
        points = sorted(set(points))
        if not points:
            return 0
        result = await self.session.execute(
            delete(DistanceCacheModel)
            .where(
                or_(
                    DistanceCacheModel.point_a.in_(points),
                    DistanceCacheModel.point_b.in_(points),
                )
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    async def delete_expired(self, now: datetime) -> int:
        result = await self.session.execute(
            delete(DistanceCacheModel)
            .where(DistanceCacheModel.expires_at <= now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    async def count(self, live_at: Optional[datetime] = None) -> int:
        query = select(func.count()).select_from(DistanceCacheModel)
        if live_at is not None:
            query = query.where(DistanceCacheModel.expires_at > live_at)
        result = await self.session.execute(query)
        return result.scalar() or 0


class AuditRepository:
    """Append and read only; audit rows are never updated or deleted."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, record_id: str) -> Optional[CalculationAuditModel]:
        result = await self.session.execute(
            select(CalculationAuditModel).where(CalculationAuditModel.id == record_id)
        )
        return result.scalar_one_or_none()

    async def append(
        self, entry: NewAuditRecord, record_id: str, timestamp: datetime
    ) -> CalculationAuditModel:
        sub = entry.subproject_location
        row = CalculationAuditModel(
            id=record_id,
            calculation_type=entry.calculation_type,
            employee_id=entry.employee_id,
            subproject_id=entry.subproject_id,
            employee_lat=entry.employee_location.latitude,
            employee_lng=entry.employee_location.longitude,
            subproject_lat=sub.latitude if sub else None,
            subproject_lng=sub.longitude if sub else None,
            cost_per_km=entry.cost_per_km,
            distance_km=entry.distance_km,
            daily_allowance_chf=entry.daily_allowance_chf,
            calculation_timestamp=timestamp,
            calculation_version=entry.calculation_version,
            request_context=entry.request_context,
        )
        self.session.add(row)
        await self.session.flush()
        return row

    async def query(
        self,
        *,
        limit: int,
        employee_id: Optional[str] = None,
        subproject_id: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        calculation_type: Optional[CalculationType] = None,
    ) -> list[CalculationAuditModel]:
        query = select(CalculationAuditModel)
        if employee_id is not None:
            query = query.where(CalculationAuditModel.employee_id == employee_id)
        if subproject_id is not None:
            query = query.where(CalculationAuditModel.subproject_id == subproject_id)
        if start_date is not None:
            query = query.where(
                CalculationAuditModel.calculation_timestamp >= as_utc(start_date)
            )
        if end_date is not None:
            query = query.where(
                CalculationAuditModel.calculation_timestamp <= as_utc(end_date)
            )
        if calculation_type is not None:
            query = query.where(
                CalculationAuditModel.calculation_type == calculation_type
            )
        query = query.order_by(
            CalculationAuditModel.calculation_timestamp.desc(),
            CalculationAuditModel.seq.desc(),
        ).limit(limit)
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def employee_locations(self, employee_id: str) -> list[GeoCoordinate]:
        result = await self.session.execute(
            select(
                CalculationAuditModel.employee_lat, CalculationAuditModel.employee_lng
            )
            .where(CalculationAuditModel.employee_id == employee_id)
            .distinct()
        )
        return [GeoCoordinate(lat, lng) for lat, lng in result.all()]

    async def subproject_locations(self, subproject_id: str) -> list[GeoCoordinate]:
        result = await self.session.execute(
            select(
                CalculationAuditModel.subproject_lat,
                CalculationAuditModel.subproject_lng,
            )
            .where(
                CalculationAuditModel.subproject_id == subproject_id,
                CalculationAuditModel.subproject_lat.is_not(None),
                CalculationAuditModel.subproject_lng.is_not(None),
            )
            .distinct()
        )
        return [GeoCoordinate(lat, lng) for lat, lng in result.all()]


def to_audit_record(row: CalculationAuditModel) -> AuditRecord:
    subproject_location = None
    if row.subproject_lat is not None and row.subproject_lng is not None:
        subproject_location = GeoCoordinate(row.subproject_lat, row.subproject_lng)
    return AuditRecord(
        id=row.id,
        calculation_type=CalculationType(row.calculation_type),
        employee_id=row.employee_id,
        subproject_id=row.subproject_id,
        employee_location=GeoCoordinate(row.employee_lat, row.employee_lng),
        subproject_location=subproject_location,
        cost_per_km=_as_decimal(row.cost_per_km),
        distance_km=row.distance_km,
        daily_allowance_chf=_as_decimal(row.daily_allowance_chf, cents=True),
        calculation_timestamp=as_utc(row.calculation_timestamp),
        calculation_version=row.calculation_version,
        request_context=row.request_context,
    )


def _as_decimal(value, cents: bool = False) -> Optional[Decimal]:
    if value is None:
        return None
    amount = Decimal(str(value))
    if cents:
        return amount.quantize(Decimal("0.01"))
    return amount.normalize()


class LocationRepository:
    """Read-only lookups against the travel-request application's tables."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def employee_home(self, employee_id: str) -> Optional[GeoCoordinate]:
        employee = await self.session.get(EmployeeModel, employee_id)
        if employee is None or employee.home_lat is None or employee.home_lng is None:
            return None
        return GeoCoordinate(employee.home_lat, employee.home_lng)

    async def employee_exists(self, employee_id: str) -> bool:
        return await self.session.get(EmployeeModel, employee_id) is not None

    async def subproject_site(self, subproject_id: str) -> Optional[SubprojectSite]:
        """Active subproject's site; rate falls back to the project default."""
        result = await self.session.execute(
            select(SubprojectModel, ProjectModel.default_cost_per_km)
            .join(ProjectModel, SubprojectModel.project_id == ProjectModel.id)
            .where(
                SubprojectModel.id == subproject_id,
                SubprojectModel.is_active.is_(True),
            )
        )
        row = result.first()
        if row is None:
            return None
        subproject, default_rate = row
        if subproject.location_lat is None or subproject.location_lng is None:
            return None
        rate = subproject.cost_per_km if subproject.cost_per_km else default_rate
        return SubprojectSite(
            subproject_id=subproject.id,
            location=GeoCoordinate(subproject.location_lat, subproject.location_lng),
            cost_per_km=_as_decimal(rate),
        )
