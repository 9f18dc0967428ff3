"""
Domain value objects and records.

``GeoCoordinate`` validates its own bounds, so every coordinate reaching the
calculators or the stores is already known to be in range.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from .enums import CALCULATION_VERSION, CalculationType
from .errors import ValidationError


# ── Value Objects ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class GeoCoordinate:
    latitude: float
    longitude: float

    def __post_init__(self) -> None:
        bad: list[str] = []
        if not _is_finite_number(self.latitude) or not -90 <= self.latitude <= 90:
            bad.append("latitude")
        if not _is_finite_number(self.longitude) or not -180 <= self.longitude <= 180:
            bad.append("longitude")
        if bad:
            raise ValidationError(
                f"Coordinate out of range: latitude={self.latitude!r}, "
                f"longitude={self.longitude!r}",
                fields=bad,
            )


def _is_finite_number(value: Any) -> bool:
    return (
        isinstance(value, (int, float))
        and not isinstance(value, bool)
        and math.isfinite(value)
    )


@dataclass(frozen=True)
class AllowanceResult:
    distance_km: float
    cost_per_km: Decimal
    days: int
    daily_allowance: Decimal
    total_allowance: Decimal


@dataclass(frozen=True)
class DistanceLookup:
    """Distance plus whether it was served from a live cache entry."""

    distance_km: float
    cache_hit: bool


@dataclass(frozen=True)
class DistanceResult:
    distance_km: float
    cache_used: bool
    calculation_timestamp: datetime


@dataclass(frozen=True)
class TravelCostResult:
    employee_id: str
    subproject_id: str
    distance_km: float
    cost_per_km: Decimal
    daily_allowance_chf: Decimal
    weekly_allowance_chf: Decimal
    monthly_allowance_chf: Decimal
    calculation_timestamp: datetime
    cache_used: bool
    audit_id: str


@dataclass(frozen=True)
class CacheStats:
    total_entries: int
    live_entries: int
    expired_entries: int


# ── Audit trail ───────────────────────────────────────────────────────


@dataclass(frozen=True)
class NewAuditRecord:
    """Audit entry as submitted; id and timestamp are assigned on write."""

    calculation_type: CalculationType
    employee_location: GeoCoordinate
    distance_km: float
    employee_id: Optional[str] = None
    subproject_id: Optional[str] = None
    subproject_location: Optional[GeoCoordinate] = None
    cost_per_km: Optional[Decimal] = None
    daily_allowance_chf: Optional[Decimal] = None
    calculation_version: str = CALCULATION_VERSION
    request_context: Optional[dict[str, Any]] = None


@dataclass(frozen=True)
class AuditRecord:
    """Immutable, persisted record of one calculation."""

    id: str
    calculation_type: CalculationType
    employee_location: GeoCoordinate
    distance_km: float
    calculation_timestamp: datetime
    calculation_version: str
    employee_id: Optional[str] = None
    subproject_id: Optional[str] = None
    subproject_location: Optional[GeoCoordinate] = None
    cost_per_km: Optional[Decimal] = None
    daily_allowance_chf: Optional[Decimal] = None
    request_context: Optional[dict[str, Any]] = None


@dataclass(frozen=True)
class AuditFilters:
    employee_id: Optional[str] = None
    subproject_id: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    calculation_type: Optional[CalculationType] = None
    limit: Optional[int] = None


# ── Location directory ────────────────────────────────────────────────


@dataclass(frozen=True)
class SubprojectSite:
    subproject_id: str
    location: GeoCoordinate
    cost_per_km: Optional[Decimal] = None


@dataclass(frozen=True)
class CacheInvalidation:
    employee_id: Optional[str] = None
    subproject_id: Optional[str] = None
    location: Optional[GeoCoordinate] = None

    def is_empty(self) -> bool:
        return (
            self.employee_id is None
            and self.subproject_id is None
            and self.location is None
        )
