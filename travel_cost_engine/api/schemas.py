"""Pydantic request / response schemas for the REST API."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from travel_cost_engine.domain.entities import AuditRecord, GeoCoordinate
from travel_cost_engine.domain.enums import CalculationType


class Location(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)

    def to_domain(self) -> GeoCoordinate:
        return GeoCoordinate(self.latitude, self.longitude)

    @classmethod
    def from_domain(cls, coord: Optional[GeoCoordinate]) -> Optional["Location"]:
        if coord is None:
            return None
        return cls(latitude=coord.latitude, longitude=coord.longitude)


# ── Requests ──────────────────────────────────────────────────────────


class DistanceRequest(BaseModel):
    employee_location: Location
    subproject_location: Location
    use_cache: bool = True


class AllowanceRequest(BaseModel):
    distance_km: float = Field(..., ge=0)
    cost_per_km: float = Field(..., gt=0)
    days: int = Field(1, ge=1, le=365)


class TravelCostRequest(BaseModel):
    employee_id: str = Field(..., min_length=1, max_length=64)
    subproject_id: str = Field(..., min_length=1, max_length=64)
    employee_location: Optional[Location] = Field(
        None, description="Overrides the employee's registered home location."
    )
    subproject_location: Optional[Location] = Field(
        None, description="Overrides the subproject's registered site."
    )
    cost_per_km: Optional[float] = Field(
        None, gt=0, description="Overrides the subproject / project rate."
    )


class CacheInvalidationRequest(BaseModel):
    employee_id: Optional[str] = Field(None, min_length=1, max_length=64)
    subproject_id: Optional[str] = Field(None, min_length=1, max_length=64)
    location: Optional[Location] = None


# ── Responses ─────────────────────────────────────────────────────────


class DistanceResponse(BaseModel):
    distance_km: float
    cache_used: bool
    calculation_timestamp: datetime


class AllowanceResponse(BaseModel):
    allowance: float
    daily_allowance: float
    distance_km: float
    cost_per_km: float
    days: int
    calculation_timestamp: datetime


class TravelCostResponse(BaseModel):
    employee_id: str
    subproject_id: str
    distance_km: float
    cost_per_km: float
    daily_allowance_chf: float
    weekly_allowance_chf: float
    monthly_allowance_chf: float
    calculation_timestamp: datetime
    cache_used: bool
    audit_id: str


class AuditRecordResponse(BaseModel):
    id: str
    calculation_type: CalculationType
    employee_id: Optional[str] = None
    subproject_id: Optional[str] = None
    employee_location: Location
    subproject_location: Optional[Location] = None
    cost_per_km: Optional[float] = None
    distance_km: float
    daily_allowance_chf: Optional[float] = None
    calculation_timestamp: datetime
    calculation_version: str
    request_context: Optional[dict[str, Any]] = None

    @classmethod
    def from_record(cls, record: AuditRecord) -> "AuditRecordResponse":
        return cls(
            id=record.id,
            calculation_type=record.calculation_type,
            employee_id=record.employee_id,
            subproject_id=record.subproject_id,
            employee_location=Location.from_domain(record.employee_location),
            subproject_location=Location.from_domain(record.subproject_location),
            cost_per_km=_as_float(record.cost_per_km),
            distance_km=record.distance_km,
            daily_allowance_chf=_as_float(record.daily_allowance_chf),
            calculation_timestamp=record.calculation_timestamp,
            calculation_version=record.calculation_version,
            request_context=record.request_context,
        )


def _as_float(value) -> Optional[float]:
    return None if value is None else float(value)


class AuditFiltersEcho(BaseModel):
    employee_id: Optional[str] = None
    subproject_id: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    calculation_type: Optional[CalculationType] = None
    limit: int


class AuditListResponse(BaseModel):
    audit_records: list[AuditRecordResponse] = []
    filters: AuditFiltersEcho


class MaintenanceResponse(BaseModel):
    deleted_count: int
    message: str


class CacheStatsResponse(BaseModel):
    total_entries: int
    live_entries: int
    expired_entries: int


class HealthResponse(BaseModel):
    status: str = "ok"


class ErrorResponse(BaseModel):
    detail: str
    code: str
    fields: list[str] = []
