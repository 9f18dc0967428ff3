"""
Calculation endpoints
=====================

POST /api/v1/calculations/distance    -- distance between two points
POST /api/v1/calculations/allowance   -- allowance for a distance and rate
POST /api/v1/calculations/travel-cost -- full, audited travel cost
GET  /api/v1/calculations/audit       -- calculation audit trail
"""

from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from travel_cost_engine.api.dependencies import get_engine, request_context
from travel_cost_engine.api.middleware import limiter, rate_limit
from travel_cost_engine.api.schemas import (
    AllowanceRequest,
    AllowanceResponse,
    AuditFiltersEcho,
    AuditListResponse,
    AuditRecordResponse,
    DistanceRequest,
    DistanceResponse,
    ErrorResponse,
    TravelCostRequest,
    TravelCostResponse,
)
from travel_cost_engine.domain.entities import AuditFilters
from travel_cost_engine.domain.enums import CalculationType
from travel_cost_engine.services.engine import TravelCostEngine

router = APIRouter(
    prefix="/calculations",
    tags=["calculations"],
    responses={
        400: {"model": ErrorResponse},
        503: {"model": ErrorResponse},
    },
)


@router.post(
    "/distance",
    response_model=DistanceResponse,
    summary="Great-circle distance between employee and subproject",
)
@limiter.limit(rate_limit)
async def calculate_distance(
    request: Request,
    body: DistanceRequest,
    engine: TravelCostEngine = Depends(get_engine),
):
    result = await engine.calculate_distance(
        body.employee_location.to_domain(),
        body.subproject_location.to_domain(),
        use_cache=body.use_cache,
    )
    return DistanceResponse(
        distance_km=result.distance_km,
        cache_used=result.cache_used,
        calculation_timestamp=result.calculation_timestamp,
    )


@router.post(
    "/allowance",
    response_model=AllowanceResponse,
    summary="Travel allowance for a distance and cost rate",
)
@limiter.limit(rate_limit)
async def calculate_allowance(
    request: Request,
    body: AllowanceRequest,
    engine: TravelCostEngine = Depends(get_engine),
):
    result = engine.calculate_allowance(body.distance_km, body.cost_per_km, body.days)
    return AllowanceResponse(
        allowance=float(result.total_allowance),
        daily_allowance=float(result.daily_allowance),
        distance_km=result.distance_km,
        cost_per_km=float(result.cost_per_km),
        days=result.days,
        calculation_timestamp=datetime.now(timezone.utc),
    )


@router.post(
    "/travel-cost",
    response_model=TravelCostResponse,
    summary="Audited travel cost for an employee and subproject",
    description=(
        "Resolves the employee's home and the subproject's site and rate "
        "(unless overridden), then computes distance and allowance. "
        "Every successful response has a matching audit record; if the "
        "audit store is unavailable the request fails with 503."
    ),
    responses={404: {"model": ErrorResponse}},
)
@limiter.limit(rate_limit)
async def calculate_travel_cost(
    request: Request,
    body: TravelCostRequest,
    engine: TravelCostEngine = Depends(get_engine),
):
    result = await engine.calculate_travel_cost_by_ids(
        body.employee_id,
        body.subproject_id,
        employee_location=(
            body.employee_location.to_domain() if body.employee_location else None
        ),
        subproject_location=(
            body.subproject_location.to_domain() if body.subproject_location else None
        ),
        cost_per_km=body.cost_per_km,
        request_context=request_context(request),
    )
    return TravelCostResponse(
        employee_id=result.employee_id,
        subproject_id=result.subproject_id,
        distance_km=result.distance_km,
        cost_per_km=float(result.cost_per_km),
        daily_allowance_chf=float(result.daily_allowance_chf),
        weekly_allowance_chf=float(result.weekly_allowance_chf),
        monthly_allowance_chf=float(result.monthly_allowance_chf),
        calculation_timestamp=result.calculation_timestamp,
        cache_used=result.cache_used,
        audit_id=result.audit_id,
    )


@router.get(
    "/audit",
    response_model=AuditListResponse,
    summary="Calculation audit trail, newest first",
)
@limiter.limit(rate_limit)
async def get_calculation_audit(
    request: Request,
    employee_id: Optional[str] = Query(None, max_length=64),
    subproject_id: Optional[str] = Query(None, max_length=64),
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    calculation_type: Optional[CalculationType] = Query(None),
    # default and upper bound are applied by the audit log
    limit: Optional[int] = Query(None, ge=1),
    engine: TravelCostEngine = Depends(get_engine),
):
    filters = AuditFilters(
        employee_id=employee_id,
        subproject_id=subproject_id,
        start_date=start_date,
        end_date=end_date,
        calculation_type=calculation_type,
        limit=limit,
    )
    records = await engine.get_calculation_audit(filters)
    return AuditListResponse(
        audit_records=[AuditRecordResponse.from_record(r) for r in records],
        filters=AuditFiltersEcho(
            employee_id=employee_id,
            subproject_id=subproject_id,
            start_date=start_date,
            end_date=end_date,
            calculation_type=calculation_type,
            limit=limit if limit is not None else engine.audit_log.default_limit,
        ),
    )
