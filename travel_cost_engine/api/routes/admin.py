"""
Admin / maintenance endpoints
=============================

POST /api/v1/admin/cache/invalidate -- targeted cache invalidation
POST /api/v1/admin/cache/cleanup    -- delete expired cache entries
GET  /api/v1/admin/cache/stats      -- cache entry counts
GET  /api/v1/admin/health           -- simple health check
"""

from fastapi import APIRouter, Depends, Request

from travel_cost_engine.api.dependencies import get_engine
from travel_cost_engine.api.middleware import limiter, rate_limit
from travel_cost_engine.api.schemas import (
    CacheInvalidationRequest,
    CacheStatsResponse,
    ErrorResponse,
    HealthResponse,
    MaintenanceResponse,
)
from travel_cost_engine.domain.entities import CacheInvalidation
from travel_cost_engine.services.engine import TravelCostEngine

router = APIRouter(
    prefix="/admin",
    tags=["admin"],
    responses={503: {"model": ErrorResponse}},
)


@router.post(
    "/cache/invalidate",
    response_model=MaintenanceResponse,
    summary="Invalidate cached distances for a location, employee or subproject",
    responses={400: {"model": ErrorResponse}},
)
@limiter.limit(rate_limit)
async def invalidate_cache(
    request: Request,
    body: CacheInvalidationRequest,
    engine: TravelCostEngine = Depends(get_engine),
):
    deleted = await engine.invalidate_cache(
        CacheInvalidation(
            employee_id=body.employee_id,
            subproject_id=body.subproject_id,
            location=body.location.to_domain() if body.location else None,
        )
    )
    return MaintenanceResponse(
        deleted_count=deleted, message=f"Invalidated {deleted} cache entries"
    )


@router.post(
    "/cache/cleanup",
    response_model=MaintenanceResponse,
    summary="Delete expired cache entries",
)
@limiter.limit(rate_limit)
async def cleanup_expired_cache(
    request: Request,
    engine: TravelCostEngine = Depends(get_engine),
):
    deleted = await engine.cleanup_expired_cache()
    return MaintenanceResponse(
        deleted_count=deleted,
        message=f"Cleaned up {deleted} expired cache entries",
    )


@router.get(
    "/cache/stats",
    response_model=CacheStatsResponse,
    summary="Total, live and expired cache entry counts",
)
@limiter.limit(rate_limit)
async def cache_stats(
    request: Request,
    engine: TravelCostEngine = Depends(get_engine),
):
    stats = await engine.cache_stats()
    return CacheStatsResponse(
        total_entries=stats.total_entries,
        live_entries=stats.live_entries,
        expired_entries=stats.expired_entries,
    )


@router.get("/health", response_model=HealthResponse, summary="Health check")
async def health():
    return HealthResponse()
