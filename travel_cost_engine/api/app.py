"""
FastAPI application factory.

* Registers routes for calculations and admin.
* Builds the DB engine, Redis client and calculation engine once per
  process in the lifespan, and starts / stops the expiry sweeper.
* Maps engine errors to HTTP responses and applies rate limiting.
* Swagger / OpenAPI UI available at ``/docs``.
"""

from contextlib import asynccontextmanager
import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from travel_cost_engine.api.middleware import configure_rate_limit, limiter
from travel_cost_engine.api.routes import admin, calculations
from travel_cost_engine.config import Settings, settings as default_settings
from travel_cost_engine.domain.errors import (
    ComputationError,
    EngineError,
    NotFoundError,
    StoreUnavailableError,
    ValidationError,
)
from travel_cost_engine.infrastructure.database import (
    build_engine,
    build_session_factory,
)
from travel_cost_engine.infrastructure.redis_client import build_redis
from travel_cost_engine.services.engine import TravelCostEngine
from travel_cost_engine.workers.cache_sweeper import CacheSweeper

logger = logging.getLogger(__name__)

_STATUS_BY_ERROR = {
    ValidationError: 400,
    NotFoundError: 404,
    StoreUnavailableError: 503,
    ComputationError: 500,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build shared resources on startup; release them on shutdown."""
    settings: Settings = app.state.settings
    db_engine = build_engine(settings)
    app.state.engine = TravelCostEngine.from_settings(
        build_session_factory(db_engine), settings
    )
    redis = build_redis(settings)

    sweeper = None
    if settings.cache_sweep_enabled:
        sweeper = CacheSweeper(
            app.state.engine.maintenance,
            redis,
            interval_seconds=settings.cache_sweep_interval_seconds,
        )
        await sweeper.start()
    try:
        yield
    finally:
        if sweeper:
            await sweeper.stop()
        await redis.aclose()
        await db_engine.dispose()


async def engine_error_handler(request: Request, exc: EngineError) -> JSONResponse:
    status = next(
        (code for cls, code in _STATUS_BY_ERROR.items() if isinstance(exc, cls)),
        500,
    )
    if status >= 500:
        logger.error("%s at %s: %s", exc.code, request.url.path, exc)
    else:
        logger.info("%s at %s: %s", exc.code, request.url.path, exc)
    return JSONResponse(
        status_code=status,
        content={
            "detail": str(exc),
            "code": exc.code,
            "fields": getattr(exc, "fields", []),
        },
    )


async def request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    errors = exc.errors()
    logger.info("Validation error at %s: %s", request.url.path, errors)
    fields = [
        ".".join(str(p) for p in err.get("loc", ()) if p not in ("body", "query"))
        for err in errors
    ]
    return JSONResponse(
        status_code=400,
        content={
            "detail": "; ".join(err.get("msg", "invalid") for err in errors),
            "code": ValidationError.code,
            "fields": fields,
        },
    )


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or default_settings
    logging.basicConfig(level=settings.log_level.upper())

    app = FastAPI(
        title="Travel Cost Calculation API",
        description=(
            "Computes great-circle distances and travel allowances between "
            "employee homes and subproject sites, with a distance cache, "
            "an append-only calculation audit trail and cache maintenance."
        ),
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.settings = settings

    # Rate limiter
    configure_rate_limit(settings.rate_limit)
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    # Error mapping
    app.add_exception_handler(EngineError, engine_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)

    # Routers
    app.include_router(calculations.router, prefix="/api/v1")
    app.include_router(admin.router, prefix="/api/v1")

    return app
