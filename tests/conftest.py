"""
Shared test fixtures.

Uses an in-memory SQLite database (via aiosqlite) so tests run without
Docker / PostgreSQL / Redis.  Each test gets its own engine; ``StaticPool``
keeps every session on the one in-memory connection.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from helpers import BERN, GENEVA, ZURICH, BrokenSessionFactory, FrozenClock
from travel_cost_engine.infrastructure.database import Base
from travel_cost_engine.infrastructure.models import (
    EmployeeModel,
    ProjectModel,
    SubprojectModel,
)
from travel_cost_engine.services.audit_log import CalculationAuditLog
from travel_cost_engine.services.distance_cache import DistanceCache
from travel_cost_engine.services.engine import TravelCostEngine
from travel_cost_engine.services.maintenance import CacheMaintenance

TEST_DB_URL = "sqlite+aiosqlite:///:memory:"


# ── Fixtures ──────────────────────────────────────────────────────────


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def broken_factory() -> BrokenSessionFactory:
    return BrokenSessionFactory()


@pytest_asyncio.fixture
async def db_engine() -> AsyncGenerator[AsyncEngine, None]:
    """Fresh in-memory schema per test."""
    engine = create_async_engine(TEST_DB_URL, echo=False, poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def directory(session_factory):
    """Employees, projects and subprojects as the travel-request app keeps them."""
    async with session_factory() as session:
        session.add_all(
            [
                EmployeeModel(id="emp-1", home_lat=ZURICH.latitude, home_lng=ZURICH.longitude),
                EmployeeModel(id="emp-no-home", home_lat=None, home_lng=None),
                ProjectModel(id="proj-1", default_cost_per_km=Decimal("0.70")),
                ProjectModel(id="proj-no-rate", default_cost_per_km=None),
            ]
        )
        await session.flush()
        session.add_all(
            [
                SubprojectModel(
                    id="sub-bern",
                    project_id="proj-1",
                    location_lat=BERN.latitude,
                    location_lng=BERN.longitude,
                    cost_per_km=Decimal("0.68"),
                ),
                SubprojectModel(
                    id="sub-geneva",
                    project_id="proj-1",
                    location_lat=GENEVA.latitude,
                    location_lng=GENEVA.longitude,
                    cost_per_km=None,
                ),
                SubprojectModel(
                    id="sub-closed",
                    project_id="proj-1",
                    location_lat=BERN.latitude,
                    location_lng=BERN.longitude,
                    cost_per_km=Decimal("0.68"),
                    is_active=False,
                ),
                SubprojectModel(
                    id="sub-no-rate",
                    project_id="proj-no-rate",
                    location_lat=BERN.latitude,
                    location_lng=BERN.longitude,
                    cost_per_km=None,
                ),
            ]
        )
        await session.commit()


@pytest.fixture
def build_engine(session_factory, clock):
    """Factory for a ``TravelCostEngine`` wired to the test database."""

    def _build(calculator=None, audit_factory=None, attempts=3) -> TravelCostEngine:
        cache_kwargs = {"clock": clock}
        if calculator is not None:
            cache_kwargs["calculator"] = calculator
        return TravelCostEngine(
            session_factory,
            cache=DistanceCache(session_factory, **cache_kwargs),
            audit_log=CalculationAuditLog(
                audit_factory or session_factory,
                attempts=attempts,
                backoff_seconds=0,
                clock=clock,
            ),
            maintenance=CacheMaintenance(session_factory, clock=clock),
            clock=clock,
        )

    return _build
