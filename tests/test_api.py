"""
Integration tests for the REST API endpoints.

Runs against an in-memory SQLite database.  The app lifespan is not run by
``ASGITransport``, so the engine dependency is overridden with one wired to
the test database.
"""

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from helpers import ZURICH_BERN_KM, fixed_distance
from travel_cost_engine.api.app import create_app
from travel_cost_engine.api.dependencies import get_engine
from travel_cost_engine.api.middleware import configure_rate_limit, limiter
from travel_cost_engine.config import Settings
from travel_cost_engine.services.engine import TravelCostEngine

ZURICH = {"latitude": 47.3769, "longitude": 8.5417}
BERN = {"latitude": 46.9480, "longitude": 7.4474}


# ── Fixture ───────────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def client(directory, build_engine):
    engine = build_engine(calculator=fixed_distance(ZURICH_BERN_KM))

    app = create_app(Settings(cache_sweep_enabled=False))
    app.dependency_overrides[get_engine] = lambda: engine

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


# ── Tests ─────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_health(client: AsyncClient):
    resp = await client.get("/api/v1/admin/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


@pytest.mark.asyncio
async def test_distance(client: AsyncClient):
    body = {"employee_location": ZURICH, "subproject_location": BERN}

    first = await client.post("/api/v1/calculations/distance", json=body)
    second = await client.post("/api/v1/calculations/distance", json=body)

    assert first.status_code == 200
    assert first.json()["distance_km"] == 93.752
    assert first.json()["cache_used"] is False
    assert second.json()["cache_used"] is True


@pytest.mark.asyncio
async def test_distance_out_of_range_is_400(client: AsyncClient):
    resp = await client.post(
        "/api/v1/calculations/distance",
        json={
            "employee_location": {"latitude": 91, "longitude": 8.5},
            "subproject_location": BERN,
        },
    )
    assert resp.status_code == 400
    data = resp.json()
    assert data["code"] == "VALIDATION_ERROR"
    assert "employee_location.latitude" in data["fields"]


@pytest.mark.asyncio
async def test_allowance(client: AsyncClient):
    resp = await client.post(
        "/api/v1/calculations/allowance",
        json={"distance_km": 50, "cost_per_km": 0.70, "days": 5},
    )
    assert resp.status_code == 200
    data = resp.json()
    assert data["allowance"] == 175.0
    assert data["daily_allowance"] == 35.0
    assert data["days"] == 5


@pytest.mark.asyncio
async def test_allowance_negative_distance_is_400(client: AsyncClient):
    resp = await client.post(
        "/api/v1/calculations/allowance",
        json={"distance_km": -10, "cost_per_km": 0.68},
    )
    assert resp.status_code == 400
    assert resp.json()["fields"] == ["distance_km"]


@pytest.mark.asyncio
async def test_travel_cost_by_ids(client: AsyncClient):
    resp = await client.post(
        "/api/v1/calculations/travel-cost",
        json={"employee_id": "emp-1", "subproject_id": "sub-bern"},
        headers={"X-Request-ID": "req-42"},
    )
    assert resp.status_code == 200
    data = resp.json()
    assert data["distance_km"] == 93.752
    assert data["cost_per_km"] == 0.68
    assert data["daily_allowance_chf"] == 63.75
    assert data["weekly_allowance_chf"] == 318.75
    assert data["monthly_allowance_chf"] == 1402.5
    assert data["audit_id"]

    audit = await client.get("/api/v1/calculations/audit", params={"employee_id": "emp-1"})
    (record,) = audit.json()["audit_records"]
    assert record["id"] == data["audit_id"]
    assert record["calculation_type"] == "travel_cost"
    assert record["daily_allowance_chf"] == 63.75
    assert record["request_context"]["request_id"] == "req-42"
    assert record["request_context"]["path"] == "/api/v1/calculations/travel-cost"


@pytest.mark.asyncio
async def test_travel_cost_with_overrides(client: AsyncClient):
    resp = await client.post(
        "/api/v1/calculations/travel-cost",
        json={
            "employee_id": "emp-elsewhere",
            "subproject_id": "sub-adhoc",
            "employee_location": ZURICH,
            "subproject_location": BERN,
            "cost_per_km": 0.683,
        },
    )
    assert resp.status_code == 200
    assert resp.json()["daily_allowance_chf"] == 64.03


@pytest.mark.asyncio
async def test_travel_cost_unknown_employee_is_404(client: AsyncClient):
    resp = await client.post(
        "/api/v1/calculations/travel-cost",
        json={"employee_id": "nobody", "subproject_id": "sub-bern"},
    )
    assert resp.status_code == 404
    assert resp.json()["code"] == "NOT_FOUND"


@pytest.mark.asyncio
async def test_travel_cost_missing_ids_is_400(client: AsyncClient):
    resp = await client.post("/api/v1/calculations/travel-cost", json={})
    assert resp.status_code == 400
    assert set(resp.json()["fields"]) == {"employee_id", "subproject_id"}


@pytest.mark.asyncio
async def test_audit_defaults_and_filters_echo(client: AsyncClient):
    resp = await client.get("/api/v1/calculations/audit")
    assert resp.status_code == 200
    data = resp.json()
    assert data["audit_records"] == []
    assert data["filters"]["limit"] == 50


@pytest.mark.asyncio
async def test_audit_limit_too_large_is_400(client: AsyncClient):
    resp = await client.get("/api/v1/calculations/audit", params={"limit": 1001})
    assert resp.status_code == 400
    assert resp.json()["fields"] == ["limit"]


@pytest.mark.asyncio
async def test_invalidate_by_location(client: AsyncClient):
    await client.post(
        "/api/v1/calculations/distance",
        json={"employee_location": ZURICH, "subproject_location": BERN},
    )

    resp = await client.post(
        "/api/v1/admin/cache/invalidate", json={"location": ZURICH}
    )
    assert resp.status_code == 200
    assert resp.json() == {
        "deleted_count": 1,
        "message": "Invalidated 1 cache entries",
    }


@pytest.mark.asyncio
async def test_invalidate_empty_request_is_400(client: AsyncClient):
    resp = await client.post("/api/v1/admin/cache/invalidate", json={})
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_cleanup_and_stats(client: AsyncClient, clock):
    await client.post(
        "/api/v1/calculations/distance",
        json={"employee_location": ZURICH, "subproject_location": BERN},
    )
    clock.advance(hours=25)

    stats = await client.get("/api/v1/admin/cache/stats")
    assert stats.json() == {"total_entries": 1, "live_entries": 0, "expired_entries": 1}

    resp = await client.post("/api/v1/admin/cache/cleanup")
    assert resp.status_code == 200
    assert resp.json() == {
        "deleted_count": 1,
        "message": "Cleaned up 1 expired cache entries",
    }


@pytest.mark.asyncio
async def test_audit_store_down_is_503(directory, build_engine, broken_factory):
    engine = build_engine(
        calculator=fixed_distance(ZURICH_BERN_KM), audit_factory=broken_factory
    )
    app = create_app(Settings(cache_sweep_enabled=False))
    app.dependency_overrides[get_engine] = lambda: engine

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        resp = await ac.post(
            "/api/v1/calculations/travel-cost",
            json={"employee_id": "emp-1", "subproject_id": "sub-bern"},
        )

    assert resp.status_code == 503
    assert resp.json()["code"] == "STORE_UNAVAILABLE"


@pytest.mark.asyncio
async def test_audit_limit_bound_follows_settings(session_factory):
    settings = Settings(cache_sweep_enabled=False, audit_max_limit=2000)
    engine = TravelCostEngine.from_settings(session_factory, settings)
    app = create_app(settings)
    app.dependency_overrides[get_engine] = lambda: engine

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        ok = await ac.get("/api/v1/calculations/audit", params={"limit": 1500})
        too_large = await ac.get("/api/v1/calculations/audit", params={"limit": 2001})

    assert ok.status_code == 200
    assert ok.json()["filters"]["limit"] == 1500
    assert too_large.status_code == 400


@pytest.mark.asyncio
async def test_rate_limit_follows_settings(build_engine):
    engine = build_engine()
    app = create_app(Settings(cache_sweep_enabled=False, rate_limit="2/minute"))
    app.dependency_overrides[get_engine] = lambda: engine
    body = {"distance_km": 50, "cost_per_km": 0.70}

    limiter.reset()
    try:
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as ac:
            statuses = [
                (await ac.post("/api/v1/calculations/allowance", json=body)).status_code
                for _ in range(3)
            ]
    finally:
        configure_rate_limit(Settings().rate_limit)
        limiter.reset()

    assert statuses == [200, 200, 429]
