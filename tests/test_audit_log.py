"""Calculation audit log: append, query filters, immutability, write failures."""

import time
from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from helpers import BERN, GENEVA, ZURICH, HangingSessionFactory
from travel_cost_engine.domain.entities import AuditFilters, NewAuditRecord
from travel_cost_engine.domain.enums import CALCULATION_VERSION, CalculationType
from travel_cost_engine.domain.errors import StoreUnavailableError, ValidationError
from travel_cost_engine.infrastructure.models import (
    AuditRecordImmutable,
    CalculationAuditModel,
)
from travel_cost_engine.services.audit_log import CalculationAuditLog


def _entry(employee_id="emp-1", subproject_id="sub-bern", **overrides):
    values = dict(
        calculation_type=CalculationType.TRAVEL_COST,
        employee_id=employee_id,
        subproject_id=subproject_id,
        employee_location=ZURICH,
        subproject_location=BERN,
        cost_per_km=Decimal("0.68"),
        distance_km=93.752,
        daily_allowance_chf=Decimal("63.75"),
    )
    values.update(overrides)
    return NewAuditRecord(**values)


@pytest.fixture
def audit_log(session_factory, clock):
    return CalculationAuditLog(session_factory, backoff_seconds=0, clock=clock)


class TestRecord:
    @pytest.mark.asyncio
    async def test_assigns_id_timestamp_and_version(self, audit_log, clock):
        record = await audit_log.record(_entry())

        assert len(record.id) == 36
        assert record.calculation_timestamp == clock.now
        assert record.calculation_version == CALCULATION_VERSION

    @pytest.mark.asyncio
    async def test_round_trips_all_fields(self, audit_log):
        written = await audit_log.record(
            _entry(cost_per_km=Decimal("0.683"), request_context={"request_id": "r-1"})
        )

        (stored,) = await audit_log.query()
        assert stored.id == written.id
        assert stored.employee_location == ZURICH
        assert stored.subproject_location == BERN
        assert stored.cost_per_km == Decimal("0.683")
        assert stored.daily_allowance_chf == Decimal("63.75")
        assert stored.distance_km == 93.752
        assert stored.request_context == {"request_id": "r-1"}
        assert stored.calculation_type is CalculationType.TRAVEL_COST

    @pytest.mark.asyncio
    async def test_distance_only_entry(self, audit_log):
        await audit_log.record(
            NewAuditRecord(
                calculation_type=CalculationType.DISTANCE,
                employee_location=ZURICH,
                subproject_location=GENEVA,
                distance_km=224.9,
            )
        )

        (stored,) = await audit_log.query()
        assert stored.employee_id is None
        assert stored.cost_per_km is None
        assert stored.daily_allowance_chf is None

    @pytest.mark.asyncio
    async def test_rejects_negative_distance(self, audit_log):
        with pytest.raises(ValidationError) as exc:
            await audit_log.record(_entry(distance_km=-1))
        assert exc.value.fields == ["distance_km"]


class TestQuery:
    @pytest.mark.asyncio
    async def test_newest_first(self, audit_log, clock):
        ids = []
        for _ in range(4):
            ids.append((await audit_log.record(_entry())).id)
            clock.advance(minutes=1)

        records = await audit_log.query()

        assert [r.id for r in records] == list(reversed(ids))

    @pytest.mark.asyncio
    async def test_equal_timestamps_keep_insertion_order(self, audit_log):
        first = await audit_log.record(_entry())
        second = await audit_log.record(_entry())

        records = await audit_log.query()

        assert [r.id for r in records] == [second.id, first.id]

    @pytest.mark.asyncio
    async def test_filter_by_employee_and_subproject(self, audit_log):
        await audit_log.record(_entry("emp-1", "sub-bern"))
        await audit_log.record(_entry("emp-1", "sub-geneva"))
        await audit_log.record(_entry("emp-2", "sub-bern"))

        by_employee = await audit_log.query(AuditFilters(employee_id="emp-1"))
        by_both = await audit_log.query(
            AuditFilters(employee_id="emp-1", subproject_id="sub-bern")
        )

        assert {r.subproject_id for r in by_employee} == {"sub-bern", "sub-geneva"}
        assert [(r.employee_id, r.subproject_id) for r in by_both] == [
            ("emp-1", "sub-bern")
        ]

    @pytest.mark.asyncio
    async def test_filter_by_date_range_inclusive(self, audit_log, clock):
        start = clock.now
        for _ in range(5):
            await audit_log.record(_entry())
            clock.advance(days=1)

        records = await audit_log.query(
            AuditFilters(
                start_date=start + timedelta(days=1),
                end_date=start + timedelta(days=3),
            )
        )

        assert [r.calculation_timestamp for r in records] == [
            start + timedelta(days=3),
            start + timedelta(days=2),
            start + timedelta(days=1),
        ]

    @pytest.mark.asyncio
    async def test_filter_by_type(self, audit_log):
        await audit_log.record(_entry())
        await audit_log.record(
            _entry(calculation_type=CalculationType.DISTANCE, cost_per_km=None)
        )

        records = await audit_log.query(
            AuditFilters(calculation_type=CalculationType.DISTANCE)
        )

        assert [r.calculation_type for r in records] == [CalculationType.DISTANCE]

    @pytest.mark.asyncio
    async def test_default_limit(self, session_factory, clock):
        audit_log = CalculationAuditLog(
            session_factory, default_limit=3, backoff_seconds=0, clock=clock
        )
        for _ in range(5):
            await audit_log.record(_entry())

        assert len(await audit_log.query()) == 3
        assert len(await audit_log.query(AuditFilters(limit=4))) == 4

    @pytest.mark.asyncio
    async def test_no_match_is_empty(self, audit_log):
        await audit_log.record(_entry())
        assert await audit_log.query(AuditFilters(employee_id="nobody")) == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("limit", [0, -1, 1001, 2.5])
    async def test_limit_out_of_range(self, audit_log, limit):
        with pytest.raises(ValidationError) as exc:
            await audit_log.query(AuditFilters(limit=limit))
        assert exc.value.fields == ["limit"]

    @pytest.mark.asyncio
    async def test_inverted_date_range(self, audit_log, clock):
        with pytest.raises(ValidationError):
            await audit_log.query(
                AuditFilters(start_date=clock.now, end_date=clock.now - timedelta(days=1))
            )


class TestImmutability:
    @pytest.mark.asyncio
    async def test_update_rejected(self, audit_log, session_factory):
        await audit_log.record(_entry())

        async with session_factory() as session:
            row = (await session.execute(select(CalculationAuditModel))).scalar_one()
            row.distance_km = 1.0
            with pytest.raises(AuditRecordImmutable):
                await session.flush()

    @pytest.mark.asyncio
    async def test_delete_rejected(self, audit_log, session_factory):
        await audit_log.record(_entry())

        async with session_factory() as session:
            row = (await session.execute(select(CalculationAuditModel))).scalar_one()
            await session.delete(row)
            with pytest.raises(AuditRecordImmutable):
                await session.flush()


class TestWriteFailure:
    @pytest.mark.asyncio
    async def test_retries_then_raises(self, broken_factory, clock):
        audit_log = CalculationAuditLog(
            broken_factory, attempts=3, backoff_seconds=0, clock=clock
        )

        with pytest.raises(StoreUnavailableError) as exc:
            await audit_log.record(_entry())

        assert exc.value.store == "audit"
        assert broken_factory.calls == 3

    @pytest.mark.asyncio
    async def test_each_attempt_is_bounded_by_timeout(self, clock):
        hanging = HangingSessionFactory(delay=10)
        audit_log = CalculationAuditLog(
            hanging, timeout_seconds=0.05, attempts=2, backoff_seconds=0, clock=clock
        )

        started = time.monotonic()
        with pytest.raises(StoreUnavailableError) as exc:
            await audit_log.record(_entry())

        assert time.monotonic() - started < 2
        assert exc.value.store == "audit"
        assert hanging.calls == 2

    @pytest.mark.asyncio
    async def test_query_failure_raises(self, broken_factory, clock):
        audit_log = CalculationAuditLog(broken_factory, clock=clock)

        with pytest.raises(StoreUnavailableError):
            await audit_log.query()

    @pytest.mark.asyncio
    async def test_retry_after_commit_does_not_duplicate(self, session_factory, clock):
        audit_log = CalculationAuditLog(session_factory, backoff_seconds=0, clock=clock)
        record = await audit_log.record(_entry())

        # A retry of the same write finds the committed row
        again = await audit_log._write(_entry(), record.id, clock.now)

        assert again.id == record.id
        async with session_factory() as session:
            count = await session.scalar(
                select(func.count()).select_from(CalculationAuditModel)
            )
        assert count == 1
