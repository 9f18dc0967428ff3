"""
Calculation audit log
=====================

Append-only trail of calculations, for compliance and dispute resolution.

Durability policy
-----------------
Audit writes are mandatory.  Each attempt is bounded by ``timeout_seconds``
and retried with exponential backoff up to ``attempts`` times; if all fail,
``StoreUnavailableError`` is raised and the calling calculation fails with
it.  The record id and timestamp are fixed before the first attempt, and a
retry first checks whether an earlier attempt already committed, so a write
that timed out after committing is not duplicated.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime
from typing import Callable

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from travel_cost_engine.domain.entities import (
    AuditFilters,
    AuditRecord,
    NewAuditRecord,
)
from travel_cost_engine.domain.enums import CalculationType
from travel_cost_engine.domain.errors import StoreUnavailableError, ValidationError
from travel_cost_engine.infrastructure.repositories import (
    AuditRepository,
    to_audit_record,
    utcnow,
)
from travel_cost_engine.services.distance_cache import STORE_ERRORS

logger = logging.getLogger(__name__)


class CalculationAuditLog:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        timeout_seconds: float = 5.0,
        attempts: int = 3,
        backoff_seconds: float = 0.2,
        default_limit: int = 50,
        max_limit: int = 1000,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._session_factory = session_factory
        self.timeout_seconds = timeout_seconds
        self.attempts = max(1, attempts)
        self.backoff_seconds = backoff_seconds
        self.default_limit = default_limit
        self.max_limit = max_limit
        self._clock = clock

    async def record(self, entry: NewAuditRecord) -> AuditRecord:
        """Persist *entry*, assigning its id and timestamp."""
        _validate_entry(entry)
        record_id = str(uuid.uuid4())
        timestamp = self._clock()

        last_exc: BaseException | None = None
        for attempt in range(1, self.attempts + 1):
            try:
                return await asyncio.wait_for(
                    self._write(entry, record_id, timestamp),
                    timeout=self.timeout_seconds,
                )
            except STORE_ERRORS as exc:
                last_exc = exc
                logger.warning(
                    "Audit write %s failed (attempt %d/%d): %r",
                    record_id,
                    attempt,
                    self.attempts,
                    exc,
                )
                if attempt < self.attempts:
                    await asyncio.sleep(self.backoff_seconds * 2 ** (attempt - 1))

        logger.error(
            "Audit write %s abandoned after %d attempts", record_id, self.attempts
        )
        raise StoreUnavailableError("audit", repr(last_exc)) from last_exc

    async def query(self, filters: AuditFilters = AuditFilters()) -> list[AuditRecord]:
        """Matching records, newest ``calculation_timestamp`` first."""
        limit = self._resolve_limit(filters.limit)
        if (
            filters.start_date is not None
            and filters.end_date is not None
            and filters.start_date > filters.end_date
        ):
            raise ValidationError(
                "start_date must not be after end_date",
                fields=["start_date", "end_date"],
            )

        try:
            async with self._session_factory() as session:
                rows = await asyncio.wait_for(
                    AuditRepository(session).query(
                        limit=limit,
                        employee_id=filters.employee_id,
                        subproject_id=filters.subproject_id,
                        start_date=filters.start_date,
                        end_date=filters.end_date,
                        calculation_type=filters.calculation_type,
                    ),
                    timeout=self.timeout_seconds,
                )
        except STORE_ERRORS as exc:
            logger.error("Audit query failed: %r", exc)
            raise StoreUnavailableError("audit", repr(exc)) from exc
        return [to_audit_record(row) for row in rows]

    def _resolve_limit(self, limit: int | None) -> int:
        if limit is None:
            return self.default_limit
        if isinstance(limit, bool) or not isinstance(limit, int):
            raise ValidationError("limit must be an integer", fields=["limit"])
        if not 1 <= limit <= self.max_limit:
            raise ValidationError(
                f"limit must be between 1 and {self.max_limit}", fields=["limit"]
            )
        return limit

    async def _write(
        self, entry: NewAuditRecord, record_id: str, timestamp: datetime
    ) -> AuditRecord:
        async with self._session_factory() as session:
            repo = AuditRepository(session)
            row = await repo.get(record_id)
            if row is None:
                row = await repo.append(entry, record_id, timestamp)
                await session.commit()
            else:
                logger.info("Audit write %s already committed", record_id)
            return to_audit_record(row)


def _validate_entry(entry: NewAuditRecord) -> None:
    bad: list[str] = []
    if not isinstance(entry.calculation_type, CalculationType):
        bad.append("calculation_type")
    if entry.distance_km is None or entry.distance_km < 0:
        bad.append("distance_km")
    if entry.cost_per_km is not None and entry.cost_per_km <= 0:
        bad.append("cost_per_km")
    if bad:
        raise ValidationError(f"Invalid audit entry: {', '.join(bad)}", fields=bad)
