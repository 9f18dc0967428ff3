"""
SQLAlchemy ORM models.

Tables
------
* ``distance_cache``    -- one row per canonical coordinate pair
* ``calculation_audit`` -- append-only calculation trail
* ``employees`` / ``projects`` / ``subprojects`` -- owned by the surrounding
  travel-request application; mapped here read-only for location lookup

Indexes
-------
* **Unique** on ``distance_cache.cache_key`` (upsert target).
* **B-Tree** on ``point_a`` / ``point_b`` for location invalidation and on
  ``expires_at`` for the expiry sweep.
* **B-Tree** on ``calculation_audit`` (employee, subproject), timestamp and
  type for the audit query filters.
"""

import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    event,
)

from .database import Base
from travel_cost_engine.domain.enums import CALCULATION_VERSION, CalculationType


class AuditRecordImmutable(Exception):
    """Raised when an audit row is about to be updated or deleted."""


class DistanceCacheModel(Base):
    __tablename__ = "distance_cache"

    id = Column(Integer, primary_key=True, autoincrement=True)
    cache_key = Column(String(64), unique=True, nullable=False)
    point_a = Column(String(32), nullable=False)
    point_b = Column(String(32), nullable=False)
    distance_km = Column(Float, nullable=False)

    computed_at = Column(DateTime(timezone=True), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    last_accessed = Column(DateTime(timezone=True), nullable=False)
    access_count = Column(Integer, default=1, nullable=False)

    __table_args__ = (
        Index("idx_distance_cache_point_a", "point_a"),
        Index("idx_distance_cache_point_b", "point_b"),
        Index("idx_distance_cache_expires", "expires_at"),
    )


class CalculationAuditModel(Base):
    __tablename__ = "calculation_audit"

    # surrogate sequence gives a stable tie-break for equal timestamps
    seq = Column(Integer, primary_key=True, autoincrement=True)
    id = Column(
        String(36), unique=True, nullable=False, default=lambda: str(uuid.uuid4())
    )
    calculation_type = Column(Enum(CalculationType), nullable=False)
    employee_id = Column(String(64), nullable=True)
    subproject_id = Column(String(64), nullable=True)

    employee_lat = Column(Float, nullable=False)
    employee_lng = Column(Float, nullable=False)
    subproject_lat = Column(Float, nullable=True)
    subproject_lng = Column(Float, nullable=True)
    cost_per_km = Column(Numeric(10, 4), nullable=True)

    distance_km = Column(Float, nullable=False)
    daily_allowance_chf = Column(Numeric(12, 2), nullable=True)

    calculation_timestamp = Column(DateTime(timezone=True), nullable=False)
    calculation_version = Column(
        String(20), default=CALCULATION_VERSION, nullable=False
    )
    request_context = Column(JSON, nullable=True)

    __table_args__ = (
        Index(
            "idx_calculation_audit_employee_subproject",
            "employee_id",
            "subproject_id",
        ),
        Index("idx_calculation_audit_subproject", "subproject_id"),
        Index("idx_calculation_audit_timestamp", "calculation_timestamp"),
        Index("idx_calculation_audit_type", "calculation_type"),
    )


@event.listens_for(CalculationAuditModel, "before_update")
def _reject_audit_update(mapper, connection, target):
    raise AuditRecordImmutable(f"Audit record {target.id} cannot be updated")


@event.listens_for(CalculationAuditModel, "before_delete")
def _reject_audit_delete(mapper, connection, target):
    raise AuditRecordImmutable(f"Audit record {target.id} cannot be deleted")


# ── Surrounding application (read-only) ───────────────────────────────


class EmployeeModel(Base):
    __tablename__ = "employees"

    id = Column(String(64), primary_key=True)
    home_lat = Column(Float, nullable=True)
    home_lng = Column(Float, nullable=True)


class ProjectModel(Base):
    __tablename__ = "projects"

    id = Column(String(64), primary_key=True)
    default_cost_per_km = Column(Numeric(10, 2), nullable=True)


class SubprojectModel(Base):
    __tablename__ = "subprojects"

    id = Column(String(64), primary_key=True)
    project_id = Column(String(64), ForeignKey("projects.id"), nullable=False)
    location_lat = Column(Float, nullable=True)
    location_lng = Column(Float, nullable=True)
    cost_per_km = Column(Numeric(10, 2), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
