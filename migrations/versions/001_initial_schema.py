"""Distance cache and calculation audit tables.

Revision ID: 001
Create Date: 2026-10-19

``employees``, ``projects`` and ``subprojects`` belong to the travel-request
application and are not created here.
"""

from alembic import op
import sqlalchemy as sa


revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # ── distance_cache ────────────────────────────────────────────────
    op.create_table(
        "distance_cache",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("cache_key", sa.String(64), unique=True, nullable=False),
        sa.Column("point_a", sa.String(32), nullable=False),
        sa.Column("point_b", sa.String(32), nullable=False),
        sa.Column("distance_km", sa.Float, nullable=False),
        sa.Column("computed_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_accessed", sa.DateTime(timezone=True), nullable=False),
        sa.Column("access_count", sa.Integer, default=1, nullable=False),
    )
    op.create_index("idx_distance_cache_point_a", "distance_cache", ["point_a"])
    op.create_index("idx_distance_cache_point_b", "distance_cache", ["point_b"])
    op.create_index("idx_distance_cache_expires", "distance_cache", ["expires_at"])

    # ── calculation_audit ─────────────────────────────────────────────
    op.create_table(
        "calculation_audit",
        sa.Column("seq", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("id", sa.String(36), unique=True, nullable=False),
        sa.Column(
            "calculation_type",
            sa.Enum(
                "DISTANCE", "ALLOWANCE", "TRAVEL_COST", name="calculationtype"
            ),
            nullable=False,
        ),
        sa.Column("employee_id", sa.String(64), nullable=True),
        sa.Column("subproject_id", sa.String(64), nullable=True),
        sa.Column("employee_lat", sa.Float, nullable=False),
        sa.Column("employee_lng", sa.Float, nullable=False),
        sa.Column("subproject_lat", sa.Float, nullable=True),
        sa.Column("subproject_lng", sa.Float, nullable=True),
        sa.Column("cost_per_km", sa.Numeric(10, 4), nullable=True),
        sa.Column("distance_km", sa.Float, nullable=False),
        sa.Column("daily_allowance_chf", sa.Numeric(12, 2), nullable=True),
        sa.Column(
            "calculation_timestamp", sa.DateTime(timezone=True), nullable=False
        ),
        sa.Column(
            "calculation_version",
            sa.String(20),
            server_default="1.0",
            nullable=False,
        ),
        sa.Column("request_context", sa.JSON, nullable=True),
    )
    op.create_index(
        "idx_calculation_audit_employee_subproject",
        "calculation_audit",
        ["employee_id", "subproject_id"],
    )
    op.create_index(
        "idx_calculation_audit_subproject", "calculation_audit", ["subproject_id"]
    )
    op.create_index(
        "idx_calculation_audit_timestamp",
        "calculation_audit",
        ["calculation_timestamp"],
    )
    op.create_index(
        "idx_calculation_audit_type", "calculation_audit", ["calculation_type"]
    )

    # Audit rows are append-only at the database level as well
    op.execute(
        """
        CREATE OR REPLACE FUNCTION reject_calculation_audit_change()
        RETURNS TRIGGER AS $$
        BEGIN
            RAISE EXCEPTION 'calculation_audit is append-only';
        END;
        $$ LANGUAGE plpgsql
        """
    )
    op.execute(
        """
        CREATE TRIGGER calculation_audit_append_only
        BEFORE UPDATE OR DELETE ON calculation_audit
        FOR EACH ROW EXECUTE FUNCTION reject_calculation_audit_change()
        """
    )


def downgrade() -> None:
    op.execute(
        "DROP TRIGGER IF EXISTS calculation_audit_append_only ON calculation_audit"
    )
    op.execute("DROP FUNCTION IF EXISTS reject_calculation_audit_change()")
    op.drop_table("calculation_audit")
    op.drop_table("distance_cache")
    op.execute("DROP TYPE IF EXISTS calculationtype")
