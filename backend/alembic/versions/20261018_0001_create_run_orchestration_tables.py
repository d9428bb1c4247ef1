"""Create test run and report tables.

Revision ID: create_run_tables
Revises:
Create Date: 2026-10-18 00:01:00.000000
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision: str = "create_run_tables"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
    ]


def upgrade() -> None:
    op.create_table(
        "test_runs",
        sa.Column("id", postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column("name", sa.String(255), nullable=False, server_default=""),
        sa.Column("status", sa.String(20), nullable=False, server_default="QUEUED"),
        sa.Column("result", sa.String(20), nullable=False, server_default="PENDING"),
        sa.Column("environment", sa.String(100), nullable=False),
        sa.Column("browser_engine", sa.String(20), nullable=False, server_default="CHROMIUM"),
        sa.Column("headless", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("workers", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("tags", sa.JSON(), nullable=True),
        sa.Column("report_path", sa.String(1000), nullable=True),
        sa.Column("log_path", sa.String(1000), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("duration_ms", sa.Integer(), nullable=True),
        sa.Column("exit_code", sa.Integer(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_test_runs_status", "test_runs", ["status"])

    op.create_table(
        "test_run_test_cases",
        sa.Column("id", postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column("test_run_id", postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column("scenario_name", sa.String(500), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("trace_path", sa.String(1000), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["test_run_id"], ["test_runs.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_test_run_test_cases_test_run_id", "test_run_test_cases", ["test_run_id"])

    op.create_table(
        "reports",
        sa.Column("id", postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column("test_run_id", postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column("name", sa.String(500), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("report_path", sa.String(1000), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["test_run_id"], ["test_runs.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_reports_test_run_id", "reports", ["test_run_id"])

    op.create_table(
        "report_features",
        sa.Column("id", postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column("report_id", postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column("name", sa.String(500), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("uri", sa.String(1000), nullable=True),
        sa.Column("line", sa.Integer(), nullable=True),
        sa.Column("keyword", sa.String(50), nullable=True),
        sa.Column("tags", sa.JSON(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["report_id"], ["reports.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "report_scenarios",
        sa.Column("id", postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column("report_feature_id", postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column("name", sa.String(500), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("line", sa.Integer(), nullable=True),
        sa.Column("keyword", sa.String(50), nullable=True),
        sa.Column("type", sa.String(50), nullable=True),
        sa.Column("cucumber_id", sa.String(1000), nullable=True),
        sa.Column("tags", sa.JSON(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["report_feature_id"], ["report_features.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "report_steps",
        sa.Column("id", postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column("report_scenario_id", postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column("keyword", sa.String(20), nullable=False),
        sa.Column("line", sa.Integer(), nullable=True),
        sa.Column("name", sa.String(1000), nullable=False, server_default=""),
        sa.Column("match_location", sa.String(1000), nullable=True),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("duration", sa.BigInteger(), nullable=False, server_default=sa.text("0")),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("error_trace", sa.Text(), nullable=True),
        sa.Column("hidden", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("order", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["report_scenario_id"], ["report_scenarios.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "report_hooks",
        sa.Column("id", postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column("report_scenario_id", postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column("keyword", sa.String(20), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("duration", sa.BigInteger(), nullable=False, server_default=sa.text("0")),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("error_trace", sa.Text(), nullable=True),
        sa.Column("hidden", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("order", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["report_scenario_id"], ["report_scenarios.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )


def downgrade() -> None:
    op.drop_table("report_hooks")
    op.drop_table("report_steps")
    op.drop_table("report_scenarios")
    op.drop_table("report_features")
    op.drop_index("ix_reports_test_run_id", table_name="reports")
    op.drop_table("reports")
    op.drop_index("ix_test_run_test_cases_test_run_id", table_name="test_run_test_cases")
    op.drop_table("test_run_test_cases")
    op.drop_index("ix_test_runs_status", table_name="test_runs")
    op.drop_table("test_runs")
