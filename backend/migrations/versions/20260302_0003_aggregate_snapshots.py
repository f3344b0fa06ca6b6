"""Derived aggregate snapshot tables and their registry

Revision ID: 20260302_0003
Revises: 20260301_0002
"""
from __future__ import annotations
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers
revision = "20260302_0003"
down_revision = "20260301_0002"
branch_labels = None
depends_on = None

VIEWS = (
    "leaderboard_totals",
    "leaderboard_30d",
    "activity_metrics",
    "cohort_metrics",
    "school_metrics",
    "time_series_metrics",
)

def _snapshot_id() -> sa.Column:
    return sa.Column("snapshot_id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False)

def _leaderboard(name: str) -> None:
    op.create_table(
        name,
        _snapshot_id(),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("rank", sa.Integer(), nullable=False),
        sa.Column("handle", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("cohort", sa.String(length=128), nullable=True),
        sa.Column("school", sa.String(length=255), nullable=True),
        sa.Column("total_points", sa.Integer(), nullable=False),
        sa.Column("public_submissions", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_activity_at", sa.TIMESTAMP(timezone=True), nullable=True),
    )
    op.create_index(f"ix_{name}_snapshot_rank", name, ["snapshot_id", "rank"])

def _group(name: str, key: str, length: int) -> None:
    op.create_table(
        name,
        _snapshot_id(),
        sa.Column(key, sa.String(length=length), primary_key=True, nullable=False),
        sa.Column("user_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("active_users", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_points", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("avg_points_per_user", sa.Float(), nullable=False, server_default="0"),
        sa.Column("approved_submissions", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("users_with_badges", sa.Integer(), nullable=False, server_default="0"),
    )

def upgrade() -> None:
    op.create_table(
        "aggregate_snapshots",
        sa.Column("view_name", sa.String(length=64), primary_key=True, nullable=False),
        sa.Column("snapshot_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("refreshed_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("row_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("duration_ms", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_attempt_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
    )
    registry = sa.table(
        "aggregate_snapshots",
        sa.column("view_name", sa.String),
        sa.column("row_count", sa.Integer),
        sa.column("duration_ms", sa.Integer),
    )
    # pre-created so concurrent first refreshes lock an existing row
    op.bulk_insert(registry, [{"view_name": v, "row_count": 0, "duration_ms": 0} for v in VIEWS])

    _leaderboard("leaderboard_totals")
    _leaderboard("leaderboard_30d")

    op.create_table(
        "activity_metrics",
        _snapshot_id(),
        sa.Column("activity_code", sa.String(length=16), primary_key=True, nullable=False),
        sa.Column("activity_name", sa.String(length=128), nullable=False),
        sa.Column("total_submissions", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("pending_submissions", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("approved_submissions", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("rejected_submissions", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("unique_participants", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_points", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("avg_points", sa.Float(), nullable=False, server_default="0"),
    )

    _group("cohort_metrics", "cohort", 128)
    _group("school_metrics", "school", 255)

    op.create_table(
        "time_series_metrics",
        _snapshot_id(),
        sa.Column("day", sa.Date(), primary_key=True, nullable=False),
        sa.Column("activity_code", sa.String(length=16), primary_key=True, nullable=False),
        sa.Column("submissions", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("approvals", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("points_awarded", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("active_users", sa.Integer(), nullable=False, server_default="0"),
    )

def downgrade() -> None:
    op.drop_table("time_series_metrics")
    op.drop_table("school_metrics")
    op.drop_table("cohort_metrics")
    op.drop_table("activity_metrics")
    op.drop_index("ix_leaderboard_30d_snapshot_rank", table_name="leaderboard_30d")
    op.drop_table("leaderboard_30d")
    op.drop_index("ix_leaderboard_totals_snapshot_rank", table_name="leaderboard_totals")
    op.drop_table("leaderboard_totals")
    op.drop_table("aggregate_snapshots")
