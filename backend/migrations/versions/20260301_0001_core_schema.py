from __future__ import annotations
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers
revision = "20260301_0001"
down_revision = None
branch_labels = None
depends_on = None

def _ts(name: str, nullable: bool = False, default: bool = True) -> sa.Column:
    return sa.Column(
        name, sa.TIMESTAMP(timezone=True), server_default=sa.text("now()") if default else None, nullable=nullable
    )

def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("handle", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("email", sa.String(length=320), nullable=False),
        sa.Column("role", sa.String(length=16), nullable=False, server_default="PARTICIPANT"),
        sa.Column("cohort", sa.String(length=128), nullable=True),
        sa.Column("school", sa.String(length=255), nullable=True),
        sa.Column("kajabi_contact_id", sa.String(length=64), nullable=True),
        _ts("created_at"),
        _ts("updated_at"),
    )
    op.create_unique_constraint("uq_users_handle", "users", ["handle"])
    op.create_unique_constraint("uq_users_email", "users", ["email"])
    op.create_unique_constraint("uq_users_kajabi_contact_id", "users", ["kajabi_contact_id"])
    op.create_index("ix_users_cohort", "users", ["cohort"])
    op.create_index("ix_users_school", "users", ["school"])
    op.execute("CREATE INDEX ix_users_email_lower ON users (lower(email))")

    op.create_table(
        "activities",
        sa.Column("code", sa.String(length=16), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("default_points", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("quota", postgresql.JSONB(), nullable=True),
    )

    op.create_table(
        "badges",
        sa.Column("code", sa.String(length=64), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("criteria", postgresql.JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
    )

    op.create_table(
        "earned_badges",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("badge_code", sa.String(length=64), sa.ForeignKey("badges.code"), nullable=False),
        _ts("earned_at"),
    )
    op.create_index("ix_earned_badges_user_id", "earned_badges", ["user_id"])
    op.create_unique_constraint("uq_earned_badges_user_badge", "earned_badges", ["user_id", "badge_code"])

    op.create_table(
        "submissions",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("activity_code", sa.String(length=16), sa.ForeignKey("activities.code"), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="PENDING"),
        sa.Column("visibility", sa.String(length=16), nullable=False, server_default="PRIVATE"),
        sa.Column("payload", postgresql.JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("reviewer_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("review_note", sa.Text(), nullable=True),
        _ts("created_at"),
        _ts("updated_at"),
    )
    op.create_index("ix_submissions_user_id", "submissions", ["user_id"])
    op.create_index("ix_submissions_user_activity", "submissions", ["user_id", "activity_code"])
    op.create_index("ix_submissions_status_created", "submissions", ["status", "created_at"])

    op.create_table(
        "points_ledger",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("activity_code", sa.String(length=16), sa.ForeignKey("activities.code"), nullable=False),
        sa.Column("delta_points", sa.Integer(), nullable=False),
        sa.Column("source", sa.String(length=16), nullable=False),
        sa.Column("external_source", sa.String(length=32), nullable=True),
        sa.Column("external_event_id", sa.String(length=255), nullable=True),
        _ts("event_time"),
        sa.Column("meta", postgresql.JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        _ts("created_at"),
    )
    op.create_unique_constraint("uq_points_ledger_external_event_id", "points_ledger", ["external_event_id"])
    op.create_index("ix_points_ledger_user_event_time", "points_ledger", ["user_id", "event_time"])
    op.create_index("ix_points_ledger_event_time", "points_ledger", ["event_time"])

    op.create_table(
        "audit_log",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("actor_id", sa.String(length=64), nullable=False),
        sa.Column("action", sa.String(length=64), nullable=False),
        sa.Column("target_id", sa.String(length=255), nullable=True),
        sa.Column("meta", postgresql.JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        _ts("created_at"),
    )
    op.create_index("ix_audit_log_actor_created", "audit_log", ["actor_id", "created_at"])
    op.create_index("ix_audit_log_action_created", "audit_log", ["action", "created_at"])
    op.create_index("ix_audit_log_target", "audit_log", ["target_id"])

    op.create_table(
        "external_events",
        sa.Column("id", sa.String(length=255), primary_key=True, nullable=False),
        sa.Column("source", sa.String(length=32), nullable=False, server_default="kajabi"),
        sa.Column("payload", postgresql.JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="received"),
        sa.Column("user_match", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("processed_at", sa.TIMESTAMP(timezone=True), nullable=True),
        _ts("received_at"),
    )
    op.create_index("ix_external_events_status", "external_events", ["status"])

def downgrade() -> None:
    op.drop_index("ix_external_events_status", table_name="external_events")
    op.drop_table("external_events")
    op.drop_index("ix_audit_log_target", table_name="audit_log")
    op.drop_index("ix_audit_log_action_created", table_name="audit_log")
    op.drop_index("ix_audit_log_actor_created", table_name="audit_log")
    op.drop_table("audit_log")
    op.drop_index("ix_points_ledger_event_time", table_name="points_ledger")
    op.drop_index("ix_points_ledger_user_event_time", table_name="points_ledger")
    op.drop_constraint("uq_points_ledger_external_event_id", "points_ledger", type_="unique")
    op.drop_table("points_ledger")
    op.drop_index("ix_submissions_status_created", table_name="submissions")
    op.drop_index("ix_submissions_user_activity", table_name="submissions")
    op.drop_index("ix_submissions_user_id", table_name="submissions")
    op.drop_table("submissions")
    op.drop_constraint("uq_earned_badges_user_badge", "earned_badges", type_="unique")
    op.drop_index("ix_earned_badges_user_id", table_name="earned_badges")
    op.drop_table("earned_badges")
    op.drop_table("badges")
    op.drop_table("activities")
    op.execute("DROP INDEX IF EXISTS ix_users_email_lower")
    op.drop_index("ix_users_school", table_name="users")
    op.drop_index("ix_users_cohort", table_name="users")
    op.drop_constraint("uq_users_kajabi_contact_id", "users", type_="unique")
    op.drop_constraint("uq_users_email", "users", type_="unique")
    op.drop_constraint("uq_users_handle", "users", type_="unique")
    op.drop_table("users")
