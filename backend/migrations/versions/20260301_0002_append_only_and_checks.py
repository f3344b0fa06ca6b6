"""Append-only guards for points_ledger / audit_log, value checks

Revision ID: 20260301_0002
Revises: 20260301_0001
"""
from __future__ import annotations
from alembic import op

# revision identifiers
revision = "20260301_0002"
down_revision = "20260301_0001"
branch_labels = None
depends_on = None

def upgrade() -> None:
    op.execute("""
        ALTER TABLE users
        ADD CONSTRAINT ck_users_role
        CHECK (role IN ('PARTICIPANT','REVIEWER','ADMIN','SUPERADMIN'))
    """)
    op.execute("""
        ALTER TABLE submissions
        ADD CONSTRAINT ck_submissions_status CHECK (status IN ('PENDING','APPROVED','REJECTED')),
        ADD CONSTRAINT ck_submissions_visibility CHECK (visibility IN ('PRIVATE','PUBLIC'))
    """)
    op.execute("""
        ALTER TABLE points_ledger
        ADD CONSTRAINT ck_points_ledger_source CHECK (source IN ('FORM','WEBHOOK','MANUAL')),
        ADD CONSTRAINT ck_points_ledger_award_non_negative CHECK (source = 'MANUAL' OR delta_points >= 0)
    """)

    # rows in these tables are history; refuse UPDATE and DELETE at the database too
    op.execute("""
        CREATE OR REPLACE FUNCTION forbid_append_only_mutation() RETURNS trigger AS $$
        BEGIN
            RAISE EXCEPTION '% rows are append-only', TG_TABLE_NAME USING ERRCODE = 'integrity_constraint_violation';
        END;
        $$ LANGUAGE plpgsql
    """)
    for table in ("points_ledger", "audit_log"):
        op.execute(f"""
            CREATE TRIGGER trg_{table}_append_only
            BEFORE UPDATE OR DELETE ON {table}
            FOR EACH ROW EXECUTE FUNCTION forbid_append_only_mutation()
        """)

    # Submission terminal states are final
    op.execute("""
        CREATE OR REPLACE FUNCTION forbid_submission_reopen() RETURNS trigger AS $$
        BEGIN
            IF OLD.status <> 'PENDING' AND NEW.status IS DISTINCT FROM OLD.status THEN
                RAISE EXCEPTION 'submission % is already %', OLD.id, OLD.status
                    USING ERRCODE = 'integrity_constraint_violation';
            END IF;
            RETURN NEW;
        END;
        $$ LANGUAGE plpgsql
    """)
    op.execute("""
        CREATE TRIGGER trg_submissions_monotonic_status
        BEFORE UPDATE ON submissions
        FOR EACH ROW EXECUTE FUNCTION forbid_submission_reopen()
    """)

def downgrade() -> None:
    op.execute("DROP TRIGGER IF EXISTS trg_submissions_monotonic_status ON submissions")
    op.execute("DROP FUNCTION IF EXISTS forbid_submission_reopen()")
    for table in ("points_ledger", "audit_log"):
        op.execute(f"DROP TRIGGER IF EXISTS trg_{table}_append_only ON {table}")
    op.execute("DROP FUNCTION IF EXISTS forbid_append_only_mutation()")
    op.execute("ALTER TABLE points_ledger DROP CONSTRAINT IF EXISTS ck_points_ledger_award_non_negative")
    op.execute("ALTER TABLE points_ledger DROP CONSTRAINT IF EXISTS ck_points_ledger_source")
    op.execute("ALTER TABLE submissions DROP CONSTRAINT IF EXISTS ck_submissions_visibility")
    op.execute("ALTER TABLE submissions DROP CONSTRAINT IF EXISTS ck_submissions_status")
    op.execute("ALTER TABLE users DROP CONSTRAINT IF EXISTS ck_users_role")
