"""Scope ledger external ids by source

Review awards and webhook awards used to share one unique namespace, so a provider
event id could collide with a review award key.

Revision ID: 20260303_0005
Revises: 20260302_0004
"""
from __future__ import annotations
from alembic import op

# revision identifiers
revision = "20260303_0005"
down_revision = "20260302_0004"
branch_labels = None
depends_on = None

def upgrade():
    # review awards written before this revision carry no external_source
    op.execute("ALTER TABLE points_ledger DISABLE TRIGGER trg_points_ledger_append_only")
    op.execute("""
        UPDATE points_ledger SET external_source = 'review'
        WHERE external_source IS NULL
          AND external_event_id LIKE 'submission:%'
          AND source IN ('FORM', 'MANUAL')
    """)
    op.execute("ALTER TABLE points_ledger ENABLE TRIGGER trg_points_ledger_append_only")

    op.drop_constraint("uq_points_ledger_external_event_id", "points_ledger", type_="unique")
    op.create_unique_constraint(
        "uq_points_ledger_external_ref", "points_ledger", ["external_source", "external_event_id"]
    )
    op.create_check_constraint(
        "ck_points_ledger_external_ref_has_source",
        "points_ledger",
        "external_event_id IS NULL OR external_source IS NOT NULL",
    )

def downgrade():
    op.drop_constraint("ck_points_ledger_external_ref_has_source", "points_ledger", type_="check")
    op.drop_constraint("uq_points_ledger_external_ref", "points_ledger", type_="unique")
    op.create_unique_constraint("uq_points_ledger_external_event_id", "points_ledger", ["external_event_id"])
