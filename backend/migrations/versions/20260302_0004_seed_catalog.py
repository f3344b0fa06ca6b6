"""Seed stage catalog and badge definitions

Revision ID: 20260302_0004
Revises: 20260302_0003
"""
from __future__ import annotations
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers
revision = "20260302_0004"
down_revision = "20260302_0003"
branch_labels = None
depends_on = None

ACTIVITIES = [
    {"code": "LEARN", "name": "Learn", "default_points": 20, "quota": None},
    {"code": "EXPLORE", "name": "Explore", "default_points": 50, "quota": None},
    {"code": "AMPLIFY", "name": "Amplify", "default_points": 0, "quota": {"window_days": 7, "peers": 50, "students": 200}},
    {"code": "PRESENT", "name": "Present", "default_points": 20, "quota": None},
    {"code": "SHINE", "name": "Shine", "default_points": 0, "quota": None},
]

BADGES = [
    {
        "code": "STARTER",
        "name": "Starter",
        "description": "Completed both Elevate AI courses",
        "criteria": {"learn_tags": ["elevate-ai-1-completed", "elevate-ai-2-completed"]},
    },
    {
        "code": "IN_CLASS_INNOVATOR",
        "name": "In-Class Innovator",
        "description": "First approved Explore submission",
        "criteria": {"approved_activity": "EXPLORE"},
    },
    {
        "code": "COMMUNITY_VOICE",
        "name": "Community Voice",
        "description": "First approved Present submission",
        "criteria": {"approved_activity": "PRESENT"},
    },
]

def upgrade() -> None:
    activities = sa.table(
        "activities",
        sa.column("code", sa.String),
        sa.column("name", sa.String),
        sa.column("default_points", sa.Integer),
        sa.column("quota", postgresql.JSONB),
    )
    badges = sa.table(
        "badges",
        sa.column("code", sa.String),
        sa.column("name", sa.String),
        sa.column("description", sa.Text),
        sa.column("criteria", postgresql.JSONB),
    )
    op.bulk_insert(activities, ACTIVITIES)
    op.bulk_insert(badges, BADGES)

def downgrade() -> None:
    op.execute("DELETE FROM badges WHERE code IN ('STARTER','IN_CLASS_INNOVATOR','COMMUNITY_VOICE')")
    op.execute("DELETE FROM activities WHERE code IN ('LEARN','EXPLORE','AMPLIFY','PRESENT','SHINE')")
