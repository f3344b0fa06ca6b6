from __future__ import annotations
from datetime import date, datetime
from typing import Literal
from uuid import UUID
from pydantic import BaseModel

LeaderboardPeriod = Literal["alltime", "30d"]

class LeaderboardRow(BaseModel):
    rank: int
    user_id: UUID
    handle: str
    name: str
    cohort: str | None = None
    school: str | None = None
    total_points: int
    public_submissions: int
    last_activity_at: datetime | None = None

    model_config = {"from_attributes": True}

class LeaderboardPage(BaseModel):
    period: LeaderboardPeriod
    source: Literal["snapshot", "live"]
    refreshed_at: datetime | None = None
    total: int
    rows: list[LeaderboardRow]

class ActivityMetricRow(BaseModel):
    activity_code: str
    activity_name: str
    total_submissions: int
    pending_submissions: int
    approved_submissions: int
    rejected_submissions: int
    unique_participants: int
    total_points: int
    avg_points: float

    model_config = {"from_attributes": True}

class GroupMetricRow(BaseModel):
    name: str
    user_count: int
    active_users: int
    total_points: int
    avg_points_per_user: float
    approved_submissions: int
    users_with_badges: int

class TimeSeriesRow(BaseModel):
    day: date
    activity_code: str
    submissions: int
    approvals: int
    points_awarded: int
    active_users: int

    model_config = {"from_attributes": True}

class RefreshResult(BaseModel):
    view_name: str
    success: bool
    duration_ms: int
    row_count: int = 0
    error: str | None = None

class StalenessProbe(BaseModel):
    should_refresh: bool
    last_refresh: datetime | None = None
    staleness_minutes: int
