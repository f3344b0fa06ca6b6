from __future__ import annotations
import uuid
from datetime import date, datetime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Text, Integer, Float, Date, DateTime, Uuid
from leaps.db import Base


class AggregateSnapshot(Base):
    """
    Registry of published snapshots, one row per derived view.
    Readers join through snapshot_id; a refresh swaps it in one transaction.
    """
    __tablename__ = "aggregate_snapshots"

    view_name: Mapped[str] = mapped_column(String(64), primary_key=True)
    snapshot_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    refreshed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    row_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    duration_ms: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_attempt_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)


class _LeaderboardColumns:
    snapshot_id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True)
    rank: Mapped[int] = mapped_column(Integer, nullable=False)
    handle: Mapped[str] = mapped_column(String(64), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    cohort: Mapped[str | None] = mapped_column(String(128), nullable=True)
    school: Mapped[str | None] = mapped_column(String(255), nullable=True)
    total_points: Mapped[int] = mapped_column(Integer, nullable=False)
    public_submissions: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_activity_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class LeaderboardTotal(_LeaderboardColumns, Base):
    __tablename__ = "leaderboard_totals"


class Leaderboard30d(_LeaderboardColumns, Base):
    __tablename__ = "leaderboard_30d"


class ActivityMetric(Base):
    __tablename__ = "activity_metrics"

    snapshot_id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True)
    activity_code: Mapped[str] = mapped_column(String(16), primary_key=True)
    activity_name: Mapped[str] = mapped_column(String(128), nullable=False)
    total_submissions: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    pending_submissions: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    approved_submissions: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    rejected_submissions: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    unique_participants: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    avg_points: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)


class _GroupMetricColumns:
    snapshot_id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True)
    user_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    active_users: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    avg_points_per_user: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    approved_submissions: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    users_with_badges: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class CohortMetric(_GroupMetricColumns, Base):
    __tablename__ = "cohort_metrics"

    cohort: Mapped[str] = mapped_column(String(128), primary_key=True)


class SchoolMetric(_GroupMetricColumns, Base):
    __tablename__ = "school_metrics"

    school: Mapped[str] = mapped_column(String(255), primary_key=True)


class TimeSeriesMetric(Base):
    __tablename__ = "time_series_metrics"

    snapshot_id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True)
    day: Mapped[date] = mapped_column(Date, primary_key=True)
    activity_code: Mapped[str] = mapped_column(String(16), primary_key=True)
    submissions: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    approvals: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    points_awarded: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    active_users: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
