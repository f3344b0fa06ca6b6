from __future__ import annotations
import time
import uuid
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Awaitable, Callable
import structlog
from sqlalchemy import and_, case, delete, func, insert, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from leaps.access import AccessContext, can_access_cohort, can_access_school, require_cohort_access, require_context, require_school_access
from leaps.config import settings
from leaps.db import SessionLocal, atomic, aware, utcnow
from leaps.errors import ValidationFailed
from leaps.models.activity import Activity
from leaps.models.aggregates import (
    AggregateSnapshot,
    ActivityMetric,
    CohortMetric,
    Leaderboard30d,
    LeaderboardTotal,
    SchoolMetric,
    TimeSeriesMetric,
)
from leaps.models.badge import EarnedBadge
from leaps.models.ledger import PointsLedger
from leaps.models.submission import Submission, SubmissionStatus, Visibility
from leaps.models.user import User
from leaps.schemas.analytics import (
    ActivityMetricRow,
    GroupMetricRow,
    LeaderboardPage,
    LeaderboardRow,
    RefreshResult,
    StalenessProbe,
    TimeSeriesRow,
)

log = structlog.get_logger()

LEADERBOARD_TOTALS = "leaderboard_totals"
LEADERBOARD_30D = "leaderboard_30d"
ACTIVITY_METRICS = "activity_metrics"
COHORT_METRICS = "cohort_metrics"
SCHOOL_METRICS = "school_metrics"
TIME_SERIES_METRICS = "time_series_metrics"

NO_COHORT = "No Cohort"
NO_SCHOOL = "No School"

# ---------- builders: source tables -> rows ----------

def _rank_key(row: dict[str, Any]):
    ts = aware(row["last_activity_at"])
    return (-row["total_points"], -ts.timestamp() if ts else float("inf"), str(row["user_id"]))

async def compute_leaderboard(session: AsyncSession, *, since: datetime | None = None) -> list[dict[str, Any]]:
    """
    Per-user ledger totals, ordered by points then most recent activity.
    `since` bounds event_time inclusively.
    """
    totals = select(
        PointsLedger.user_id.label("user_id"),
        func.sum(PointsLedger.delta_points).label("total_points"),
        func.max(PointsLedger.event_time).label("last_activity_at"),
    ).group_by(PointsLedger.user_id)
    pubs = select(Submission.user_id.label("user_id"), func.count().label("n")).where(
        Submission.status == SubmissionStatus.APPROVED, Submission.visibility == Visibility.PUBLIC
    ).group_by(Submission.user_id)
    if since is not None:
        totals = totals.where(PointsLedger.event_time >= since)
        pubs = pubs.where(Submission.updated_at >= since)
    totals = totals.subquery()
    pubs = pubs.subquery()

    rows = (await session.execute(
        select(
            User.id, User.handle, User.name, User.cohort, User.school,
            totals.c.total_points, totals.c.last_activity_at, func.coalesce(pubs.c.n, 0),
        )
        .join(totals, totals.c.user_id == User.id)
        .outerjoin(pubs, pubs.c.user_id == User.id)
    )).all()

    out = [
        {
            "user_id": uid,
            "handle": handle,
            "name": name,
            "cohort": cohort,
            "school": school,
            "total_points": int(total or 0),
            "public_submissions": int(n or 0),
            "last_activity_at": aware(last),
        }
        for (uid, handle, name, cohort, school, total, last, n) in rows
    ]
    out.sort(key=_rank_key)
    for i, r in enumerate(out, start=1):
        r["rank"] = i
    return out

async def _build_leaderboard_totals(session: AsyncSession, now: datetime) -> list[dict[str, Any]]:
    return await compute_leaderboard(session)

async def _build_leaderboard_30d(session: AsyncSession, now: datetime) -> list[dict[str, Any]]:
    return await compute_leaderboard(session, since=now - timedelta(days=settings.leaderboard_window_days))

async def _build_activity_metrics(session: AsyncSession, now: datetime) -> list[dict[str, Any]]:
    activities = (await session.execute(select(Activity).order_by(Activity.code))).scalars().all()
    subs = {
        code: (total, pending, approved, rejected, users)
        for (code, total, pending, approved, rejected, users) in (await session.execute(
            select(
                Submission.activity_code,
                func.count(),
                func.sum(case((Submission.status == SubmissionStatus.PENDING, 1), else_=0)),
                func.sum(case((Submission.status == SubmissionStatus.APPROVED, 1), else_=0)),
                func.sum(case((Submission.status == SubmissionStatus.REJECTED, 1), else_=0)),
                func.count(func.distinct(Submission.user_id)),
            ).group_by(Submission.activity_code)
        )).all()
    }
    points = {
        code: (total, n)
        for (code, total, n) in (await session.execute(
            select(PointsLedger.activity_code, func.sum(PointsLedger.delta_points), func.count())
            .group_by(PointsLedger.activity_code)
        )).all()
    }
    out = []
    for a in activities:
        total, pending, approved, rejected, users = subs.get(a.code, (0, 0, 0, 0, 0))
        pts, n = points.get(a.code, (0, 0))
        out.append({
            "activity_code": a.code,
            "activity_name": a.name,
            "total_submissions": int(total or 0),
            "pending_submissions": int(pending or 0),
            "approved_submissions": int(approved or 0),
            "rejected_submissions": int(rejected or 0),
            "unique_participants": int(users or 0),
            "total_points": int(pts or 0),
            "avg_points": round(int(pts or 0) / n, 2) if n else 0.0,
        })
    return out

async def _group_metrics(session: AsyncSession, column, unassigned: str, key: str) -> list[dict[str, Any]]:
    # group on the bare column and label NULL afterwards; a bound default inside GROUP BY trips postgres
    def label(g):
        return g if g is not None else unassigned

    users = {
        label(g): n
        for (g, n) in (await session.execute(select(column, func.count()).select_from(User).group_by(column))).all()
    }
    points = {
        label(g): (total, active)
        for (g, total, active) in (await session.execute(
            select(column, func.sum(PointsLedger.delta_points), func.count(func.distinct(PointsLedger.user_id)))
            .join(User, User.id == PointsLedger.user_id)
            .group_by(column)
        )).all()
    }
    approved = {
        label(g): n
        for (g, n) in (await session.execute(
            select(column, func.count())
            .select_from(Submission)
            .join(User, User.id == Submission.user_id)
            .where(Submission.status == SubmissionStatus.APPROVED)
            .group_by(column)
        )).all()
    }
    badged = {
        label(g): n
        for (g, n) in (await session.execute(
            select(column, func.count(func.distinct(EarnedBadge.user_id)))
            .select_from(EarnedBadge)
            .join(User, User.id == EarnedBadge.user_id)
            .group_by(column)
        )).all()
    }

    out = []
    for g in sorted(users):
        total, active = points.get(g, (0, 0))
        count = int(users[g] or 0)
        out.append({
            key: g,
            "user_count": count,
            "active_users": int(active or 0),
            "total_points": int(total or 0),
            "avg_points_per_user": round(int(total or 0) / count, 2) if count else 0.0,
            "approved_submissions": int(approved.get(g, 0) or 0),
            "users_with_badges": int(badged.get(g, 0) or 0),
        })
    return out

async def _build_cohort_metrics(session: AsyncSession, now: datetime) -> list[dict[str, Any]]:
    return await _group_metrics(session, User.cohort, NO_COHORT, "cohort")

async def _build_school_metrics(session: AsyncSession, now: datetime) -> list[dict[str, Any]]:
    return await _group_metrics(session, User.school, NO_SCHOOL, "school")

def _as_date(value) -> date:
    # date() comes back as a string on sqlite
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])

async def _build_time_series(session: AsyncSession, now: datetime) -> list[dict[str, Any]]:
    since = now - timedelta(days=settings.time_series_days)
    sub_day = func.date(Submission.created_at)
    led_day = func.date(PointsLedger.event_time)

    buckets: dict[tuple[date, str], dict[str, Any]] = {}

    def bucket(day, code: str) -> dict[str, Any]:
        k = (_as_date(day), code)
        if k not in buckets:
            buckets[k] = {"day": k[0], "activity_code": code, "submissions": 0, "approvals": 0, "points_awarded": 0, "active_users": 0}
        return buckets[k]

    for day, code, n, approved in (await session.execute(
        select(sub_day, Submission.activity_code, func.count(),
               func.sum(case((Submission.status == SubmissionStatus.APPROVED, 1), else_=0)))
        .where(Submission.created_at >= since)
        .group_by(sub_day, Submission.activity_code)
    )).all():
        b = bucket(day, code)
        b["submissions"] = int(n or 0)
        b["approvals"] = int(approved or 0)

    for day, code, pts, users in (await session.execute(
        select(led_day, PointsLedger.activity_code, func.sum(PointsLedger.delta_points),
               func.count(func.distinct(PointsLedger.user_id)))
        .where(PointsLedger.event_time >= since)
        .group_by(led_day, PointsLedger.activity_code)
    )).all():
        b = bucket(day, code)
        b["points_awarded"] = int(pts or 0)
        b["active_users"] = int(users or 0)

    return [buckets[k] for k in sorted(buckets)]

# ---------- view registry ----------

@dataclass(frozen=True)
class ViewDef:
    name: str
    model: type
    build: Callable[[AsyncSession, datetime], Awaitable[list[dict[str, Any]]]]

VIEWS: dict[str, ViewDef] = {
    v.name: v
    for v in (
        ViewDef(LEADERBOARD_TOTALS, LeaderboardTotal, _build_leaderboard_totals),
        ViewDef(LEADERBOARD_30D, Leaderboard30d, _build_leaderboard_30d),
        ViewDef(ACTIVITY_METRICS, ActivityMetric, _build_activity_metrics),
        ViewDef(COHORT_METRICS, CohortMetric, _build_cohort_metrics),
        ViewDef(SCHOOL_METRICS, SchoolMetric, _build_school_metrics),
        ViewDef(TIME_SERIES_METRICS, TimeSeriesMetric, _build_time_series),
    )
}
VIEW_NAMES = tuple(VIEWS)

def _resolve_views(view_name: str | None) -> list[ViewDef]:
    if view_name is None or view_name == "all":
        return list(VIEWS.values())
    if view_name not in VIEWS:
        raise ValidationFailed(f"Unknown view: {view_name}", details={"allowed": list(VIEW_NAMES)})
    return [VIEWS[view_name]]

# ---------- refresh ----------

async def _lock_registry(session: AsyncSession, view_name: str) -> AggregateSnapshot:
    """Serializes refreshes of one view. Readers never take this lock."""
    reg = await session.get(AggregateSnapshot, view_name, with_for_update=True, populate_existing=True)
    if reg is None:
        reg = AggregateSnapshot(view_name=view_name, row_count=0, duration_ms=0)
        session.add(reg)
        await session.flush()
    return reg

async def _record_failure(factory: async_sessionmaker, view_name: str, error: str, now: datetime) -> None:
    try:
        async with factory() as session:
            async with session.begin():
                reg = await _lock_registry(session, view_name)
                reg.last_attempt_at = now
                reg.last_error = error[:2000]
    except SQLAlchemyError:
        log.exception("aggregate_failure_not_recorded", view_name=view_name)

async def _refresh_one(factory: async_sessionmaker, view: ViewDef, now: datetime) -> RefreshResult:
    started = time.perf_counter()
    try:
        async with factory() as session:
            async with session.begin():
                reg = await _lock_registry(session, view.name)
                rows = await view.build(session, now)
                snapshot_id = uuid.uuid4()
                if rows:
                    await session.execute(insert(view.model), [{**r, "snapshot_id": snapshot_id} for r in rows])
                await session.execute(
                    delete(view.model)
                    .where(view.model.snapshot_id != snapshot_id)
                    .execution_options(synchronize_session=False)
                )
                duration_ms = int((time.perf_counter() - started) * 1000)
                reg.snapshot_id = snapshot_id
                reg.refreshed_at = now
                reg.row_count = len(rows)
                reg.duration_ms = duration_ms
                reg.last_attempt_at = now
                reg.last_error = None
    except Exception as e:
        # previous snapshot stays published; report instead of raising so the other views still run
        duration_ms = int((time.perf_counter() - started) * 1000)
        log.exception("aggregate_refresh_failed", view_name=view.name, duration_ms=duration_ms)
        await _record_failure(factory, view.name, f"{type(e).__name__}: {e}", now)
        return RefreshResult(view_name=view.name, success=False, duration_ms=duration_ms, error=str(e))

    log.info("aggregate_refreshed", view_name=view.name, rows=len(rows), duration_ms=duration_ms)
    return RefreshResult(view_name=view.name, success=True, duration_ms=duration_ms, row_count=len(rows))

async def refresh(
    view_name: str | None = None,
    *,
    session_factory: async_sessionmaker | None = None,
    now: datetime | None = None,
) -> list[RefreshResult]:
    """
    Rebuild one view (or all of them) and publish the new snapshot atomically.
    Each view runs in its own transaction, so one failure does not block the rest.
    """
    views = _resolve_views(view_name)
    factory = session_factory or SessionLocal
    now = now or utcnow()
    return [await _refresh_one(factory, v, now) for v in views]

# ---------- staleness ----------

async def should_refresh(
    session: AsyncSession,
    view_name: str | None = None,
    *,
    threshold_minutes: int | None = None,
    now: datetime | None = None,
) -> StalenessProbe:
    """
    A view that was never published always needs a refresh.
    Without a view name the oldest published snapshot decides.
    """
    names = [v.name for v in _resolve_views(view_name)]
    threshold = settings.aggregate_staleness_minutes if threshold_minutes is None else threshold_minutes
    now = now or utcnow()
    async with atomic(session):
        regs = (await session.execute(
            select(AggregateSnapshot).where(AggregateSnapshot.view_name.in_(names))
        )).scalars().all()
    published = {r.view_name: aware(r.refreshed_at) for r in regs if r.snapshot_id is not None and r.refreshed_at}
    if any(n not in published for n in names):
        return StalenessProbe(should_refresh=True, last_refresh=None, staleness_minutes=0)
    last = min(published.values())
    age = now - last
    return StalenessProbe(
        should_refresh=age > timedelta(minutes=threshold),
        last_refresh=last,
        staleness_minutes=max(0, int(age.total_seconds() // 60)),
    )

# ---------- reads ----------

def _snapshot_query(view: ViewDef, *columns):
    """
    Rows of the currently published snapshot, resolved in the same statement as the pointer.
    Anything else the caller reports (refreshed_at, totals) goes into `columns` so a
    concurrent swap is seen whole or not at all.
    """
    return select(view.model, *columns).join(
        AggregateSnapshot,
        and_(AggregateSnapshot.view_name == view.name, AggregateSnapshot.snapshot_id == view.model.snapshot_id),
    )

def _empty_snapshot_head(view: ViewDef, *conditions):
    """refreshed_at and matching row count in one statement, for pages that came back empty."""
    matching = (
        select(func.count())
        .select_from(view.model)
        .where(view.model.snapshot_id == AggregateSnapshot.snapshot_id, *conditions)
        .scalar_subquery()
    )
    return select(AggregateSnapshot.refreshed_at, matching).where(AggregateSnapshot.view_name == view.name)

def _row_dict(obj) -> dict[str, Any]:
    return {c.key: getattr(obj, c.key) for c in obj.__table__.columns if c.key != "snapshot_id"}

async def _published_registry(
    session: AsyncSession, view: ViewDef, max_staleness_minutes: int | None, now: datetime | None
) -> AggregateSnapshot | None:
    """Registry row if its snapshot is usable, else None (caller falls back to live aggregation)."""
    reg = await session.get(AggregateSnapshot, view.name, populate_existing=True)
    if reg is None or reg.snapshot_id is None or reg.refreshed_at is None:
        return None
    if max_staleness_minutes is not None:
        age = (now or utcnow()) - aware(reg.refreshed_at)
        if age > timedelta(minutes=max_staleness_minutes):
            return None
    return reg

async def _read_view(
    session: AsyncSession,
    view_name: str,
    *,
    max_staleness_minutes: int | None = None,
    now: datetime | None = None,
) -> tuple[list[dict[str, Any]], str, datetime | None]:
    view = VIEWS[view_name]
    async with atomic(session):
        reg = await _published_registry(session, view, max_staleness_minutes, now)
        if reg is not None:
            result = (await session.execute(_snapshot_query(view, AggregateSnapshot.refreshed_at))).all()
            if not result:
                refreshed_at, _ = (await session.execute(_empty_snapshot_head(view))).one()
                return [], "snapshot", aware(refreshed_at)
            return [_row_dict(obj) for obj, _ in result], "snapshot", aware(result[0][1])
        log.info("aggregate_live_fallback", view_name=view_name)
        return await view.build(session, now or utcnow()), "live", None

async def get_leaderboard(
    session: AsyncSession,
    ctx: AccessContext | None = None,
    *,
    period: str = "alltime",
    limit: int = 50,
    offset: int = 0,
    cohort: str | None = None,
    school: str | None = None,
    max_staleness_minutes: int | None = None,
    now: datetime | None = None,
) -> LeaderboardPage:
    """Public board; narrowing to a cohort or school requires access to it."""
    if period not in ("alltime", "30d"):
        raise ValidationFailed("period must be 'alltime' or '30d'")
    if cohort is not None:
        require_cohort_access(ctx, cohort)
    if school is not None:
        require_school_access(ctx, school)
    view = VIEWS[LEADERBOARD_TOTALS if period == "alltime" else LEADERBOARD_30D]
    limit = max(1, min(limit, 500))
    offset = max(0, offset)
    async with atomic(session):
        return await _leaderboard_page(
            session, view, period, limit, offset, cohort, school, max_staleness_minutes, now
        )

async def _leaderboard_page(
    session: AsyncSession,
    view: ViewDef,
    period: str,
    limit: int,
    offset: int,
    cohort: str | None,
    school: str | None,
    max_staleness_minutes: int | None,
    now: datetime | None,
) -> LeaderboardPage:
    reg = await _published_registry(session, view, max_staleness_minutes, now)
    if reg is not None:
        model = view.model
        conditions = []
        if cohort is not None:
            conditions.append(model.cohort == cohort)
        if school is not None:
            conditions.append(model.school == school)
        # total is a window over the filtered set, computed before LIMIT/OFFSET in the same statement
        q = _snapshot_query(view, AggregateSnapshot.refreshed_at, func.count().over())
        if conditions:
            q = q.where(*conditions)
        result = (await session.execute(q.order_by(model.rank).limit(limit).offset(offset))).all()
        if result:
            refreshed_at, total = result[0][1], result[0][2]
        else:
            refreshed_at, total = (await session.execute(_empty_snapshot_head(view, *conditions))).one()
        return LeaderboardPage(
            period=period,
            source="snapshot",
            refreshed_at=aware(refreshed_at),
            total=int(total or 0),
            rows=[LeaderboardRow.model_validate(obj) for obj, _, _ in result],
        )

    log.info("aggregate_live_fallback", view_name=view.name)
    rows = await view.build(session, now or utcnow())
    if cohort is not None:
        rows = [r for r in rows if r["cohort"] == cohort]
    if school is not None:
        rows = [r for r in rows if r["school"] == school]
    return LeaderboardPage(
        period=period,
        source="live",
        total=len(rows),
        rows=[LeaderboardRow(**r) for r in rows[offset:offset + limit]],
    )

async def get_activity_metrics(
    session: AsyncSession, *, max_staleness_minutes: int | None = None, now: datetime | None = None
) -> list[ActivityMetricRow]:
    rows, _, _ = await _read_view(session, ACTIVITY_METRICS, max_staleness_minutes=max_staleness_minutes, now=now)
    return [ActivityMetricRow(**r) for r in sorted(rows, key=lambda r: r["activity_code"])]

async def get_cohort_metrics(
    session: AsyncSession, ctx: AccessContext | None, *, max_staleness_minutes: int | None = None, now: datetime | None = None
) -> list[GroupMetricRow]:
    """Admins see every cohort; everyone else only their own."""
    ctx = require_context(ctx)
    rows, _, _ = await _read_view(session, COHORT_METRICS, max_staleness_minutes=max_staleness_minutes, now=now)
    return [
        GroupMetricRow(name=r["cohort"], **{k: v for k, v in r.items() if k != "cohort"})
        for r in sorted(rows, key=lambda r: r["cohort"])
        if can_access_cohort(ctx, r["cohort"])
    ]

async def get_school_metrics(
    session: AsyncSession, ctx: AccessContext | None, *, max_staleness_minutes: int | None = None, now: datetime | None = None
) -> list[GroupMetricRow]:
    ctx = require_context(ctx)
    rows, _, _ = await _read_view(session, SCHOOL_METRICS, max_staleness_minutes=max_staleness_minutes, now=now)
    return [
        GroupMetricRow(name=r["school"], **{k: v for k, v in r.items() if k != "school"})
        for r in sorted(rows, key=lambda r: r["school"])
        if can_access_school(ctx, r["school"])
    ]

async def get_time_series(
    session: AsyncSession,
    *,
    days: int | None = None,
    activity_code: str | None = None,
    max_staleness_minutes: int | None = None,
    now: datetime | None = None,
) -> list[TimeSeriesRow]:
    now = now or utcnow()
    rows, _, _ = await _read_view(session, TIME_SERIES_METRICS, max_staleness_minutes=max_staleness_minutes, now=now)
    start = (now - timedelta(days=days)).date() if days else None
    out = [
        TimeSeriesRow(**r)
        for r in rows
        if (activity_code is None or r["activity_code"] == activity_code.upper())
        and (start is None or _as_date(r["day"]) >= start)
    ]
    return sorted(out, key=lambda r: (r.day, r.activity_code))
