from __future__ import annotations
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from leaps.access import AccessContext, require_minimum_role, with_context
from leaps.auth_deps import get_access_context, get_optional_context
from leaps.db import get_session
from leaps.models.user import Role
from leaps.schemas.analytics import (
    ActivityMetricRow, GroupMetricRow, LeaderboardPage, LeaderboardPeriod, RefreshResult, StalenessProbe, TimeSeriesRow,
)
from leaps.services import aggregates

router = APIRouter(tags=["analytics"])

@router.get("/leaderboard", response_model=LeaderboardPage)
async def leaderboard(
    period: LeaderboardPeriod = Query(default="alltime"),
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    cohort: str | None = Query(default=None),
    school: str | None = Query(default=None),
    session: AsyncSession = Depends(get_session),
    ctx: AccessContext | None = Depends(get_optional_context),
):
    return await aggregates.get_leaderboard(
        session, ctx, period=period, limit=limit, offset=offset, cohort=cohort, school=school
    )

@router.get("/metrics/activities", response_model=list[ActivityMetricRow])
async def activity_metrics(session: AsyncSession = Depends(get_session)):
    return await aggregates.get_activity_metrics(session)

@router.get("/metrics/timeseries", response_model=list[TimeSeriesRow])
async def time_series(
    days: int = Query(default=30, ge=1, le=365),
    activity_code: str | None = Query(default=None),
    session: AsyncSession = Depends(get_session),
):
    return await aggregates.get_time_series(session, days=days, activity_code=activity_code)

@router.get("/metrics/cohorts", response_model=list[GroupMetricRow])
async def cohort_metrics(session: AsyncSession = Depends(get_session), ctx: AccessContext = Depends(get_access_context)):
    return await with_context(session, ctx, aggregates.get_cohort_metrics)

@router.get("/metrics/schools", response_model=list[GroupMetricRow])
async def school_metrics(session: AsyncSession = Depends(get_session), ctx: AccessContext = Depends(get_access_context)):
    return await with_context(session, ctx, aggregates.get_school_metrics)

@router.post("/admin/aggregates/refresh", response_model=list[RefreshResult])
async def refresh_views(
    view: str | None = Query(default=None, description="view name, or omit for all"),
    session: AsyncSession = Depends(get_session),
    ctx: AccessContext = Depends(get_access_context),
):
    require_minimum_role(ctx, Role.ADMIN)
    # each view commits on its own connection from the same engine
    factory = async_sessionmaker(session.bind, expire_on_commit=False)
    return await aggregates.refresh(view, session_factory=factory)

@router.get("/admin/aggregates/staleness", response_model=StalenessProbe)
async def staleness(
    view: str | None = Query(default=None),
    session: AsyncSession = Depends(get_session),
    ctx: AccessContext = Depends(get_access_context),
):
    async def op(sess: AsyncSession, c: AccessContext) -> StalenessProbe:
        require_minimum_role(c, Role.ADMIN)
        return await aggregates.should_refresh(sess, view)
    return await with_context(session, ctx, op)
