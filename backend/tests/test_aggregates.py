from datetime import timedelta
import pytest
from sqlalchemy import select, func

from leaps.db import aware
from leaps.errors import AuthorizationError, Unauthenticated, ValidationFailed
from leaps.models.aggregates import AggregateSnapshot, LeaderboardTotal
from leaps.models.ledger import PointsLedger
from leaps.models.user import Role
from leaps.services import aggregates
from leaps.services.aggregates import (
    ViewDef,
    get_activity_metrics,
    get_cohort_metrics,
    get_leaderboard,
    get_time_series,
    refresh,
    should_refresh,
)


@pytest.mark.asyncio
async def test_leaderboard_ranks_by_total(session, session_factory, make_user, give_points, now):
    a, b, c = await make_user(), await make_user(), await make_user()
    await give_points(a, 100, at=now - timedelta(days=3))
    await give_points(a, 6, at=now - timedelta(days=2))
    await give_points(b, 70, at=now - timedelta(days=1))
    await give_points(c, 20, at=now)

    results = await refresh("leaderboard_totals", session_factory=session_factory, now=now)
    assert [(r.view_name, r.success, r.row_count) for r in results] == [("leaderboard_totals", True, 3)]

    page = await get_leaderboard(session)
    assert page.source == "snapshot"
    assert [(r.user_id, r.rank, r.total_points) for r in page.rows] == [(a.id, 1, 106), (b.id, 2, 70), (c.id, 3, 20)]


@pytest.mark.asyncio
async def test_leaderboard_totals_match_ledger_sums(session, session_factory, make_user, give_points, now):
    users = [await make_user() for _ in range(4)]
    for i, u in enumerate(users):
        await give_points(u, 10 * (i + 1), at=now - timedelta(days=i))
        await give_points(u, -3, at=now - timedelta(hours=i))
    await refresh(session_factory=session_factory, now=now)

    async with session_factory() as s:
        sums = dict((await s.execute(
            select(PointsLedger.user_id, func.sum(PointsLedger.delta_points)).group_by(PointsLedger.user_id)
        )).all())
    page = await get_leaderboard(session, limit=100)
    assert {r.user_id: r.total_points for r in page.rows} == sums


@pytest.mark.asyncio
async def test_ties_break_on_latest_activity(session, session_factory, make_user, give_points, now):
    early, late = await make_user(), await make_user()
    await give_points(early, 50, at=now - timedelta(days=5))
    await give_points(late, 50, at=now - timedelta(days=1))
    await refresh("leaderboard_totals", session_factory=session_factory, now=now)

    page = await get_leaderboard(session)
    assert [r.user_id for r in page.rows] == [late.id, early.id]


@pytest.mark.asyncio
async def test_thirty_day_window_is_inclusive(session, session_factory, make_user, give_points, now):
    edge, outside = await make_user(), await make_user()
    await give_points(edge, 40, at=now - timedelta(days=30))
    await give_points(outside, 90, at=now - timedelta(days=30, seconds=1))
    await refresh("leaderboard_30d", session_factory=session_factory, now=now)

    page = await get_leaderboard(session, period="30d")
    assert [(r.user_id, r.total_points) for r in page.rows] == [(edge.id, 40)]


@pytest.mark.asyncio
async def test_readers_see_published_snapshot_until_next_refresh(session, session_factory, make_user, give_points, now):
    u = await make_user()
    await give_points(u, 10, at=now)
    await refresh("leaderboard_totals", session_factory=session_factory, now=now)
    await give_points(u, 5, at=now)

    assert (await get_leaderboard(session)).rows[0].total_points == 10

    await refresh("leaderboard_totals", session_factory=session_factory, now=now)
    assert (await get_leaderboard(session)).rows[0].total_points == 15

    # superseded rows are gone
    async with session_factory() as s:
        assert await s.scalar(select(func.count()).select_from(LeaderboardTotal)) == 1


@pytest.mark.asyncio
async def test_page_reports_the_snapshot_its_rows_came_from(session, session_factory, make_user, give_points, now, monkeypatch):
    for pts in (30, 20, 10):
        await give_points(await make_user(), pts, at=now)
    await refresh("leaderboard_totals", session_factory=session_factory, now=now)
    async with session_factory() as s:
        published = (await s.get(AggregateSnapshot, "leaderboard_totals")).refreshed_at

    # registry read earlier in the request than the rows, with an older timestamp
    real = aggregates._published_registry

    async def earlier_registry(sess, view, max_staleness_minutes, at):
        reg = await real(sess, view, max_staleness_minutes, at)
        if reg is None:
            return None
        return AggregateSnapshot(view_name=reg.view_name, snapshot_id=reg.snapshot_id, refreshed_at=now - timedelta(days=1))

    monkeypatch.setattr(aggregates, "_published_registry", earlier_registry)

    page = await get_leaderboard(session, limit=1, offset=2)
    assert page.source == "snapshot"
    assert page.refreshed_at == aware(published)
    assert page.total == 3
    assert [r.total_points for r in page.rows] == [10]

    past_end = await get_leaderboard(session, limit=10, offset=5)
    assert past_end.rows == []
    assert past_end.total == 3
    assert past_end.refreshed_at == aware(published)


@pytest.mark.asyncio
async def test_live_fallback_without_snapshot(session, make_user, give_points, now):
    u = await make_user()
    await give_points(u, 12, at=now)
    page = await get_leaderboard(session)
    assert page.source == "live"
    assert page.rows[0].total_points == 12
    assert page.rows[0].rank == 1


@pytest.mark.asyncio
async def test_stale_snapshot_falls_back_when_caller_demands_freshness(session, session_factory, make_user, give_points, now):
    u = await make_user()
    await give_points(u, 10, at=now - timedelta(hours=1))
    await refresh("leaderboard_totals", session_factory=session_factory, now=now - timedelta(minutes=30))
    await give_points(u, 1, at=now)

    assert (await get_leaderboard(session)).rows[0].total_points == 10
    fresh = await get_leaderboard(session, max_staleness_minutes=15, now=now)
    assert fresh.source == "live"
    assert fresh.rows[0].total_points == 11


@pytest.mark.asyncio
async def test_failed_refresh_keeps_previous_snapshot(session, session_factory, make_user, give_points, now, monkeypatch):
    u = await make_user()
    await give_points(u, 10, at=now)
    await refresh("leaderboard_totals", session_factory=session_factory, now=now)
    await give_points(u, 5, at=now)

    async def broken(session, now):
        raise RuntimeError("aggregation blew up")

    monkeypatch.setitem(aggregates.VIEWS, "leaderboard_totals", ViewDef("leaderboard_totals", LeaderboardTotal, broken))
    results = await refresh("leaderboard_totals", session_factory=session_factory, now=now + timedelta(minutes=20))
    assert results[0].success is False
    assert "blew up" in results[0].error

    assert (await get_leaderboard(session)).rows[0].total_points == 10
    async with session_factory() as s:
        reg = await s.get(AggregateSnapshot, "leaderboard_totals")
        assert "blew up" in reg.last_error
    async with session_factory() as s:
        status = await should_refresh(s, "leaderboard_totals", now=now + timedelta(minutes=20))
    assert status.should_refresh is True


@pytest.mark.asyncio
async def test_one_failing_view_does_not_block_others(session_factory, make_user, give_points, now, monkeypatch):
    await give_points(await make_user(), 5, at=now)

    async def broken(session, now):
        raise RuntimeError("nope")

    monkeypatch.setitem(aggregates.VIEWS, "cohort_metrics", ViewDef("cohort_metrics", aggregates.CohortMetric, broken))
    results = {r.view_name: r.success for r in await refresh(session_factory=session_factory, now=now)}
    assert results.pop("cohort_metrics") is False
    assert all(results.values())
    assert set(results) == {"leaderboard_totals", "leaderboard_30d", "activity_metrics", "school_metrics", "time_series_metrics"}


@pytest.mark.asyncio
async def test_unknown_view_is_rejected(session_factory):
    with pytest.raises(ValidationFailed):
        await refresh("leaderboard_forever", session_factory=session_factory)


@pytest.mark.asyncio
async def test_staleness_check(session, session_factory, now):
    never = await should_refresh(session, now=now)
    assert never.should_refresh is True
    assert never.last_refresh is None
    assert never.staleness_minutes == 0

    await refresh(session_factory=session_factory, now=now)

    async with session_factory() as s:
        fresh = await should_refresh(s, now=now + timedelta(minutes=5))
        at_threshold = await should_refresh(s, now=now + timedelta(minutes=15))
        stale = await should_refresh(s, now=now + timedelta(minutes=16))
    assert (fresh.should_refresh, fresh.staleness_minutes) == (False, 5)
    assert at_threshold.should_refresh is False
    assert (stale.should_refresh, stale.staleness_minutes) == (True, 16)


@pytest.mark.asyncio
async def test_cohort_filter_requires_access(session, session_factory, make_user, give_points, ctx_for, now):
    mine = await make_user(cohort="c1")
    theirs = await make_user(cohort="c2")
    admin = await make_user(Role.ADMIN)
    await give_points(mine, 10, at=now)
    await give_points(theirs, 20, at=now)
    await refresh(session_factory=session_factory, now=now)

    with pytest.raises(AuthorizationError):
        await get_leaderboard(session, None, cohort="c1")
    with pytest.raises(AuthorizationError):
        await get_leaderboard(session, ctx_for(mine), cohort="c2")

    page = await get_leaderboard(session, ctx_for(mine), cohort="c1")
    assert [r.user_id for r in page.rows] == [mine.id]
    # overall ranks are kept when filtering
    assert page.rows[0].rank == 2

    with pytest.raises(Unauthenticated):
        await get_cohort_metrics(session, None)
    assert [m.name for m in await get_cohort_metrics(session, ctx_for(mine))] == ["c1"]
    assert [m.name for m in await get_cohort_metrics(session, ctx_for(admin))] == ["No Cohort", "c1", "c2"]


@pytest.mark.asyncio
async def test_activity_metrics_and_time_series(session, session_factory, make_user, make_submission, give_points, now):
    u = await make_user()
    await make_submission(u, "LEARN")
    await give_points(u, 20, at=now, activity_code="LEARN")
    await refresh(session_factory=session_factory, now=now)

    metrics = {m.activity_code: m for m in await get_activity_metrics(session)}
    assert metrics["LEARN"].total_submissions == 1
    assert metrics["LEARN"].pending_submissions == 1
    assert metrics["LEARN"].total_points == 20
    assert metrics["SHINE"].total_submissions == 0

    series = await get_time_series(session, activity_code="LEARN", now=now)
    assert len(series) == 1
    assert series[0].day == now.date()
    assert (series[0].submissions, series[0].points_awarded, series[0].active_users) == (1, 20, 1)
