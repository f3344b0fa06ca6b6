import uuid
import pytest
from sqlalchemy import select, func

from leaps.config import settings
from leaps.errors import Conflict, NotFound, ValidationFailed
from leaps.models.audit import AuditLog
from leaps.models.ledger import PointsLedger
from leaps.models.submission import Submission, SubmissionStatus
from leaps.models.user import Role
from leaps.services.submissions import bulk_review


async def _count(session_factory, model, *where):
    async with session_factory() as s:
        return await s.scalar(select(func.count()).select_from(model).where(*where))


async def _statuses(session_factory, ids):
    async with session_factory() as s:
        rows = (await s.execute(select(Submission).where(Submission.id.in_(ids)))).scalars().all()
        return {r.id: r.status for r in rows}


@pytest.mark.asyncio
async def test_bulk_approve_all(session, session_factory, make_user, make_submission, ctx_for):
    reviewer = await make_user(Role.REVIEWER)
    subs = [await make_submission(await make_user(), "LEARN") for _ in range(3)]
    ids = [s.id for s in subs]

    result = await bulk_review(session, ctx_for(reviewer), ids + [ids[0]], "approve")
    assert result.processed == 3
    assert {r.points_awarded for r in result.results} == {20}

    assert set((await _statuses(session_factory, ids)).values()) == {SubmissionStatus.APPROVED}
    assert await _count(session_factory, PointsLedger) == 3
    assert await _count(session_factory, AuditLog, AuditLog.action == "SUBMISSION_APPROVED") == 3


@pytest.mark.asyncio
async def test_bulk_approve_explore_at_base_points(session, session_factory, make_user, make_submission, ctx_for):
    reviewer = await make_user(Role.REVIEWER)
    participant = await make_user()
    payload = {"reflection": "x" * 160, "class_date": "2026-09-01"}
    ids = [(await make_submission(participant, "EXPLORE", payload=payload)).id for _ in range(5)]

    result = await bulk_review(session, ctx_for(reviewer), ids, "approve")
    assert result.processed == 5
    assert [r.points_awarded for r in result.results] == [50] * 5

    async with session_factory() as s:
        total = await s.scalar(select(func.sum(PointsLedger.delta_points)).where(PointsLedger.user_id == participant.id))
    assert total == 250
    assert await _count(session_factory, PointsLedger, PointsLedger.activity_code == "EXPLORE") == 5
    assert await _count(session_factory, AuditLog, AuditLog.action == "SUBMISSION_APPROVED") == 5


@pytest.mark.asyncio
async def test_bulk_with_missing_id_changes_nothing(session, session_factory, make_user, make_submission, ctx_for):
    reviewer = await make_user(Role.REVIEWER)
    a = await make_submission(await make_user(), "LEARN")
    b = await make_submission(await make_user(), "LEARN")
    ghost = uuid.uuid4()

    with pytest.raises(NotFound) as e:
        await bulk_review(session, ctx_for(reviewer), [a.id, ghost, b.id], "approve")
    assert e.value.details["missing_ids"] == [str(ghost)]
    assert str(ghost) in e.value.message

    assert set((await _statuses(session_factory, [a.id, b.id])).values()) == {SubmissionStatus.PENDING}
    assert await _count(session_factory, PointsLedger) == 0
    assert await _count(session_factory, AuditLog) == 0


@pytest.mark.asyncio
async def test_bulk_with_non_pending_changes_nothing(session, session_factory, make_user, make_submission, ctx_for):
    reviewer = await make_user(Role.REVIEWER)
    a = await make_submission(await make_user(), "LEARN")
    done = await make_submission(await make_user(), "LEARN", status=SubmissionStatus.REJECTED)

    with pytest.raises(Conflict) as e:
        await bulk_review(session, ctx_for(reviewer), [a.id, done.id], "reject")
    assert e.value.details["not_pending_ids"] == [str(done.id)]
    assert (await _statuses(session_factory, [a.id]))[a.id] == SubmissionStatus.PENDING


@pytest.mark.asyncio
async def test_bulk_size_limits(session, make_user, ctx_for):
    reviewer = await make_user(Role.REVIEWER)
    with pytest.raises(ValidationFailed):
        await bulk_review(session, ctx_for(reviewer), [], "approve")
    with pytest.raises(ValidationFailed):
        await bulk_review(session, ctx_for(reviewer), [uuid.uuid4() for _ in range(settings.bulk_review_max + 1)], "approve")
