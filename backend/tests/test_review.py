import uuid
from datetime import timedelta
import pytest
from sqlalchemy import select, update

import leaps.services.submissions as submissions_service
from leaps.db import utcnow
from leaps.errors import AuthorizationError, Conflict, NotFound, ValidationFailed
from leaps.models.activity import Activity
from leaps.models.audit import AuditLog
from leaps.models.badge import EarnedBadge
from leaps.models.ledger import LedgerSource, PointsLedger
from leaps.models.submission import Submission, SubmissionStatus, Visibility
from leaps.models.user import Role
from leaps.services.ledger import user_entries
from leaps.services.submissions import create_submission, list_submissions, review_submission

EXPLORE_PAYLOAD = {"reflection": "x" * 160, "class_date": "2026-09-01"}


async def _ledger(session_factory, user_id):
    async with session_factory() as s:
        return (await s.execute(select(PointsLedger).where(PointsLedger.user_id == user_id))).scalars().all()


async def _audit(session_factory, target_id):
    async with session_factory() as s:
        return (await s.execute(select(AuditLog).where(AuditLog.target_id == str(target_id)))).scalars().all()


async def _reload(session_factory, submission_id):
    async with session_factory() as s:
        return await s.get(Submission, submission_id)


@pytest.mark.asyncio
async def test_approve_awards_points_once_and_audits(session, session_factory, make_user, make_submission, ctx_for):
    participant = await make_user()
    reviewer = await make_user(Role.REVIEWER)
    sub = await make_submission(participant, "LEARN")

    result = await review_submission(session, ctx_for(reviewer), sub.id, "approve", note="nice")
    assert result.status == SubmissionStatus.APPROVED
    assert result.points_awarded == 20

    row = await _reload(session_factory, sub.id)
    assert row.status == SubmissionStatus.APPROVED
    assert row.visibility == Visibility.PUBLIC
    assert row.reviewer_id == reviewer.id
    assert row.review_note == "nice"

    entries = await _ledger(session_factory, participant.id)
    assert [(e.delta_points, e.source) for e in entries] == [(20, LedgerSource.FORM)]
    assert entries[0].external_event_id == f"submission:{sub.id}"
    assert entries[0].external_source == "review"

    audit = await _audit(session_factory, sub.id)
    assert len(audit) == 1
    assert audit[0].action == "SUBMISSION_APPROVED"
    assert audit[0].actor_id == str(reviewer.id)
    assert audit[0].meta["points_awarded"] == 20


@pytest.mark.asyncio
async def test_terminal_submission_cannot_be_reviewed_again(session, session_factory, make_user, make_submission, ctx_for):
    participant = await make_user()
    reviewer = await make_user(Role.REVIEWER)
    sub = await make_submission(participant, "EXPLORE", payload=EXPLORE_PAYLOAD)

    rejected = await review_submission(session, ctx_for(reviewer), sub.id, "reject", note="needs detail")
    assert rejected.status == SubmissionStatus.REJECTED
    assert rejected.points_awarded is None

    with pytest.raises(Conflict):
        await review_submission(session, ctx_for(reviewer), sub.id, "approve")

    assert (await _reload(session_factory, sub.id)).status == SubmissionStatus.REJECTED
    assert await _ledger(session_factory, participant.id) == []
    assert [a.action for a in await _audit(session_factory, sub.id)] == ["SUBMISSION_REJECTED"]


@pytest.mark.asyncio
async def test_participant_cannot_review(session, session_factory, make_user, make_submission, ctx_for):
    participant = await make_user()
    sub = await make_submission(participant, "LEARN")

    with pytest.raises(AuthorizationError):
        await review_submission(session, ctx_for(participant), sub.id, "approve")

    assert (await _reload(session_factory, sub.id)).status == SubmissionStatus.PENDING
    assert await _ledger(session_factory, participant.id) == []
    assert await _audit(session_factory, sub.id) == []


@pytest.mark.asyncio
async def test_missing_submission_and_bad_action(session, make_user, make_submission, ctx_for):
    reviewer = await make_user(Role.REVIEWER)
    with pytest.raises(NotFound):
        await review_submission(session, ctx_for(reviewer), uuid.uuid4(), "approve")

    sub = await make_submission(await make_user(), "LEARN")
    with pytest.raises(ValidationFailed):
        await review_submission(session, ctx_for(reviewer), sub.id, "maybe")


@pytest.mark.asyncio
async def test_adjustment_band_boundary(session, session_factory, make_user, make_submission, ctx_for):
    participant = await make_user()
    reviewer = await make_user(Role.REVIEWER)
    over = await make_submission(participant, "BIG")
    edge = await make_submission(participant, "BIG")

    with pytest.raises(ValidationFailed):
        await review_submission(session, ctx_for(reviewer), over.id, "approve", point_adjustment=12001)
    assert (await _reload(session_factory, over.id)).status == SubmissionStatus.PENDING

    result = await review_submission(session, ctx_for(reviewer), edge.id, "approve", point_adjustment=12000)
    assert result.points_awarded == 12000

    entries = await _ledger(session_factory, participant.id)
    assert [(e.delta_points, e.source) for e in entries] == [(12000, LedgerSource.MANUAL)]


@pytest.mark.asyncio
async def test_review_is_atomic_when_audit_write_fails(session, session_factory, make_user, make_submission, ctx_for, monkeypatch):
    participant = await make_user()
    reviewer = await make_user(Role.REVIEWER)
    sub = await make_submission(participant, "EXPLORE", payload=EXPLORE_PAYLOAD)

    async def broken_audit(*args, **kwargs):
        raise RuntimeError("audit store unavailable")

    monkeypatch.setattr(submissions_service, "record_audit", broken_audit)

    with pytest.raises(RuntimeError):
        await review_submission(session, ctx_for(reviewer), sub.id, "approve")

    assert (await _reload(session_factory, sub.id)).status == SubmissionStatus.PENDING
    assert await _ledger(session_factory, participant.id) == []
    async with session_factory() as s:
        badges = (await s.execute(select(EarnedBadge).where(EarnedBadge.user_id == participant.id))).scalars().all()
    assert badges == []


@pytest.mark.asyncio
async def test_approval_grants_stage_badge(session, session_factory, make_user, make_submission, ctx_for):
    participant = await make_user()
    reviewer = await make_user(Role.REVIEWER)
    sub = await make_submission(participant, "EXPLORE", payload=EXPLORE_PAYLOAD)

    result = await review_submission(session, ctx_for(reviewer), sub.id, "approve")
    assert result.badges_granted == ["IN_CLASS_INNOVATOR"]
    audit = await _audit(session_factory, sub.id)
    assert audit[0].meta["badges_granted"] == ["IN_CLASS_INNOVATOR"]

    second = await make_submission(participant, "EXPLORE", payload=EXPLORE_PAYLOAD)
    again = await review_submission(session, ctx_for(reviewer), second.id, "approve")
    assert again.badges_granted == []
    assert (await _audit(session_factory, second.id))[0].meta["badges_granted"] == []


@pytest.mark.asyncio
async def test_adjustment_rejected_on_reject(session, make_user, make_submission, ctx_for):
    reviewer = await make_user(Role.REVIEWER)
    sub = await make_submission(await make_user(), "LEARN")
    with pytest.raises(ValidationFailed):
        await review_submission(session, ctx_for(reviewer), sub.id, "reject", point_adjustment=20)


# ---------- listing scope ----------

@pytest.mark.asyncio
async def test_reviewer_queue_is_limited_to_own_cohort_and_school(session, make_user, make_submission, ctx_for):
    reviewer = await make_user(Role.REVIEWER, cohort="c1", school="s1")
    mine = await make_submission(await make_user(cohort="c1", school="s1"))
    other_cohort = await make_submission(await make_user(cohort="c2", school="s1"))
    other_school = await make_submission(await make_user(cohort="c1", school="s2"))

    listed = [s.id for s in await list_submissions(session, ctx_for(reviewer))]
    assert listed == [mine.id]
    assert other_cohort.id not in listed
    assert other_school.id not in listed

    with pytest.raises(AuthorizationError):
        await list_submissions(session, ctx_for(reviewer), cohort="c2")


@pytest.mark.asyncio
async def test_reviewer_without_cohort_sees_no_queue(session, make_user, make_submission, ctx_for):
    reviewer = await make_user(Role.REVIEWER)
    await make_submission(await make_user())
    assert await list_submissions(session, ctx_for(reviewer)) == []


@pytest.mark.asyncio
async def test_admin_lists_every_cohort(session, make_user, make_submission, ctx_for):
    admin = await make_user(Role.ADMIN)
    a = await make_submission(await make_user(cohort="c1", school="s1"))
    b = await make_submission(await make_user(cohort="c2", school="s2"))
    assert {s.id for s in await list_submissions(session, ctx_for(admin))} == {a.id, b.id}
    assert [s.id for s in await list_submissions(session, ctx_for(admin), cohort="c2")] == [b.id]


@pytest.mark.asyncio
async def test_participant_lists_only_own_submissions(session, make_user, make_submission, ctx_for):
    me = await make_user(cohort="c1", school="s1")
    peer = await make_user(cohort="c1", school="s1")
    mine = await make_submission(me)
    await make_submission(peer)

    assert [s.id for s in await list_submissions(session, ctx_for(me))] == [mine.id]
    with pytest.raises(AuthorizationError):
        await list_submissions(session, ctx_for(me), user_id=peer.id)


@pytest.mark.asyncio
async def test_reviewer_reads_ledger_only_within_scope(session, make_user, give_points, ctx_for):
    reviewer = await make_user(Role.REVIEWER, cohort="c1", school="s1")
    inside = await make_user(cohort="c1", school="s1")
    outside = await make_user(cohort="c2", school="s1")
    await give_points(inside, 20)
    await give_points(outside, 20)

    assert [e.delta_points for e in await user_entries(session, ctx_for(reviewer), inside.id)] == [20]
    with pytest.raises(AuthorizationError):
        await user_entries(session, ctx_for(reviewer), outside.id)
    with pytest.raises(NotFound):
        await user_entries(session, ctx_for(reviewer), uuid.uuid4())

    admin = await make_user(Role.ADMIN)
    assert [e.delta_points for e in await user_entries(session, ctx_for(admin), outside.id)] == [20]


# ---------- create / AMPLIFY quota ----------

def _amplify(peers: int, students: int) -> dict:
    return {"peers_trained": peers, "students_trained": students, "session_date": "2026-10-01"}


@pytest.mark.asyncio
async def test_create_submission_is_pending_and_owned(session, make_user, ctx_for):
    me = await make_user()
    s = await create_submission(session, ctx_for(me), activity_code="explore", payload=EXPLORE_PAYLOAD)
    assert s.status == SubmissionStatus.PENDING
    assert s.user_id == me.id
    assert s.activity_code == "EXPLORE"

    with pytest.raises(ValidationFailed):
        await create_submission(session, ctx_for(me), activity_code="EXPLORE", payload={"reflection": "short"})
    with pytest.raises(NotFound):
        await create_submission(session, ctx_for(me), activity_code="NOPE", payload={})


@pytest.mark.asyncio
async def test_amplify_quota_over_rolling_week(session, make_user, ctx_for):
    me = await make_user()
    await create_submission(session, ctx_for(me), activity_code="AMPLIFY", payload=_amplify(30, 150))

    with pytest.raises(ValidationFailed) as exc:
        await create_submission(session, ctx_for(me), activity_code="AMPLIFY", payload=_amplify(21, 0))
    assert exc.value.details["remaining_peers"] == 20
    with pytest.raises(ValidationFailed):
        await create_submission(session, ctx_for(me), activity_code="AMPLIFY", payload=_amplify(0, 51))

    # exactly at the caps is fine
    await create_submission(session, ctx_for(me), activity_code="AMPLIFY", payload=_amplify(20, 50))


@pytest.mark.asyncio
async def test_amplify_quota_ignores_old_and_rejected_claims(session, session_factory, make_user, make_submission, ctx_for):
    me = await make_user()
    old = await make_submission(me, "AMPLIFY", payload=_amplify(50, 200), status=SubmissionStatus.APPROVED)
    await make_submission(me, "AMPLIFY", payload=_amplify(50, 200), status=SubmissionStatus.REJECTED)
    async with session_factory() as s:
        async with s.begin():
            await s.execute(
                update(Submission).where(Submission.id == old.id).values(created_at=utcnow() - timedelta(days=8))
            )

    s = await create_submission(session, ctx_for(me), activity_code="AMPLIFY", payload=_amplify(50, 200))
    assert s.status == SubmissionStatus.PENDING


@pytest.mark.asyncio
async def test_amplify_quota_follows_catalog(session, session_factory, make_user, ctx_for):
    async with session_factory() as s:
        async with s.begin():
            await s.execute(
                update(Activity).where(Activity.code == "AMPLIFY").values(quota={"window_days": 7, "peers": 10, "students": 200})
            )
    me = await make_user()
    with pytest.raises(ValidationFailed) as exc:
        await create_submission(session, ctx_for(me), activity_code="AMPLIFY", payload=_amplify(11, 0))
    assert exc.value.details["remaining_peers"] == 10
