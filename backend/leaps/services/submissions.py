from __future__ import annotations
import enum
from typing import Any, Iterable
from uuid import UUID
import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from leaps.access import AccessContext, ROLE_LEVELS, can_access_cohort, can_access_school, require_minimum_role
from leaps.config import settings
from leaps.db import atomic, utcnow
from leaps.errors import AuthorizationError, Conflict, NotFound, ValidationFailed
from leaps.models.activity import Activity, AMPLIFY
from leaps.models.ledger import LedgerSource, REVIEW_SOURCE
from leaps.models.submission import Submission, SubmissionStatus, Visibility
from leaps.models.user import Role, User
from leaps.schemas.submission import ReviewResult, BulkReviewResult, validate_payload
from leaps.services.audit import record_audit, SUBMISSION_APPROVED, SUBMISSION_REJECTED
from leaps.services.ledger import append_entry
from leaps.services.scoring import base_points, check_amplify_quota, grant_automatic_badges, resolve_awarded_points

log = structlog.get_logger()


class ReviewAction(str, enum.Enum):
    APPROVE = "approve"
    REJECT = "reject"


def _parse_action(action: ReviewAction | str) -> ReviewAction:
    try:
        return ReviewAction(action)
    except ValueError:
        raise ValidationFailed(f"Unknown review action: {action!r}", details={"allowed": [a.value for a in ReviewAction]})


def submission_award_key(submission_id: UUID) -> str:
    """Ledger dedup key for a reviewed submission; a second award for the same row cannot be written."""
    return f"submission:{submission_id}"

# ---------- create / list ----------

async def create_submission(
    session: AsyncSession,
    ctx: AccessContext | None,
    *,
    activity_code: str,
    payload: dict[str, Any],
    visibility: Visibility = Visibility.PRIVATE,
) -> Submission:
    ctx = require_minimum_role(ctx, Role.PARTICIPANT)
    activity_code = activity_code.upper()
    async with atomic(session):
        activity = await session.get(Activity, activity_code)
        if not activity:
            raise NotFound("Activity not found", details={"activity_code": activity_code})
        data = validate_payload(activity.code, payload)
        if activity.code == AMPLIFY:
            await check_amplify_quota(session, ctx.user_id, data, quota=activity.quota)
        s = Submission(
            user_id=ctx.user_id,
            activity_code=activity.code,
            status=SubmissionStatus.PENDING,
            visibility=visibility,
            payload=data,
        )
        session.add(s)
        await session.flush()
    log.info("submission_created", submission_id=str(s.id), activity_code=activity_code)
    return s


async def list_submissions(
    session: AsyncSession,
    ctx: AccessContext | None,
    *,
    status: SubmissionStatus | None = None,
    activity_code: str | None = None,
    user_id: UUID | None = None,
    cohort: str | None = None,
    school: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[Submission]:
    """
    Participants only ever see their own rows. Reviewers see the queue of their own
    cohort and school; admins see everything.
    """
    ctx = require_minimum_role(ctx, Role.PARTICIPANT)
    q = select(Submission)
    if ctx.level < ROLE_LEVELS[Role.REVIEWER]:
        if user_id is not None and user_id != ctx.user_id:
            raise AuthorizationError("Participants can only list their own submissions")
        user_id = ctx.user_id
    if cohort is not None and not can_access_cohort(ctx, cohort):
        raise AuthorizationError("No access to cohort", details={"cohort": cohort})
    if school is not None and not can_access_school(ctx, school):
        raise AuthorizationError("No access to school", details={"school": school})

    scoped = ROLE_LEVELS[Role.REVIEWER] <= ctx.level < ROLE_LEVELS[Role.ADMIN]
    if scoped or cohort is not None or school is not None:
        q = q.join(User, User.id == Submission.user_id)
    if scoped:
        # a reviewer without a cohort or school has no queue
        if ctx.cohort is None or ctx.school is None:
            return []
        q = q.where(User.cohort == ctx.cohort, User.school == ctx.school)
    if cohort is not None:
        q = q.where(User.cohort == cohort)
    if school is not None:
        q = q.where(User.school == school)
    if user_id is not None:
        q = q.where(Submission.user_id == user_id)
    if status is not None:
        q = q.where(Submission.status == status)
    if activity_code:
        q = q.where(Submission.activity_code == activity_code.upper())
    q = q.order_by(Submission.created_at.desc(), Submission.id).limit(limit).offset(offset)
    return list((await session.execute(q)).scalars().all())

# ---------- review ----------

async def _apply_review(
    session: AsyncSession,
    ctx: AccessContext,
    s: Submission,
    action: ReviewAction,
    *,
    note: str | None,
    point_adjustment: int | None = None,
) -> ReviewResult:
    """Transition one locked PENDING row. Caller owns the transaction."""
    activity = await session.get(Activity, s.activity_code)
    now = utcnow()
    points = None
    entry = None
    granted: list[str] = []
    base = None

    if action is ReviewAction.APPROVE:
        # price first so a bad adjustment fails before anything is touched
        base = base_points(activity, s.payload)
        points = resolve_awarded_points(base, point_adjustment)

    s.status = SubmissionStatus.APPROVED if action is ReviewAction.APPROVE else SubmissionStatus.REJECTED
    s.reviewer_id = ctx.user_id
    s.review_note = note
    s.updated_at = now

    if action is ReviewAction.APPROVE:
        s.visibility = Visibility.PUBLIC
        adjusted = points != base
        entry = await append_entry(
            session,
            user_id=s.user_id,
            activity_code=s.activity_code,
            delta_points=points,
            source=LedgerSource.MANUAL if adjusted else LedgerSource.FORM,
            event_time=now,
            external_event_id=submission_award_key(s.id),
            external_source=REVIEW_SOURCE,
            meta={"submission_id": str(s.id), "reviewer_id": ctx.actor_id, "base_points": base, "adjusted": adjusted},
        )
        granted = await grant_automatic_badges(session, s.user_id)
    else:
        await session.flush()

    await record_audit(
        session,
        actor_id=ctx.actor_id,
        action=SUBMISSION_APPROVED if action is ReviewAction.APPROVE else SUBMISSION_REJECTED,
        target_id=str(s.id),
        meta={
            "activity_code": s.activity_code,
            "user_id": str(s.user_id),
            "base_points": base,
            "points_awarded": points,
            "adjusted": points is not None and points != base,
            "badges_granted": granted,
            "note": note,
        },
    )
    return ReviewResult(
        submission_id=s.id,
        status=s.status,
        points_awarded=points,
        ledger_entry_id=entry.id if entry else None,
        badges_granted=granted,
    )


async def review_submission(
    session: AsyncSession,
    ctx: AccessContext | None,
    submission_id: UUID,
    action: ReviewAction | str,
    *,
    note: str | None = None,
    point_adjustment: int | None = None,
) -> ReviewResult:
    """
    Approve or reject one PENDING submission.
    Status change, ledger entry and audit row commit together or not at all.
    The row lock makes concurrent reviewers queue; whoever comes second sees Conflict.
    """
    ctx = require_minimum_role(ctx, Role.REVIEWER)
    action = _parse_action(action)
    if point_adjustment is not None and action is not ReviewAction.APPROVE:
        raise ValidationFailed("point_adjustment only applies to approvals")

    async with atomic(session):
        s = await session.get(Submission, submission_id, with_for_update=True, populate_existing=True)
        if not s:
            raise NotFound("Submission not found", details={"submission_id": str(submission_id)})
        if s.status != SubmissionStatus.PENDING:
            raise Conflict(
                f"Submission already {s.status.value.lower()}",
                details={"submission_id": str(s.id), "status": s.status.value},
            )
        result = await _apply_review(session, ctx, s, action, note=note, point_adjustment=point_adjustment)

    log.info(
        "submission_reviewed",
        submission_id=str(submission_id),
        action=action.value,
        points_awarded=result.points_awarded,
    )
    return result


def _dedupe(ids: Iterable[UUID]) -> list[UUID]:
    seen: set[UUID] = set()
    out: list[UUID] = []
    for i in ids:
        if i not in seen:
            seen.add(i)
            out.append(i)
    return out


async def bulk_review(
    session: AsyncSession,
    ctx: AccessContext | None,
    submission_ids: Iterable[UUID],
    action: ReviewAction | str,
    *,
    note: str | None = None,
) -> BulkReviewResult:
    """All-or-nothing review of up to bulk_review_max submissions at base points."""
    ctx = require_minimum_role(ctx, Role.REVIEWER)
    action = _parse_action(action)
    ids = _dedupe(submission_ids)
    if not ids:
        raise ValidationFailed("No submission ids given")
    if len(ids) > settings.bulk_review_max:
        raise ValidationFailed(
            f"At most {settings.bulk_review_max} submissions per bulk review",
            details={"count": len(ids), "max": settings.bulk_review_max},
        )

    async with atomic(session):
        rows = (await session.execute(
            select(Submission)
            .where(Submission.id.in_(ids))
            .order_by(Submission.id)  # stable lock order
            .with_for_update()
            .execution_options(populate_existing=True)
        )).scalars().all()
        by_id = {s.id: s for s in rows}

        missing = [str(i) for i in ids if i not in by_id]
        if missing:
            raise NotFound(f"Submissions not found: {', '.join(missing)}", details={"missing_ids": missing})
        not_pending = [str(i) for i in ids if by_id[i].status != SubmissionStatus.PENDING]
        if not_pending:
            raise Conflict(
                f"Submissions not pending: {', '.join(not_pending)}",
                details={"not_pending_ids": not_pending},
            )

        results = [await _apply_review(session, ctx, by_id[i], action, note=note) for i in ids]

    log.info("bulk_review_completed", action=action.value, count=len(results))
    return BulkReviewResult(action=action.value, processed=len(results), results=results)
