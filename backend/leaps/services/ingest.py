from __future__ import annotations
from uuid import UUID
import structlog
from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from leaps.access import AccessContext, require_minimum_role
from leaps.config import settings
from leaps.db import atomic, utcnow
from leaps.errors import Conflict, ExternalServiceTransient, NotFound
from leaps.models import external_event as ev_status
from leaps.models.activity import Activity
from leaps.models.external_event import ExternalEvent
from leaps.models.ledger import LedgerSource, PointsLedger
from leaps.models.submission import Submission, SubmissionStatus, Visibility
from leaps.models.user import Role, User
from leaps.schemas.webhook import CompletionEvent, IngestResult
from leaps.services.audit import record_audit, WEBHOOK_PROCESSED, EVENT_REPROCESSED
from leaps.services.ledger import append_entry, find_by_external_id
from leaps.services.scoring import base_points, grant_automatic_badges

log = structlog.get_logger()

GRANTED = "granted"
DUPLICATE = "duplicate"


async def match_user(session: AsyncSession, *, contact_id: str | None, email: str | None) -> User | None:
    """External contact id first, then case-insensitive email."""
    if contact_id:
        user = await session.scalar(select(User).where(User.kajabi_contact_id == contact_id))
        if user:
            return user
    if email:
        return await session.scalar(select(User).where(func.lower(User.email) == email.strip().lower()))
    return None


def _duplicate(event_id: str, entry: PointsLedger | None, user_match: UUID | None = None) -> IngestResult:
    return IngestResult(
        event_id=event_id,
        status=DUPLICATE,
        user_id=entry.user_id if entry else user_match,
        ledger_entry_id=entry.id if entry else None,
        submission_id=UUID(entry.meta["submission_id"]) if entry and entry.meta.get("submission_id") else None,
        points=entry.delta_points if entry else None,
    )


async def _grant(
    session: AsyncSession,
    row: ExternalEvent,
    user: User,
    event: CompletionEvent,
    *,
    actor_id: str,
    audit_action: str,
) -> IngestResult:
    activity = await session.get(Activity, event.activity_code)
    if not activity:
        raise NotFound("Activity not found", details={"activity_code": event.activity_code})

    payload = {
        "source": event.source,
        "auto_approved": True,
        "external_event_id": event.id,
        "tag_name": event.tag,
        "completed_at": event.occurred_at.isoformat(),
    }
    points = base_points(activity, payload)
    s = Submission(
        user_id=user.id,
        activity_code=activity.code,
        status=SubmissionStatus.APPROVED,
        visibility=Visibility.PUBLIC,
        payload=payload,
    )
    session.add(s)
    await session.flush()

    entry = await append_entry(
        session,
        user_id=user.id,
        activity_code=activity.code,
        delta_points=points,
        source=LedgerSource.WEBHOOK,
        event_time=event.occurred_at,
        external_event_id=event.id,
        external_source=event.source,
        meta={"submission_id": str(s.id), "tag_name": event.tag},
    )

    if event.contact_id and not user.kajabi_contact_id:
        user.kajabi_contact_id = event.contact_id

    row.user_match = user.id
    row.processed_at = utcnow()
    row.status = ev_status.PROCESSED

    await grant_automatic_badges(session, user.id)
    await record_audit(
        session,
        actor_id=actor_id,
        action=audit_action,
        target_id=event.id,
        meta={
            "user_id": str(user.id),
            "submission_id": str(s.id),
            "ledger_entry_id": str(entry.id),
            "points": points,
            "tag_name": event.tag,
        },
    )
    return IngestResult(
        event_id=event.id, status=GRANTED, user_id=user.id, ledger_entry_id=entry.id, submission_id=s.id, points=points
    )


async def ingest_event(session: AsyncSession, event: CompletionEvent) -> IngestResult:
    """
    Idempotent: the same event id grants points at most once no matter how often
    or how concurrently it is delivered. A redelivered event returns the prior outcome.
    """
    try:
        async with atomic(session):
            row = await session.get(ExternalEvent, event.id, with_for_update=True, populate_existing=True)
            if row is not None and row.processed_at is not None:
                return _duplicate(event.id, await find_by_external_id(session, event.source, event.id), row.user_match)
            if row is None:
                row = ExternalEvent(id=event.id, source=event.source, status=ev_status.RECEIVED)
                session.add(row)
            row.payload = event.model_dump(mode="json")
            await session.flush()

            if event.tag is not None and event.tag.lower() not in settings.kajabi_learn_tags:
                row.status = ev_status.IGNORED
                row.processed_at = utcnow()
                await session.flush()
                log.info("external_event_ignored", event_id=event.id, tag=event.tag)
                return IngestResult(event_id=event.id, status=ev_status.IGNORED)

            user = await match_user(session, contact_id=event.contact_id, email=event.email)
            if user is None:
                row.status = ev_status.UNMATCHED
                row.user_match = None
                row.processed_at = None
                await session.flush()
                log.warning("external_event_unmatched", event_id=event.id, source=event.source)
                return IngestResult(event_id=event.id, status=ev_status.UNMATCHED)

            result = await _grant(
                session, row, user, event, actor_id=f"system:{event.source}", audit_action=WEBHOOK_PROCESSED
            )
    except IntegrityError:
        # a concurrent delivery won the race on the event id or external_event_id
        async with atomic(session):
            entry = await find_by_external_id(session, event.source, event.id)
            row = await session.get(ExternalEvent, event.id, populate_existing=True)
        if entry is None and row is None:
            raise
        log.info("external_event_duplicate", event_id=event.id, raced=True)
        return _duplicate(event.id, entry, row.user_match if row else None)
    except OperationalError as e:
        # nothing was committed; the sender retries non-2xx deliveries
        log.warning("external_event_storage_unavailable", event_id=event.id, error=str(e.orig))
        raise ExternalServiceTransient("Storage unavailable, retry later", details={"event_id": event.id}) from e

    log.info("external_event_ingested", event_id=event.id, user_id=str(result.user_id), points=result.points)
    return result


async def list_unmatched_events(
    session: AsyncSession, ctx: AccessContext | None, *, limit: int = 50, offset: int = 0
) -> list[ExternalEvent]:
    require_minimum_role(ctx, Role.ADMIN)
    return list((await session.execute(
        select(ExternalEvent)
        .where(ExternalEvent.status == ev_status.UNMATCHED, ExternalEvent.processed_at.is_(None))
        .order_by(ExternalEvent.received_at.desc())
        .limit(limit)
        .offset(offset)
    )).scalars().all())


async def reprocess_event(
    session: AsyncSession,
    ctx: AccessContext | None,
    event_id: str,
    *,
    user_id: UUID | None = None,
) -> IngestResult:
    """Manual reconciliation of a stored event, optionally pinning it to a user."""
    ctx = require_minimum_role(ctx, Role.ADMIN)
    async with atomic(session):
        row = await session.get(ExternalEvent, event_id, with_for_update=True, populate_existing=True)
        if not row:
            raise NotFound("Event not found", details={"event_id": event_id})
        if row.processed_at is not None:
            raise Conflict("Event already processed", details={"event_id": event_id, "status": row.status})
        event = CompletionEvent.model_validate(row.payload)
        if user_id is not None:
            user = await session.get(User, user_id)
        else:
            user = await match_user(session, contact_id=event.contact_id, email=event.email)
        if user is None:
            raise NotFound("No user matches this event", details={"event_id": event_id})
        result = await _grant(session, row, user, event, actor_id=ctx.actor_id, audit_action=EVENT_REPROCESSED)
    log.info("external_event_reprocessed", event_id=event_id, user_id=str(result.user_id))
    return result
