from __future__ import annotations
from datetime import datetime
from uuid import UUID
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from leaps.access import AccessContext, with_context
from leaps.auth_deps import get_access_context
from leaps.db import get_session
from leaps.schemas.audit import AuditEntryPublic
from leaps.schemas.ledger import LedgerEntryPublic, PointAdjustment
from leaps.schemas.user import BadgeAward, EarnedBadgePublic, UserAccessUpdate, UserPublic
from leaps.schemas.webhook import IngestResult
from leaps.services.audit import query_audit_log
from leaps.services.ingest import list_unmatched_events, reprocess_event
from leaps.services.ledger import adjust_points
from leaps.services.users import award_badge, update_user_access

router = APIRouter(prefix="/admin", tags=["admin"])

class UnmatchedEvent(BaseModel):
    id: str
    source: str
    status: str
    payload: dict
    received_at: datetime

    model_config = {"from_attributes": True}

class ReprocessRequest(BaseModel):
    user_id: UUID | None = None

@router.patch("/users/{user_id}", response_model=UserPublic)
async def update_user(
    user_id: UUID,
    body: UserAccessUpdate,
    session: AsyncSession = Depends(get_session),
    ctx: AccessContext = Depends(get_access_context),
):
    # only fields present in the body change; an explicit null clears cohort/school
    fields = {k: getattr(body, k) for k in body.model_fields_set if k in ("cohort", "school")}
    user = await with_context(
        session, ctx, lambda sess, c: update_user_access(sess, c, user_id, role=body.role, **fields)
    )
    return UserPublic.model_validate(user)

@router.post("/badges/award", response_model=EarnedBadgePublic, status_code=201)
async def award(
    body: BadgeAward,
    session: AsyncSession = Depends(get_session),
    ctx: AccessContext = Depends(get_access_context),
):
    earned = await with_context(
        session, ctx, lambda sess, c: award_badge(sess, c, body.user_id, body.badge_code, reason=body.reason)
    )
    return EarnedBadgePublic.model_validate(earned)

@router.post("/points/adjust", response_model=LedgerEntryPublic, status_code=201)
async def adjust(
    body: PointAdjustment,
    session: AsyncSession = Depends(get_session),
    ctx: AccessContext = Depends(get_access_context),
):
    entry = await with_context(
        session, ctx,
        lambda sess, c: adjust_points(
            sess, c, user_id=body.user_id, delta_points=body.delta_points, reason=body.reason, activity_code=body.activity_code
        ),
    )
    return LedgerEntryPublic.model_validate(entry)

@router.get("/audit", response_model=list[AuditEntryPublic])
async def audit_log(
    actor_id: str | None = Query(default=None),
    action: str | None = Query(default=None),
    target_id: str | None = Query(default=None),
    since: datetime | None = Query(default=None),
    until: datetime | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    session: AsyncSession = Depends(get_session),
    ctx: AccessContext = Depends(get_access_context),
):
    rows = await with_context(
        session, ctx,
        lambda sess, c: query_audit_log(
            sess, c, actor_id=actor_id, action=action, target_id=target_id, since=since, until=until, limit=limit, offset=offset
        ),
    )
    return [AuditEntryPublic.model_validate(r) for r in rows]

@router.get("/events/unmatched", response_model=list[UnmatchedEvent])
async def unmatched_events(
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    session: AsyncSession = Depends(get_session),
    ctx: AccessContext = Depends(get_access_context),
):
    rows = await with_context(session, ctx, lambda sess, c: list_unmatched_events(sess, c, limit=limit, offset=offset))
    return [UnmatchedEvent.model_validate(r) for r in rows]

@router.post("/events/{event_id}/reprocess", response_model=IngestResult)
async def reprocess(
    event_id: str,
    body: ReprocessRequest | None = None,
    session: AsyncSession = Depends(get_session),
    ctx: AccessContext = Depends(get_access_context),
):
    return await with_context(session, ctx, lambda sess, c: reprocess_event(sess, c, event_id, user_id=body.user_id if body else None))
