from __future__ import annotations
from datetime import datetime
from typing import Any
from uuid import UUID
import structlog
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from leaps.access import (
    AccessContext, ROLE_LEVELS, can_access_cohort, can_access_school, require_context, require_minimum_role,
)
from leaps.config import settings
from leaps.db import atomic, utcnow
from leaps.errors import AuthorizationError, NotFound, ValidationFailed
from leaps.models.activity import Activity, LEARN
from leaps.models.ledger import PointsLedger, LedgerSource
from leaps.models.user import Role, User
from leaps.services.audit import record_audit, POINTS_ADJUSTED

log = structlog.get_logger()

# ---------- writes ----------

async def append_entry(
    session: AsyncSession,
    *,
    user_id: UUID,
    activity_code: str,
    delta_points: int,
    source: LedgerSource,
    event_time: datetime | None = None,
    external_event_id: str | None = None,
    external_source: str | None = None,
    meta: dict[str, Any] | None = None,
) -> PointsLedger:
    """
    Append one entry in the caller's transaction.
    Flushes immediately so a duplicate external_event_id raises IntegrityError here.
    """
    entry = PointsLedger(
        user_id=user_id,
        activity_code=activity_code,
        delta_points=int(delta_points),
        source=source,
        event_time=event_time or utcnow(),
        external_event_id=external_event_id,
        external_source=external_source,
        meta=meta or {},
    )
    session.add(entry)
    await session.flush()
    return entry

async def adjust_points(
    session: AsyncSession,
    ctx: AccessContext | None,
    *,
    user_id: UUID,
    delta_points: int,
    reason: str,
    activity_code: str = LEARN,
) -> PointsLedger:
    """Manual correction by an admin. Lands as a MANUAL entry with its own audit row."""
    ctx = require_minimum_role(ctx, Role.ADMIN)
    if delta_points == 0 or abs(delta_points) > settings.max_manual_adjustment:
        raise ValidationFailed(
            f"Adjustment must be non-zero and at most {settings.max_manual_adjustment} points either way",
            details={"delta_points": delta_points},
        )
    async with atomic(session):
        user = await session.get(User, user_id)
        if not user:
            raise NotFound("User not found", details={"user_id": str(user_id)})
        if not await session.get(Activity, activity_code):
            raise NotFound("Activity not found", details={"activity_code": activity_code})
        entry = await append_entry(
            session,
            user_id=user.id,
            activity_code=activity_code,
            delta_points=delta_points,
            source=LedgerSource.MANUAL,
            meta={"reason": reason, "adjusted_by": ctx.actor_id},
        )
        await record_audit(
            session,
            actor_id=ctx.actor_id,
            action=POINTS_ADJUSTED,
            target_id=str(user.id),
            meta={"delta_points": delta_points, "reason": reason, "activity_code": activity_code, "ledger_entry_id": str(entry.id)},
        )
    log.info("points_adjusted", user_id=str(user_id), delta_points=delta_points)
    return entry

# ---------- reads ----------

async def find_by_external_id(session: AsyncSession, external_source: str, external_event_id: str) -> PointsLedger | None:
    return await session.scalar(
        select(PointsLedger).where(
            PointsLedger.external_source == external_source, PointsLedger.external_event_id == external_event_id
        )
    )

async def user_balance(session: AsyncSession, user_id: UUID) -> int:
    total = await session.scalar(
        select(func.coalesce(func.sum(PointsLedger.delta_points), 0)).where(PointsLedger.user_id == user_id)
    )
    return int(total or 0)

async def user_entries(
    session: AsyncSession, ctx: AccessContext | None, user_id: UUID, *, limit: int = 100
) -> list[PointsLedger]:
    """Own history; reviewers read users in their own cohort and school, admins anyone."""
    ctx = require_context(ctx)
    if ctx.user_id != user_id:
        if ctx.level < ROLE_LEVELS[Role.REVIEWER]:
            raise AuthorizationError("Cannot read another user's ledger")
        target = await session.get(User, user_id)
        if not target:
            raise NotFound("User not found", details={"user_id": str(user_id)})
        if not (can_access_cohort(ctx, target.cohort) and can_access_school(ctx, target.school)):
            raise AuthorizationError("No access to this user's cohort or school", details={"user_id": str(user_id)})
    return list((await session.execute(
        select(PointsLedger)
        .where(PointsLedger.user_id == user_id)
        .order_by(PointsLedger.event_time.desc(), PointsLedger.created_at.desc())
        .limit(limit)
    )).scalars().all())
