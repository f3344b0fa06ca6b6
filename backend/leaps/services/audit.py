from __future__ import annotations
from datetime import datetime
from typing import Any
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from leaps.access import AccessContext, require_minimum_role
from leaps.models.audit import AuditLog
from leaps.models.user import Role

# Actions
SUBMISSION_APPROVED = "SUBMISSION_APPROVED"
SUBMISSION_REJECTED = "SUBMISSION_REJECTED"
ROLE_CHANGED = "ROLE_CHANGED"
USER_SCOPE_CHANGED = "USER_SCOPE_CHANGED"
BADGE_AWARDED = "BADGE_AWARDED"
POINTS_ADJUSTED = "POINTS_ADJUSTED"
WEBHOOK_PROCESSED = "WEBHOOK_PROCESSED"
EVENT_REPROCESSED = "EVENT_REPROCESSED"

async def record_audit(
    session: AsyncSession,
    *,
    actor_id: str,
    action: str,
    target_id: str | None = None,
    meta: dict[str, Any] | None = None,
) -> AuditLog:
    """Append one entry in the caller's transaction. Flushes so failures surface here."""
    entry = AuditLog(actor_id=str(actor_id), action=action, target_id=target_id, meta=meta or {})
    session.add(entry)
    await session.flush()
    return entry

async def query_audit_log(
    session: AsyncSession,
    ctx: AccessContext | None,
    *,
    actor_id: str | None = None,
    action: str | None = None,
    target_id: str | None = None,
    since: datetime | None = None,
    until: datetime | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[AuditLog]:
    require_minimum_role(ctx, Role.ADMIN)
    q = select(AuditLog)
    if actor_id:
        q = q.where(AuditLog.actor_id == actor_id)
    if action:
        q = q.where(AuditLog.action == action)
    if target_id:
        q = q.where(AuditLog.target_id == target_id)
    if since:
        q = q.where(AuditLog.created_at >= since)
    if until:
        q = q.where(AuditLog.created_at < until)
    q = q.order_by(AuditLog.created_at.desc(), AuditLog.id).limit(max(1, min(limit, 500))).offset(max(0, offset))
    return list((await session.execute(q)).scalars().all())
