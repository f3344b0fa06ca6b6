from __future__ import annotations
from uuid import UUID
import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from leaps.access import AccessContext, ROLE_LEVELS, require_minimum_role
from leaps.db import atomic
from leaps.errors import AuthorizationError, Conflict, NotFound
from leaps.models.badge import Badge, EarnedBadge
from leaps.models.user import Role, User
from leaps.services.audit import record_audit, ROLE_CHANGED, USER_SCOPE_CHANGED, BADGE_AWARDED

log = structlog.get_logger()

_UNSET = object()
_PRIVILEGED = {Role.ADMIN, Role.SUPERADMIN}


async def update_user_access(
    session: AsyncSession,
    ctx: AccessContext | None,
    user_id: UUID,
    *,
    role: Role | None = None,
    cohort: str | None | object = _UNSET,
    school: str | None | object = _UNSET,
) -> User:
    """
    Change role, cohort or school. Admin+ only.
    Only a superadmin may grant or touch admin-level accounts, and nobody demotes themselves.
    """
    ctx = require_minimum_role(ctx, Role.ADMIN)
    async with atomic(session):
        user = await session.get(User, user_id, with_for_update=True, populate_existing=True)
        if not user:
            raise NotFound("User not found", details={"user_id": str(user_id)})

        is_super = ctx.role == Role.SUPERADMIN
        if not is_super and (user.role in _PRIVILEGED or role in _PRIVILEGED):
            raise AuthorizationError("Only a superadmin can manage admin accounts")
        if role is not None and user.id == ctx.user_id and ROLE_LEVELS[role] < ROLE_LEVELS[user.role]:
            raise AuthorizationError("Cannot lower your own role")

        changes: dict[str, dict[str, str | None]] = {}
        if role is not None and role != user.role:
            changes["role"] = {"from": user.role.value, "to": role.value}
            user.role = role
        if cohort is not _UNSET and cohort != user.cohort:
            changes["cohort"] = {"from": user.cohort, "to": cohort}
            user.cohort = cohort
        if school is not _UNSET and school != user.school:
            changes["school"] = {"from": user.school, "to": school}
            user.school = school

        if changes:
            await session.flush()
            await record_audit(
                session,
                actor_id=ctx.actor_id,
                action=ROLE_CHANGED if "role" in changes else USER_SCOPE_CHANGED,
                target_id=str(user.id),
                meta={"changes": changes},
            )
    if changes:
        log.info("user_access_updated", user_id=str(user_id), fields=sorted(changes))
    return user


async def award_badge(
    session: AsyncSession,
    ctx: AccessContext | None,
    user_id: UUID,
    badge_code: str,
    *,
    reason: str | None = None,
) -> EarnedBadge:
    ctx = require_minimum_role(ctx, Role.ADMIN)
    async with atomic(session):
        if not await session.get(User, user_id):
            raise NotFound("User not found", details={"user_id": str(user_id)})
        badge = await session.get(Badge, badge_code)
        if not badge:
            raise NotFound("Badge not found", details={"badge_code": badge_code})
        exists = await session.scalar(
            select(EarnedBadge.id).where(EarnedBadge.user_id == user_id, EarnedBadge.badge_code == badge.code)
        )
        if exists:
            raise Conflict("Badge already earned", details={"user_id": str(user_id), "badge_code": badge.code})
        earned = EarnedBadge(user_id=user_id, badge_code=badge.code)
        session.add(earned)
        await session.flush()
        await record_audit(
            session,
            actor_id=ctx.actor_id,
            action=BADGE_AWARDED,
            target_id=str(user_id),
            meta={"badge_code": badge.code, "reason": reason},
        )
    log.info("badge_awarded", user_id=str(user_id), badge_code=badge_code)
    return earned
