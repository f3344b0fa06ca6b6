from __future__ import annotations
import uuid
from contextvars import ContextVar
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar
import structlog
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession
from leaps.db import atomic, is_postgres
from leaps.errors import AuthorizationError, Unauthenticated
from leaps.models.user import Role

log = structlog.get_logger()

T = TypeVar("T")

ROLE_LEVELS: dict[Role, int] = {
    Role.PARTICIPANT: 1,
    Role.REVIEWER: 2,
    Role.ADMIN: 3,
    Role.SUPERADMIN: 4,
}


@dataclass(frozen=True)
class AccessContext:
    """Identity of the caller for exactly one operation."""
    user_id: uuid.UUID
    role: Role
    cohort: str | None = None
    school: str | None = None

    @property
    def level(self) -> int:
        return ROLE_LEVELS[self.role]

    @property
    def actor_id(self) -> str:
        return str(self.user_id)


_current: ContextVar[AccessContext | None] = ContextVar("leaps_access_context", default=None)


def current_context() -> AccessContext | None:
    return _current.get()


def role_level(role: Role | str) -> int:
    return ROLE_LEVELS[Role(role)]


def require_context(ctx: AccessContext | None) -> AccessContext:
    if ctx is None:
        raise Unauthenticated("Authentication required")
    return ctx


def require_minimum_role(ctx: AccessContext | None, minimum: Role) -> AccessContext:
    ctx = require_context(ctx)
    if ctx.level < ROLE_LEVELS[minimum]:
        raise AuthorizationError(
            f"{minimum.value} role or higher required",
            details={"required_role": minimum.value, "role": ctx.role.value},
        )
    return ctx


def can_access_cohort(ctx: AccessContext | None, cohort: str | None) -> bool:
    if ctx is None:
        return False
    if ctx.level >= ROLE_LEVELS[Role.ADMIN]:
        return True
    return cohort is not None and ctx.cohort == cohort


def can_access_school(ctx: AccessContext | None, school: str | None) -> bool:
    if ctx is None:
        return False
    if ctx.level >= ROLE_LEVELS[Role.ADMIN]:
        return True
    return school is not None and ctx.school == school


def require_cohort_access(ctx: AccessContext | None, cohort: str) -> None:
    if not can_access_cohort(require_context(ctx), cohort):
        raise AuthorizationError("No access to cohort", details={"cohort": cohort})


def require_school_access(ctx: AccessContext | None, school: str) -> None:
    if not can_access_school(require_context(ctx), school):
        raise AuthorizationError("No access to school", details={"school": school})


async def bind_session_context(session: AsyncSession, ctx: AccessContext) -> None:
    """Expose the caller to row-level security policies for the current transaction only."""
    if not is_postgres(session):
        return
    await session.execute(
        text(
            "SELECT set_config('app.user_id', :uid, true), set_config('app.user_role', :role, true), "
            "set_config('app.user_cohort', :cohort, true), set_config('app.user_school', :school, true)"
        ),
        {"uid": str(ctx.user_id), "role": ctx.role.value, "cohort": ctx.cohort or "", "school": ctx.school or ""},
    )


async def with_context(
    session: AsyncSession,
    ctx: AccessContext | None,
    operation: Callable[[AsyncSession, AccessContext], Awaitable[T]],
) -> T:
    """
    Run `operation` in one transaction with `ctx` bound to the database session and
    to the log context. The binding is gone once this returns, success or not.
    """
    ctx = require_context(ctx)
    token = _current.set(ctx)
    try:
        with structlog.contextvars.bound_contextvars(actor_id=ctx.actor_id, role=ctx.role.value):
            async with atomic(session):
                await bind_session_context(session, ctx)
                return await operation(session, ctx)
    finally:
        _current.reset(token)
