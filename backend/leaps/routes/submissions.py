from __future__ import annotations
from uuid import UUID
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from leaps.access import AccessContext, with_context
from leaps.auth_deps import get_access_context
from leaps.db import get_session
from leaps.models.submission import SubmissionStatus
from leaps.schemas.ledger import LedgerEntryPublic, UserBalance
from leaps.schemas.submission import SubmissionCreate, SubmissionPublic
from leaps.services.ledger import user_balance, user_entries
from leaps.services.submissions import create_submission, list_submissions

router = APIRouter(tags=["submissions"])

@router.post("/submissions", response_model=SubmissionPublic, status_code=201)
async def create(
    body: SubmissionCreate,
    session: AsyncSession = Depends(get_session),
    ctx: AccessContext = Depends(get_access_context),
):
    s = await with_context(
        session, ctx,
        lambda sess, c: create_submission(sess, c, activity_code=body.activity_code, payload=body.payload, visibility=body.visibility),
    )
    return SubmissionPublic.model_validate(s)

@router.get("/submissions", response_model=list[SubmissionPublic])
async def list_(
    status: SubmissionStatus | None = Query(default=None),
    activity_code: str | None = Query(default=None),
    user_id: UUID | None = Query(default=None),
    cohort: str | None = Query(default=None),
    school: str | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    session: AsyncSession = Depends(get_session),
    ctx: AccessContext = Depends(get_access_context),
):
    rows = await with_context(
        session, ctx,
        lambda sess, c: list_submissions(
            sess, c, status=status, activity_code=activity_code, user_id=user_id,
            cohort=cohort, school=school, limit=limit, offset=offset,
        ),
    )
    return [SubmissionPublic.model_validate(s) for s in rows]

@router.get("/users/{user_id}/points", response_model=UserBalance)
async def points(
    user_id: UUID,
    limit: int = Query(default=100, ge=1, le=500),
    session: AsyncSession = Depends(get_session),
    ctx: AccessContext = Depends(get_access_context),
):
    async def op(sess: AsyncSession, c: AccessContext) -> UserBalance:
        entries = await user_entries(sess, c, user_id, limit=limit)
        total = await user_balance(sess, user_id)
        return UserBalance(
            user_id=user_id,
            total_points=total,
            entries=[LedgerEntryPublic.model_validate(e) for e in entries],
        )
    return await with_context(session, ctx, op)
