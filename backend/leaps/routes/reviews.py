from __future__ import annotations
from uuid import UUID
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from leaps.access import AccessContext, with_context
from leaps.auth_deps import get_access_context
from leaps.db import get_session
from leaps.schemas.submission import BulkReviewRequest, BulkReviewResult, ReviewRequest, ReviewResult
from leaps.services.submissions import bulk_review, review_submission

router = APIRouter(prefix="/reviews", tags=["reviews"])

# declared before /{submission_id} so "bulk" is not parsed as an id
@router.post("/bulk", response_model=BulkReviewResult)
async def review_many(
    body: BulkReviewRequest,
    session: AsyncSession = Depends(get_session),
    ctx: AccessContext = Depends(get_access_context),
):
    return await with_context(
        session, ctx, lambda sess, c: bulk_review(sess, c, body.submission_ids, body.action, note=body.note)
    )

@router.post("/{submission_id}", response_model=ReviewResult)
async def review_one(
    submission_id: UUID,
    body: ReviewRequest,
    session: AsyncSession = Depends(get_session),
    ctx: AccessContext = Depends(get_access_context),
):
    return await with_context(
        session, ctx,
        lambda sess, c: review_submission(
            sess, c, submission_id, body.action, note=body.note, point_adjustment=body.point_adjustment
        ),
    )
