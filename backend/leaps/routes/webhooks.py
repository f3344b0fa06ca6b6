from __future__ import annotations
from datetime import timedelta
from fastapi import APIRouter, Depends, Header, HTTPException, Request
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from leaps.config import settings
from leaps.db import get_session, utcnow
from leaps.schemas.webhook import CompletionEvent, IngestResult, KajabiTagEvent
from leaps.security import verify_webhook_signature
from leaps.services.ingest import ingest_event

router = APIRouter(prefix="/webhooks", tags=["webhooks"])
log = structlog.get_logger()

@router.post("/kajabi", response_model=IngestResult)
async def kajabi_webhook(
    request: Request,
    session: AsyncSession = Depends(get_session),
    x_kajabi_signature: str | None = Header(default=None),
):
    body = await request.body()
    if not verify_webhook_signature(body, x_kajabi_signature):
        if not (settings.allow_unsigned_webhooks and x_kajabi_signature is None):
            log.warning("kajabi_webhook_bad_signature")
            raise HTTPException(status_code=401, detail="Invalid signature")

    try:
        evt = KajabiTagEvent.model_validate_json(body)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=e.errors(include_url=False, include_context=False, include_input=False))

    if not evt.replay:
        if evt.occurred_at.tzinfo is None or abs(utcnow() - evt.occurred_at) > timedelta(minutes=settings.webhook_max_skew_minutes):
            raise HTTPException(status_code=400, detail="Event timestamp outside the accepted window")

    return await ingest_event(session, CompletionEvent.from_kajabi(evt))
