from __future__ import annotations
from fastapi import APIRouter, Depends, Request
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
import structlog
from leaps.config import settings
from leaps.db import get_session, utcnow

router = APIRouter(tags=["system"])
log = structlog.get_logger()

@router.get("/health")
async def health(request: Request, session: AsyncSession = Depends(get_session)):
    try:
        await session.execute(text("SELECT 1"))
        database = "ok"
    except SQLAlchemyError as e:
        log.warning("health_database_unreachable", error=str(e))
        database = "unreachable"
    return {
        "status": "ok" if database == "ok" else "degraded",
        "database": database,
        "env": settings.environment,
        "time": utcnow().isoformat(),
        "request_id": request.state.request_id,
    }

@router.get("/version")
async def version():
    return {"name": settings.app_name, "version": settings.app_version, "git_sha": settings.git_sha}
