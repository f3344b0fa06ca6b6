from __future__ import annotations
import asyncio
import structlog
from sqlalchemy.ext.asyncio import async_sessionmaker
from leaps.db import SessionLocal
from leaps.services.aggregates import refresh, should_refresh

log = structlog.get_logger()

async def _run(view_name: str | None, force: bool, session_factory: async_sessionmaker | None = None) -> list[dict]:
    factory = session_factory or SessionLocal
    if not force:
        async with factory() as session:
            probe = await should_refresh(session, view_name)
        if not probe.should_refresh:
            log.info("aggregate_refresh_skipped", view_name=view_name or "all", staleness_minutes=probe.staleness_minutes)
            return []
    results = await refresh(view_name, session_factory=factory)
    failed = [r.view_name for r in results if not r.success]
    if failed:
        log.warning("aggregate_refresh_partial", failed=failed)
    return [r.model_dump() for r in results]

def refresh_aggregates(view_name: str | None = None, force: bool = False) -> list[dict]:
    """Scheduler entry point (cron / RQ). Skips work while snapshots are fresh unless forced."""
    return asyncio.run(_run(view_name, force))
