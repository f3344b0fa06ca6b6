from __future__ import annotations
import uuid
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from leaps.config import settings
from leaps.errors import LeapsError
from leaps.logging_setup import configure_logging
from leaps.routes.system import router as system_router
from leaps.routes.submissions import router as submissions_router
from leaps.routes.reviews import router as reviews_router
from leaps.routes.webhooks import router as webhooks_router
from leaps.routes.analytics import router as analytics_router
from leaps.routes.admin import router as admin_router
import structlog

configure_logging()
log = structlog.get_logger()

@asynccontextmanager
async def lifespan(app: FastAPI):
    log.info("startup", env=settings.environment, version=settings.app_version, git_sha=settings.git_sha)
    yield
    log.info("shutdown")

app = FastAPI(
    title="LEAPS Points API",
    version=settings.app_version,
    lifespan=lifespan,
    description="Submission review, points ledger and leaderboards for the LEAPS educator program",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.environment == "dev" else settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(system_router)
app.include_router(submissions_router)
app.include_router(reviews_router)
app.include_router(webhooks_router)
app.include_router(analytics_router)
app.include_router(admin_router)

@app.exception_handler(LeapsError)
async def leaps_error_handler(request: Request, exc: LeapsError):
    level = log.warning if exc.status_code >= 500 else log.info
    level("request_failed", path=request.url.path, code=exc.code, error=exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

@app.middleware("http")
async def add_request_id(request: Request, call_next):
    rid = request.headers.get("x-request-id") or str(uuid.uuid4())
    request.state.request_id = rid
    structlog.contextvars.bind_contextvars(request_id=rid)
    try:
        response: Response = await call_next(request)
    finally:
        structlog.contextvars.clear_contextvars()
    response.headers["X-Request-ID"] = rid
    return response
