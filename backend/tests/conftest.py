from __future__ import annotations
import os

# settings are read at import time
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("KAJABI_WEBHOOK_SECRET", "test-webhook-secret")
os.environ.setdefault("ENVIRONMENT", "test")

import uuid
from datetime import datetime, timezone
import httpx
import pytest
import pytest_asyncio
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import async_sessionmaker

from leaps.access import AccessContext
from leaps.db import Base, get_session, make_engine
from leaps.main import app
from leaps.models.activity import Activity
from leaps.models.badge import Badge
from leaps.models.ledger import LedgerSource
from leaps.models.submission import Submission, SubmissionStatus, Visibility
from leaps.models.user import Role, User
import leaps.models.audit  # noqa: F401  register tables
import leaps.models.external_event  # noqa: F401
import leaps.models.aggregates  # noqa: F401
from leaps.security import make_access_token
from leaps.services.ledger import append_entry

ACTIVITIES = [
    ("LEARN", "Learn", 20, None),
    ("EXPLORE", "Explore", 50, None),
    ("AMPLIFY", "Amplify", 0, {"window_days": 7, "peers": 50, "students": 200}),
    ("PRESENT", "Present", 20, None),
    ("SHINE", "Shine", 0, None),
    # large base so the 20% band can be checked on exact integers
    ("BIG", "Big test stage", 10000, None),
]
BADGES = ["STARTER", "IN_CLASS_INNOVATOR", "COMMUNITY_VOICE"]

@pytest_asyncio.fixture
async def engine(tmp_path):
    eng = make_engine(f"sqlite+aiosqlite:///{tmp_path / 'leaps.db'}")
    # WAL lets a test's open read session coexist with fixture writes on other connections
    async with eng.connect() as conn:
        await conn.run_sync(lambda c: c.connection.dbapi_connection.execute("PRAGMA journal_mode=WAL"))
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()

@pytest_asyncio.fixture
async def session_factory(engine):
    factory = async_sessionmaker(engine, expire_on_commit=False)
    async with factory() as s:
        async with s.begin():
            s.add_all([Activity(code=c, name=n, default_points=p, quota=q) for (c, n, p, q) in ACTIVITIES])
            s.add_all([Badge(code=b, name=b.title(), criteria={}) for b in BADGES])
    return factory

@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as s:
        yield s

@pytest_asyncio.fixture
async def make_user(session_factory):
    async def _make(
        role: Role = Role.PARTICIPANT,
        *,
        cohort: str | None = None,
        school: str | None = None,
        email: str | None = None,
        kajabi_contact_id: str | None = None,
        handle: str | None = None,
    ) -> User:
        suffix = uuid.uuid4().hex[:8]
        u = User(
            handle=handle or f"user_{suffix}",
            name=f"User {suffix}",
            email=(email or f"{suffix}@example.com").lower(),
            role=role,
            cohort=cohort,
            school=school,
            kajabi_contact_id=kajabi_contact_id,
        )
        async with session_factory() as s:
            async with s.begin():
                s.add(u)
        return u
    return _make

@pytest_asyncio.fixture
async def make_submission(session_factory):
    async def _make(
        user: User,
        activity_code: str = "LEARN",
        *,
        payload: dict | None = None,
        status: SubmissionStatus = SubmissionStatus.PENDING,
    ) -> Submission:
        s = Submission(
            user_id=user.id,
            activity_code=activity_code,
            status=status,
            visibility=Visibility.PRIVATE,
            payload=payload or {},
        )
        async with session_factory() as sess:
            async with sess.begin():
                sess.add(s)
        return s
    return _make

@pytest_asyncio.fixture
async def give_points(session_factory):
    async def _give(user: User, points: int, *, at: datetime | None = None, activity_code: str = "LEARN"):
        async with session_factory() as s:
            async with s.begin():
                return await append_entry(
                    s,
                    user_id=user.id,
                    activity_code=activity_code,
                    delta_points=points,
                    source=LedgerSource.MANUAL,
                    event_time=at or datetime.now(timezone.utc),
                )
    return _give

def _ctx_for(user: User) -> AccessContext:
    return AccessContext(user_id=user.id, role=user.role, cohort=user.cohort, school=user.school)

@pytest.fixture
def ctx_for():
    return _ctx_for

@pytest.fixture
def auth_header():
    def _header(user: User) -> dict[str, str]:
        token = make_access_token(str(user.id), role=user.role.value, cohort=user.cohort, school=user.school)
        return {"Authorization": f"Bearer {token}"}
    return _header

@pytest_asyncio.fixture
async def client(session_factory):
    async def _override():
        async with session_factory() as s:
            yield s
    app.dependency_overrides[get_session] = _override
    async with AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()

@pytest.fixture
def now():
    return datetime.now(timezone.utc)
