from __future__ import annotations
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from leaps.config import settings
from leaps.db import utcnow
from leaps.errors import ValidationFailed
from leaps.models.activity import Activity, AMPLIFY, EXPLORE, LEARN, PRESENT
from leaps.models.badge import EarnedBadge, STARTER, IN_CLASS_INNOVATOR, COMMUNITY_VOICE
from leaps.models.submission import Submission, SubmissionStatus

AMPLIFY_PEER_CAP = 50
AMPLIFY_STUDENT_CAP = 200
AMPLIFY_WINDOW_DAYS = 7

# ---------- pricing ----------

def compute_points(activity_code: str, payload: dict[str, Any] | None, default_points: int) -> int:
    """Points a stage is worth before any reviewer adjustment."""
    payload = payload or {}
    if activity_code == AMPLIFY:
        peers = min(max(int(payload.get("peers_trained") or 0), 0), AMPLIFY_PEER_CAP)
        students = min(max(int(payload.get("students_trained") or 0), 0), AMPLIFY_STUDENT_CAP)
        points = peers * 2 + students
    else:
        points = int(default_points)
    if points < 0:
        raise ValidationFailed("Computed points must be non-negative", details={"activity_code": activity_code})
    return points

def base_points(activity: Activity, payload: dict[str, Any] | None) -> int:
    return compute_points(activity.code, payload, activity.default_points)

def adjustment_allowed(base: int, adjusted: int, band_pct: int | None = None) -> bool:
    """|adjusted - base| <= band_pct% of base, inclusive; integer maths so 20% of 10000 is exactly 2000."""
    band_pct = settings.point_adjustment_band_pct if band_pct is None else band_pct
    if adjusted < 0:
        return False
    return abs(adjusted - base) * 100 <= base * band_pct

def resolve_awarded_points(base: int, point_adjustment: int | None, band_pct: int | None = None) -> int:
    if point_adjustment is None:
        return base
    if not adjustment_allowed(base, point_adjustment, band_pct):
        band_pct = settings.point_adjustment_band_pct if band_pct is None else band_pct
        raise ValidationFailed(
            f"Point adjustment must stay within {band_pct}% of the base award",
            details={"base_points": base, "point_adjustment": point_adjustment, "band_pct": band_pct},
        )
    return int(point_adjustment)

# ---------- quota ----------

async def check_amplify_quota(
    session: AsyncSession,
    user_id: UUID,
    payload: dict[str, Any],
    *,
    quota: dict[str, Any] | None = None,
    now: datetime | None = None,
) -> None:
    """
    Rolling window cap on peers/students claimed across pending and approved AMPLIFY submissions.
    Limits come from the catalog row's quota; missing keys fall back to the program defaults.
    """
    quota = quota or {}
    window_days = int(quota.get("window_days", AMPLIFY_WINDOW_DAYS))
    peer_cap = int(quota.get("peers", AMPLIFY_PEER_CAP))
    student_cap = int(quota.get("students", AMPLIFY_STUDENT_CAP))
    now = now or utcnow()
    since = now - timedelta(days=window_days)
    rows = (await session.execute(
        select(Submission.payload).where(
            Submission.user_id == user_id,
            Submission.activity_code == AMPLIFY,
            Submission.status.in_([SubmissionStatus.PENDING, SubmissionStatus.APPROVED]),
            Submission.created_at >= since,
        )
    )).scalars().all()
    peers = sum(int((p or {}).get("peers_trained") or 0) for p in rows)
    students = sum(int((p or {}).get("students_trained") or 0) for p in rows)
    req_peers = int(payload.get("peers_trained") or 0)
    req_students = int(payload.get("students_trained") or 0)
    if peers + req_peers > peer_cap or students + req_students > student_cap:
        raise ValidationFailed(
            f"AMPLIFY limit is {peer_cap} peers and {student_cap} students per {window_days} days",
            details={
                "remaining_peers": max(0, peer_cap - peers),
                "remaining_students": max(0, student_cap - students),
            },
        )

# ---------- automatic badges ----------

async def _approved_codes(session: AsyncSession, user_id: UUID) -> set[str]:
    return set((await session.execute(
        select(Submission.activity_code)
        .where(Submission.user_id == user_id, Submission.status == SubmissionStatus.APPROVED)
        .distinct()
    )).scalars().all())

async def _completed_learn_tags(session: AsyncSession, user_id: UUID) -> set[str]:
    payloads = (await session.execute(
        select(Submission.payload).where(
            Submission.user_id == user_id,
            Submission.activity_code == LEARN,
            Submission.status == SubmissionStatus.APPROVED,
        )
    )).scalars().all()
    return {str(p.get("tag_name")).lower() for p in payloads if p and p.get("tag_name")}

async def grant_automatic_badges(session: AsyncSession, user_id: UUID) -> list[str]:
    """Sticky badges derived from approved work. Returns codes granted now."""
    have = set((await session.execute(
        select(EarnedBadge.badge_code).where(EarnedBadge.user_id == user_id)
    )).scalars().all())
    codes = await _approved_codes(session, user_id)

    due: list[str] = []
    if EXPLORE in codes and IN_CLASS_INNOVATOR not in have:
        due.append(IN_CLASS_INNOVATOR)
    if PRESENT in codes and COMMUNITY_VOICE not in have:
        due.append(COMMUNITY_VOICE)
    if STARTER not in have and LEARN in codes and settings.kajabi_learn_tags:
        if set(settings.kajabi_learn_tags) <= await _completed_learn_tags(session, user_id):
            due.append(STARTER)

    for code in due:
        session.add(EarnedBadge(user_id=user_id, badge_code=code))
    if due:
        await session.flush()
    return due
