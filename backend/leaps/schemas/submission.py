from __future__ import annotations
from datetime import date, datetime
from typing import Any, Literal
from uuid import UUID
from pydantic import BaseModel, Field, HttpUrl, ValidationError
from leaps.errors import ValidationFailed
from leaps.models.activity import LEARN, EXPLORE, AMPLIFY, PRESENT, SHINE
from leaps.models.submission import SubmissionStatus, Visibility

# ---------- per-stage payloads ----------

class LearnPayload(BaseModel):
    provider: Literal["SPL", "ILS"]
    course_name: str = Field(min_length=2)
    completed_at: date
    certificate_url: HttpUrl | None = None

class ExplorePayload(BaseModel):
    reflection: str = Field(min_length=150)
    class_date: date
    evidence_url: HttpUrl | None = None

class AmplifyPayload(BaseModel):
    peers_trained: int = Field(ge=0, le=50)
    students_trained: int = Field(ge=0, le=200)
    session_date: date
    notes: str | None = None

class PresentPayload(BaseModel):
    linkedin_url: HttpUrl
    caption: str = Field(min_length=10)

class ShinePayload(BaseModel):
    idea_title: str = Field(min_length=4)
    idea_summary: str = Field(min_length=50)

PAYLOAD_MODELS: dict[str, type[BaseModel]] = {
    LEARN: LearnPayload,
    EXPLORE: ExplorePayload,
    AMPLIFY: AmplifyPayload,
    PRESENT: PresentPayload,
    SHINE: ShinePayload,
}

def validate_payload(activity_code: str, payload: dict[str, Any]) -> dict[str, Any]:
    """Validate against the stage schema; returns the JSON-safe normalized payload."""
    model = PAYLOAD_MODELS.get(activity_code)
    if model is None:
        raise ValidationFailed(f"Unknown activity: {activity_code}")
    try:
        return model.model_validate(payload).model_dump(mode="json")
    except ValidationError as e:
        raise ValidationFailed(
            f"Invalid {activity_code} payload",
            details={"errors": e.errors(include_url=False, include_context=False, include_input=False)},
        )

# ---------- API shapes ----------

class SubmissionCreate(BaseModel):
    activity_code: str
    payload: dict[str, Any]
    visibility: Visibility = Visibility.PRIVATE

class SubmissionPublic(BaseModel):
    id: UUID
    user_id: UUID
    activity_code: str
    status: SubmissionStatus
    visibility: Visibility
    payload: dict[str, Any]
    reviewer_id: UUID | None = None
    review_note: str | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}

ReviewActionLiteral = Literal["approve", "reject"]

class ReviewRequest(BaseModel):
    action: ReviewActionLiteral
    note: str | None = Field(default=None, max_length=2000)
    point_adjustment: int | None = None

class BulkReviewRequest(BaseModel):
    submission_ids: list[UUID] = Field(min_length=1)
    action: ReviewActionLiteral
    note: str | None = Field(default=None, max_length=2000)

class ReviewResult(BaseModel):
    submission_id: UUID
    status: SubmissionStatus
    points_awarded: int | None = None
    ledger_entry_id: UUID | None = None
    badges_granted: list[str] = []

class BulkReviewResult(BaseModel):
    action: ReviewActionLiteral
    processed: int
    results: list[ReviewResult]
