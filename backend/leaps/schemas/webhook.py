from __future__ import annotations
import hashlib
from datetime import datetime
from typing import Any
from uuid import UUID
from pydantic import BaseModel, EmailStr, Field, field_validator, model_validator
from leaps.models.activity import LEARN
from leaps.models.ledger import REVIEW_SOURCE

class KajabiContact(BaseModel):
    id: str | None = None
    email: EmailStr | None = None
    name: str | None = None

class KajabiTagEvent(BaseModel):
    """Inbound 'tag added' notification from Kajabi."""
    event_id: str | None = Field(default=None, max_length=255)
    event_type: str = "contact.tagged"
    contact: KajabiContact
    tag: str
    occurred_at: datetime
    replay: bool = False

    @model_validator(mode="after")
    def _fill_event_id(self):
        # Kajabi omits ids on some deliveries; derive a stable one so retries dedupe
        if not self.event_id:
            raw = f"{self.contact.id or ''}|{(self.contact.email or '').lower()}|{self.tag.lower()}|{self.occurred_at.isoformat()}"
            self.event_id = "kajabi_" + hashlib.sha256(raw.encode()).hexdigest()[:32]
        return self

class CompletionEvent(BaseModel):
    """Already-validated external completion, as consumed by the ingestor."""
    id: str = Field(min_length=1, max_length=255)
    source: str = "kajabi"
    activity_code: str = LEARN
    contact_id: str | None = None
    email: str | None = None
    tag: str | None = None
    occurred_at: datetime
    payload: dict[str, Any] = {}

    @field_validator("source")
    @classmethod
    def _not_review_source(cls, v: str) -> str:
        if v == REVIEW_SOURCE:
            raise ValueError(f"'{REVIEW_SOURCE}' is reserved for review awards")
        return v

    @classmethod
    def from_kajabi(cls, evt: KajabiTagEvent) -> "CompletionEvent":
        return cls(
            id=evt.event_id,
            source="kajabi",
            contact_id=evt.contact.id,
            email=evt.contact.email,
            tag=evt.tag.strip().lower(),
            occurred_at=evt.occurred_at,
            payload=evt.model_dump(mode="json"),
        )

class IngestResult(BaseModel):
    event_id: str
    status: str  # granted | duplicate | unmatched | ignored
    user_id: UUID | None = None
    ledger_entry_id: UUID | None = None
    submission_id: UUID | None = None
    points: int | None = None
