from __future__ import annotations
from datetime import datetime
from typing import Any
from uuid import UUID
from pydantic import BaseModel, Field
from leaps.models.activity import LEARN
from leaps.models.ledger import LedgerSource

class LedgerEntryPublic(BaseModel):
    id: UUID
    user_id: UUID
    activity_code: str
    delta_points: int
    source: LedgerSource
    external_source: str | None = None
    external_event_id: str | None = None
    event_time: datetime
    meta: dict[str, Any] = {}
    created_at: datetime

    model_config = {"from_attributes": True}

class UserBalance(BaseModel):
    user_id: UUID
    total_points: int
    entries: list[LedgerEntryPublic]

class PointAdjustment(BaseModel):
    user_id: UUID
    delta_points: int
    reason: str = Field(min_length=3, max_length=500)
    activity_code: str = LEARN
