from __future__ import annotations
from datetime import datetime
from typing import Any
from uuid import UUID
from pydantic import BaseModel

class AuditEntryPublic(BaseModel):
    id: UUID
    actor_id: str
    action: str
    target_id: str | None = None
    meta: dict[str, Any] = {}
    created_at: datetime

    model_config = {"from_attributes": True}
