from __future__ import annotations
from uuid import UUID
from pydantic import BaseModel, Field
from leaps.models.user import Role

class UserAccessUpdate(BaseModel):
    role: Role | None = None
    cohort: str | None = Field(default=None, max_length=128)
    school: str | None = Field(default=None, max_length=255)

class UserPublic(BaseModel):
    id: UUID
    handle: str
    name: str
    role: Role
    cohort: str | None = None
    school: str | None = None

    model_config = {"from_attributes": True}

class BadgeAward(BaseModel):
    user_id: UUID
    badge_code: str
    reason: str | None = Field(default=None, max_length=500)

class EarnedBadgePublic(BaseModel):
    id: UUID
    user_id: UUID
    badge_code: str

    model_config = {"from_attributes": True}
