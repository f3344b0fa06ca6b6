from __future__ import annotations
import uuid
from datetime import datetime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Text, DateTime, ForeignKey, UniqueConstraint, Uuid, func
from leaps.db import Base, JSONType, utcnow

STARTER = "STARTER"
IN_CLASS_INNOVATOR = "IN_CLASS_INNOVATOR"
COMMUNITY_VOICE = "COMMUNITY_VOICE"


class Badge(Base):
    __tablename__ = "badges"

    code: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    criteria: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)


class EarnedBadge(Base):
    __tablename__ = "earned_badges"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False, index=True)
    badge_code: Mapped[str] = mapped_column(String(64), ForeignKey("badges.code"), nullable=False)
    earned_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )

    __table_args__ = (UniqueConstraint("user_id", "badge_code", name="uq_earned_badges_user_badge"),)
