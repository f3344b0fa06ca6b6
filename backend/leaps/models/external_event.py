from __future__ import annotations
import uuid
from datetime import datetime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, DateTime, ForeignKey, Uuid, func
from leaps.db import Base, JSONType, utcnow

# ExternalEvent.status
RECEIVED = "received"
PROCESSED = "processed"
UNMATCHED = "unmatched"
IGNORED = "ignored"


class ExternalEvent(Base):
    """Raw inbound completion event. processed_at stays NULL until points are granted."""
    __tablename__ = "external_events"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    source: Mapped[str] = mapped_column(String(32), nullable=False, default="kajabi")
    payload: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=RECEIVED, index=True)
    user_match: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey("users.id"), nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    received_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
