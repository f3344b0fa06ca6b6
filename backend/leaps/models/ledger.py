from __future__ import annotations
import enum
import uuid
from datetime import datetime
from itertools import chain
from sqlalchemy.orm import Mapped, Session, mapped_column
from sqlalchemy import (
    CheckConstraint, DateTime, Enum, ForeignKey, Index, Integer, String, UniqueConstraint, Uuid, event, func,
)
from leaps.db import Base, JSONType, utcnow
from leaps.errors import Conflict


class LedgerSource(str, enum.Enum):
    FORM = "FORM"        # reviewed submission
    WEBHOOK = "WEBHOOK"  # learning platform completion
    MANUAL = "MANUAL"    # admin adjustment or reviewer-adjusted award


# external_source of review awards; webhook awards carry the provider name
REVIEW_SOURCE = "review"


class PointsLedger(Base):
    """
    Append-only points history. A user's balance is SUM(delta_points).
    (external_source, external_event_id) is the dedup key for anything that can be delivered
    twice; each source owns its own id namespace.
    """
    __tablename__ = "points_ledger"
    __append_only__ = True

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False)
    activity_code: Mapped[str] = mapped_column(String(16), ForeignKey("activities.code"), nullable=False)
    delta_points: Mapped[int] = mapped_column(Integer, nullable=False)
    source: Mapped[LedgerSource] = mapped_column(
        Enum(LedgerSource, name="ledger_source", native_enum=False, length=16), nullable=False
    )
    external_source: Mapped[str | None] = mapped_column(String(32), nullable=True)
    external_event_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    event_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    meta: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )

    __table_args__ = (
        UniqueConstraint("external_source", "external_event_id", name="uq_points_ledger_external_ref"),
        CheckConstraint(
            "external_event_id IS NULL OR external_source IS NOT NULL", name="ck_points_ledger_external_ref_has_source"
        ),
        Index("ix_points_ledger_user_event_time", "user_id", "event_time"),
        Index("ix_points_ledger_event_time", "event_time"),
    )


@event.listens_for(Session, "before_flush")
def _refuse_append_only_mutation(session, flush_context, instances):
    # ledger and audit rows are write-once; the migration adds triggers for the same rule
    for obj in chain(session.dirty, session.deleted):
        if not getattr(type(obj), "__append_only__", False):
            continue
        if obj in session.deleted or session.is_modified(obj, include_collections=False):
            raise Conflict(f"{type(obj).__tablename__} rows are append-only")
