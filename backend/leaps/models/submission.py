from __future__ import annotations
import enum
import uuid
from datetime import datetime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Text, DateTime, Enum, ForeignKey, Index, Uuid, func
from leaps.db import Base, JSONType, utcnow


class SubmissionStatus(str, enum.Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class Visibility(str, enum.Enum):
    PRIVATE = "PRIVATE"
    PUBLIC = "PUBLIC"


class Submission(Base):
    """
    One stage submission by one educator.
    PENDING -> APPROVED | REJECTED. Terminal states are final; rows are never deleted.
    """
    __tablename__ = "submissions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False, index=True)
    activity_code: Mapped[str] = mapped_column(String(16), ForeignKey("activities.code"), nullable=False)
    status: Mapped[SubmissionStatus] = mapped_column(
        Enum(SubmissionStatus, name="submission_status", native_enum=False, length=16),
        nullable=False,
        default=SubmissionStatus.PENDING,
    )
    visibility: Mapped[Visibility] = mapped_column(
        Enum(Visibility, name="submission_visibility", native_enum=False, length=16),
        nullable=False,
        default=Visibility.PRIVATE,
    )
    payload: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)

    reviewer_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey("users.id"), nullable=True)
    review_note: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, server_default=func.now(), nullable=False
    )

    __table_args__ = (
        Index("ix_submissions_user_activity", "user_id", "activity_code"),
        Index("ix_submissions_status_created", "status", "created_at"),
    )
