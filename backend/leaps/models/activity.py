from __future__ import annotations
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Integer
from leaps.db import Base, JSONType

# Stage codes, in program order
LEARN = "LEARN"
EXPLORE = "EXPLORE"
AMPLIFY = "AMPLIFY"
PRESENT = "PRESENT"
SHINE = "SHINE"
ACTIVITY_CODES = (LEARN, EXPLORE, AMPLIFY, PRESENT, SHINE)


class Activity(Base):
    """Stage catalog. Seeded by migration, read-only at runtime."""
    __tablename__ = "activities"

    code: Mapped[str] = mapped_column(String(16), primary_key=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    default_points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # e.g. AMPLIFY: {"window_days": 7, "peers": 50, "students": 200}
    quota: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
