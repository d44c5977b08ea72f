from datetime import datetime, timezone

from sqlalchemy import JSON, Column, DateTime, String

from rollcall.db.session import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LocalCollection(Base):
    """One entity collection (teachers, classes, students, attendance, users) stored as a JSON array."""

    __tablename__ = "local_collections"

    key = Column(String(64), primary_key=True)
    value = Column(JSON, nullable=False, default=list)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)
