"""Per-identity record of completed surveys."""
from __future__ import annotations

from datetime import datetime, UTC

from sqlalchemy import Column, DateTime, Integer, JSON, String

from rewards_backend.database import Base

STORAGE_KEY_PREFIX = "completed_surveys"


def build_storage_key(user_id) -> str:
    """Namespace the completion record by identity so users never share a set."""
    return f"{STORAGE_KEY_PREFIX}:{user_id}"


class CompletionRecord(Base):
    """Ordered, duplicate-free list of survey ids a user has completed."""

    __tablename__ = "survey_completion_records"

    storage_key = Column(String(128), primary_key=True)
    survey_ids = Column(JSON, nullable=False, default=list)
    version = Column(Integer, nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )

    # Every UPDATE is conditional on the version it read; a concurrent writer makes it match no row
    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<CompletionRecord(storage_key={self.storage_key}, surveys={len(self.survey_ids or [])})>"
