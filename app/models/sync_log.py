"""Sync attempt audit log model."""

import enum

from sqlalchemy import BigInteger, Column, DateTime, ForeignKey, String, Text
from sqlalchemy.orm import relationship

from app.config.database import Base
from app.models.project import IdType


class SyncType(str, enum.Enum):
    """What triggered a sync attempt."""
    MANUAL = "manual"
    SCHEDULED = "scheduled"


class SyncStatus(str, enum.Enum):
    """Sync attempt lifecycle: in_progress -> success | failed."""
    IN_PROGRESS = "in_progress"
    SUCCESS = "success"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not SyncStatus.IN_PROGRESS


class SyncLog(Base):
    """One row per sync attempt, mapped to `sync_logs` table."""

    __tablename__ = "sync_logs"

    id = Column(IdType, primary_key=True, autoincrement=True)
    repository_id = Column(IdType, ForeignKey("repositories.id"), nullable=True)
    sync_type = Column(String(20), nullable=False)
    status = Column(String(20), nullable=False)
    error_message = Column(Text, nullable=True)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    duration_ms = Column(BigInteger, nullable=True)

    repository = relationship("Project", backref="sync_logs")

    def __repr__(self):
        return f"<SyncLog {self.repository_id}:{self.status}>"
