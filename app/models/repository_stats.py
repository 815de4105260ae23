"""Daily repository statistics snapshot model."""

from datetime import datetime

from sqlalchemy import BigInteger, Column, Date, DateTime, ForeignKey, Integer, UniqueConstraint
from sqlalchemy.orm import relationship

from app.config.database import Base
from app.models.project import IdType


class RepositoryStats(Base):
    """One statistics snapshot per project per calendar day, mapped to `repository_stats`."""

    __tablename__ = "repository_stats"

    id = Column(IdType, primary_key=True, autoincrement=True)
    repository_id = Column(IdType, ForeignKey("repositories.id"), nullable=False)
    snapshot_date = Column(Date, nullable=False)

    stars_count = Column(Integer, nullable=True)
    forks_count = Column(Integer, nullable=True)
    watchers_count = Column(Integer, nullable=True)
    open_issues_count = Column(Integer, nullable=True)
    closed_issues_count = Column(Integer, nullable=True)
    open_prs_count = Column(Integer, nullable=True)
    closed_prs_count = Column(Integer, nullable=True)
    commits_count = Column(Integer, nullable=True)
    branches_count = Column(Integer, nullable=True)
    releases_count = Column(Integer, nullable=True)
    contributors_count = Column(Integer, nullable=True)
    code_size_kb = Column(BigInteger, nullable=True)
    last_commit_date = Column(DateTime(timezone=True), nullable=True)
    commits_last_month = Column(Integer, nullable=True)
    commits_last_week = Column(Integer, nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    repository = relationship("Project", backref="stats")

    __table_args__ = (
        UniqueConstraint("repository_id", "snapshot_date", name="uk_repository_stats_daily"),
    )

    def __repr__(self):
        return f"<RepositoryStats {self.repository_id}:{self.snapshot_date}>"
