"""Database models"""

from app.models.project import Project
from app.models.repository_stats import RepositoryStats
from app.models.sync_log import SyncLog, SyncStatus, SyncType

__all__ = [
    "Project",
    "RepositoryStats",
    "SyncLog",
    "SyncStatus",
    "SyncType",
]
