"""Storage contract for tracked projects, daily snapshots and sync logs."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, date, datetime, timedelta
from typing import Any, Optional, Protocol

from sqlalchemy import func

from app.models.project import Project
from app.models.repository_stats import RepositoryStats
from app.models.sync_log import SyncLog, SyncStatus, SyncType
from app.services.snapshot_reconciler import SnapshotReconciler
from app.utils.helpers import ensure_utc


@dataclass(slots=True)
class SyncLogEntry:
    """Values for a new `sync_logs` row."""

    repository_id: Optional[int]
    sync_type: SyncType
    status: SyncStatus
    started_at: datetime
    error_message: Optional[str] = None
    completed_at: Optional[datetime] = None
    duration_ms: Optional[int] = None


@dataclass(slots=True)
class SyncCompletion:
    """Terminal values written onto an existing `sync_logs` row."""

    status: SyncStatus
    completed_at: datetime
    duration_ms: int
    error_message: Optional[str] = None


class ProjectStore(Protocol):
    """Everything the sync engine reads from and writes to durable storage."""

    def list_active_projects(self) -> list[Project]: ...

    def get_project(self, project_id: int) -> Project | None: ...

    def get_snapshot(self, project_id: int, day: date) -> RepositoryStats | None: ...

    def insert_snapshot(self, day: date, project_id: int, values: dict[str, Any]) -> RepositoryStats: ...

    def update_snapshot(self, snapshot_id: int, values: dict[str, Any]) -> RepositoryStats: ...

    def upsert_snapshot(self, day: date, project_id: int, values: dict[str, Any]) -> RepositoryStats: ...

    def update_last_synced(self, project_id: int, timestamp: datetime) -> None: ...

    def insert_sync_log(self, entry: SyncLogEntry) -> int: ...

    def update_sync_log(self, log_id: int, completion: SyncCompletion) -> None: ...

    def commit(self) -> None: ...

    def rollback(self) -> None: ...

    def close(self) -> None: ...


class SQLAlchemyProjectStore:
    """SQLAlchemy-backed project store over a single session."""

    def __init__(self, session: Any) -> None:
        self._session = session

    def list_active_projects(self) -> list[Project]:
        return list(
            self._session.query(Project).filter(Project.is_active.is_(True)).order_by(Project.id).all()
        )

    def get_project(self, project_id: int) -> Project | None:
        return self._session.get(Project, project_id)

    def get_snapshot(self, project_id: int, day: date) -> RepositoryStats | None:
        return (
            self._session.query(RepositoryStats)
            .filter(RepositoryStats.repository_id == project_id, RepositoryStats.snapshot_date == day)
            .one_or_none()
        )

    def insert_snapshot(self, day: date, project_id: int, values: dict[str, Any]) -> RepositoryStats:
        row = RepositoryStats(repository_id=project_id, snapshot_date=day, **values)
        self._session.add(row)
        self._session.flush()
        return row

    def update_snapshot(self, snapshot_id: int, values: dict[str, Any]) -> RepositoryStats:
        row = self._session.get(RepositoryStats, snapshot_id)
        if row is None:
            raise LookupError(f"Snapshot {snapshot_id} not found")
        for key, value in values.items():
            setattr(row, key, value)
        self._session.flush()
        return row

    def upsert_snapshot(self, day: date, project_id: int, values: dict[str, Any]) -> RepositoryStats:
        """Write `values` as the day's snapshot, planned by the same reconciler the sync uses."""
        reconciler = SnapshotReconciler(self)
        return reconciler.apply(reconciler.plan_values(project_id, values, day))

    def update_last_synced(self, project_id: int, timestamp: datetime) -> None:
        project = self.get_project(project_id)
        if project is None:
            raise LookupError(f"Project {project_id} not found")
        project.last_synced_at = timestamp
        self._session.flush()

    def insert_sync_log(self, entry: SyncLogEntry) -> int:
        row = SyncLog(
            repository_id=entry.repository_id,
            sync_type=SyncType(entry.sync_type).value,
            status=SyncStatus(entry.status).value,
            error_message=entry.error_message,
            started_at=entry.started_at,
            completed_at=entry.completed_at,
            duration_ms=entry.duration_ms,
        )
        self._session.add(row)
        self._session.flush()
        return int(row.id)

    def update_sync_log(self, log_id: int, completion: SyncCompletion) -> None:
        row = self._session.get(SyncLog, log_id)
        if row is None:
            raise LookupError(f"Sync log {log_id} not found")
        row.status = SyncStatus(completion.status).value
        row.completed_at = completion.completed_at
        row.duration_ms = completion.duration_ms
        row.error_message = completion.error_message
        self._session.flush()

    def list_recent_sync_logs(self, limit: int = 50) -> list[SyncLog]:
        return list(
            self._session.query(SyncLog).order_by(SyncLog.started_at.desc(), SyncLog.id.desc()).limit(limit).all()
        )

    def get_snapshot_history(self, project_id: int, *, days: int = 30, today: date | None = None) -> list[RepositoryStats]:
        start = (today or datetime.now(UTC).date()) - timedelta(days=days)
        return list(
            self._session.query(RepositoryStats)
            .filter(RepositoryStats.repository_id == project_id, RepositoryStats.snapshot_date >= start)
            .order_by(RepositoryStats.snapshot_date.asc())
            .all()
        )

    def get_last_sync_time(self) -> datetime | None:
        """Completion time of the latest successful sync, else the latest `last_synced_at`."""
        completed = (
            self._session.query(func.max(SyncLog.completed_at))
            .filter(SyncLog.status == SyncStatus.SUCCESS.value)
            .scalar()
        )
        if completed is not None:
            return ensure_utc(completed)
        return ensure_utc(self._session.query(func.max(Project.last_synced_at)).scalar())

    def commit(self) -> None:
        self._session.commit()

    def rollback(self) -> None:
        self._session.rollback()

    def close(self) -> None:
        self._session.close()
