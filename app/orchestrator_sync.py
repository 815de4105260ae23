"""Repository statistics sync orchestrator with per-project failure isolation."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from typing import Any, Awaitable, Callable, Optional

from app.config.database import SessionLocal
from app.config.settings import settings
from app.crawlers.github.client import GitHubStatsClient, sanitize_for_log, sanitize_log_extra
from app.crawlers.github.errors import ProjectInactiveError, ProjectNotFoundError
from app.crawlers.github.metrics_collector import MetricBundle, MetricsCollector
from app.models.sync_log import SyncStatus, SyncType
from app.services.commit_activity import aggregate_commit_activity
from app.services.snapshot_metrics import SnapshotMetrics
from app.services.snapshot_reconciler import SnapshotReconciler
from app.stores.project_store import ProjectStore, SQLAlchemyProjectStore, SyncCompletion, SyncLogEntry
from app.utils.helpers import truncate_string

logger = logging.getLogger(__name__)

MAX_ERROR_LENGTH = 2000


@dataclass(frozen=True, slots=True)
class ProjectRef:
    """Identity of a project, detached from the ORM session."""

    id: int
    owner: str
    name: str
    full_name: str

    @classmethod
    def from_model(cls, project: Any) -> "ProjectRef":
        return cls(
            id=int(project.id),
            owner=str(project.owner),
            name=str(project.name),
            full_name=str(project.full_name or f"{project.owner}/{project.name}"),
        )


@dataclass(slots=True)
class ProjectSyncOutcome:
    project: ProjectRef
    duration_ms: int
    metrics: Optional[SnapshotMetrics] = None
    error: Optional[str] = None
    degraded: list[str] = field(default_factory=list)
    commits_approximate: bool = False

    @property
    def success(self) -> bool:
        return self.error is None


@dataclass(frozen=True, slots=True)
class SyncFailure:
    project: str
    error: str


@dataclass(slots=True)
class BatchSyncResult:
    total: int = 0
    succeeded: int = 0
    failed: int = 0
    errors: list[SyncFailure] = field(default_factory=list)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    duration_ms: int = 0

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["started_at"] = self.started_at.isoformat() if self.started_at else None
        payload["completed_at"] = self.completed_at.isoformat() if self.completed_at else None
        return payload


@dataclass(slots=True)
class SingleSyncResult:
    project_id: int
    full_name: str
    duration_ms: int
    metrics: Optional[SnapshotMetrics] = None
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict[str, Any]:
        metrics = self.metrics.as_row() if self.metrics is not None else None
        if metrics and metrics.get("last_commit_date") is not None:
            metrics["last_commit_date"] = metrics["last_commit_date"].isoformat()
        return {
            "success": self.success,
            "repository": {"id": self.project_id, "full_name": self.full_name},
            "stats": metrics,
            "duration_ms": self.duration_ms,
            "error": self.error,
        }


class StatsSyncOrchestrator:
    """Runs the fetch -> aggregate -> reconcile -> log sequence for tracked projects.

    Projects are processed one at a time with a fixed pause between them so a
    full pass stays under the GitHub rate ceiling; only the metric queries of
    a single project run concurrently. A failing project is logged as
    `failed` and the batch moves on.
    """

    def __init__(
        self,
        *,
        session_factory: Callable[[], Any] = SessionLocal,
        store_factory: Callable[[], ProjectStore] | None = None,
        github_client_factory: Callable[[], Any] = GitHubStatsClient,
        collector_factory: Callable[[Any], Any] = MetricsCollector,
        delay_seconds: float | None = None,
        project_timeout_seconds: float | None = None,
        sleep: Callable[[float], Awaitable[Any]] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._store_factory = store_factory
        self._github_client_factory = github_client_factory
        self._collector_factory = collector_factory
        self._delay_seconds = float(settings.SYNC_DELAY_SECONDS if delay_seconds is None else delay_seconds)
        timeout = settings.SYNC_PROJECT_TIMEOUT_SECONDS if project_timeout_seconds is None else project_timeout_seconds
        self._project_timeout = float(timeout) if timeout and timeout > 0 else None
        self._sleep = sleep or asyncio.sleep
        self._clock = clock or (lambda: datetime.now(UTC))

    async def run_batch_sync(self, *, sync_type: SyncType = SyncType.SCHEDULED) -> BatchSyncResult:
        started_monotonic = time.monotonic()
        result = BatchSyncResult(started_at=self._clock())
        store = self._open_store()
        try:
            projects = [ProjectRef.from_model(project) for project in store.list_active_projects()]
            result.total = len(projects)
            logger.info(
                "Stats batch sync started",
                extra=sanitize_log_extra(sync_type=SyncType(sync_type).value, projects=len(projects)),
            )
            if not projects:
                return self._finish_batch(result, started_monotonic)

            async with self._github_client_factory() as client:
                collector = self._collector_factory(client)
                for index, project in enumerate(projects):
                    if index > 0 and self._delay_seconds > 0:
                        await self._sleep(self._delay_seconds)

                    outcome = await self._sync_project(store, collector, project, sync_type)
                    if outcome.success:
                        result.succeeded += 1
                    else:
                        result.failed += 1
                        result.errors.append(SyncFailure(project=project.full_name, error=outcome.error or "unknown error"))
        finally:
            store.close()

        return self._finish_batch(result, started_monotonic)

    async def run_single_sync(self, project_id: int, *, sync_type: SyncType = SyncType.MANUAL) -> SingleSyncResult:
        """Sync one project on demand.

        Raises `ProjectNotFoundError` / `ProjectInactiveError` before any log
        row is written; fetch or storage failures are reported in
        `SingleSyncResult.error` after the failed log row is recorded.
        """
        store = self._open_store()
        try:
            project = store.get_project(project_id)
            if project is None:
                raise ProjectNotFoundError(project_id)
            if not project.is_active:
                raise ProjectInactiveError(project_id)

            ref = ProjectRef.from_model(project)
            async with self._github_client_factory() as client:
                outcome = await self._sync_project(store, self._collector_factory(client), ref, sync_type)
        finally:
            store.close()

        return SingleSyncResult(
            project_id=outcome.project.id,
            full_name=outcome.project.full_name,
            duration_ms=outcome.duration_ms,
            metrics=outcome.metrics,
            error=outcome.error,
        )

    async def _sync_project(
        self,
        store: ProjectStore,
        collector: Any,
        project: ProjectRef,
        sync_type: SyncType,
    ) -> ProjectSyncOutcome:
        started_at = self._clock()
        started_monotonic = time.monotonic()
        log_id = self._start_log(store, project, sync_type, started_at)

        try:
            bundle = await self._fetch_with_deadline(collector, project)
            commits = aggregate_commit_activity(
                bundle.weekly_buckets,
                bundle.recent_commit_dates,
                bundle.pushed_at,
                started_at,
            )
            metrics = bundle.snapshot_metrics(commits)

            reconciler = SnapshotReconciler(store)
            plan = reconciler.reconcile(project.id, metrics, started_at.date())
            reconciler.apply(plan)
            store.update_last_synced(project.id, self._clock())

            duration_ms = self._elapsed_ms(started_monotonic)
            self._record_terminal(store, log_id, project, sync_type, started_at, SyncStatus.SUCCESS, duration_ms)
            store.commit()
        except Exception as exc:
            duration_ms = self._elapsed_ms(started_monotonic)
            error = truncate_string(sanitize_for_log(self._describe_error(exc), key="error"), MAX_ERROR_LENGTH)
            self._safe_rollback(store)
            logger.warning(
                "Stats sync failed for project",
                extra=sanitize_log_extra(repo=project.full_name, error=error, duration_ms=duration_ms),
            )
            self._record_failure(store, log_id, project, sync_type, started_at, error, duration_ms)
            return ProjectSyncOutcome(project=project, duration_ms=duration_ms, error=error)

        logger.info(
            "Stats sync succeeded for project",
            extra=sanitize_log_extra(
                repo=project.full_name,
                action=plan.action.value,
                duration_ms=duration_ms,
                degraded=list(bundle.degraded),
                commit_activity_pending=bundle.commit_activity_pending,
                commits_approximate=commits.is_approximate,
            ),
        )
        return ProjectSyncOutcome(
            project=project,
            duration_ms=duration_ms,
            metrics=metrics,
            degraded=list(bundle.degraded),
            commits_approximate=commits.is_approximate,
        )

    async def _fetch_with_deadline(self, collector: Any, project: ProjectRef) -> MetricBundle:
        fetch = collector.fetch_metrics(project.owner, project.name)
        if self._project_timeout is None:
            return await fetch
        try:
            return await asyncio.wait_for(fetch, timeout=self._project_timeout)
        except asyncio.TimeoutError as exc:
            raise TimeoutError(f"Metrics fetch for {project.full_name} exceeded {self._project_timeout:g}s") from exc

    def _start_log(self, store: ProjectStore, project: ProjectRef, sync_type: SyncType, started_at: datetime) -> int | None:
        """Write the in_progress row before any network call; failure here never blocks the fetch."""
        try:
            log_id = store.insert_sync_log(
                SyncLogEntry(
                    repository_id=project.id,
                    sync_type=sync_type,
                    status=SyncStatus.IN_PROGRESS,
                    started_at=started_at,
                )
            )
            store.commit()
            return log_id
        except Exception as exc:
            self._safe_rollback(store)
            logger.warning(
                "Could not write sync start log",
                extra=sanitize_log_extra(repo=project.full_name, error=str(exc)),
            )
            return None

    def _record_terminal(
        self,
        store: ProjectStore,
        log_id: int | None,
        project: ProjectRef,
        sync_type: SyncType,
        started_at: datetime,
        status: SyncStatus,
        duration_ms: int,
        error: str | None = None,
    ) -> None:
        completed_at = self._clock()
        if log_id is not None:
            try:
                store.update_sync_log(
                    log_id,
                    SyncCompletion(status=status, completed_at=completed_at, duration_ms=duration_ms, error_message=error),
                )
                return
            except LookupError:
                logger.warning(
                    "Sync start log vanished, inserting terminal entry",
                    extra=sanitize_log_extra(repo=project.full_name, log_id=log_id),
                )

        store.insert_sync_log(
            SyncLogEntry(
                repository_id=project.id,
                sync_type=sync_type,
                status=status,
                started_at=started_at,
                completed_at=completed_at,
                duration_ms=duration_ms,
                error_message=error,
            )
        )

    def _record_failure(
        self,
        store: ProjectStore,
        log_id: int | None,
        project: ProjectRef,
        sync_type: SyncType,
        started_at: datetime,
        error: str,
        duration_ms: int,
    ) -> None:
        try:
            self._record_terminal(store, log_id, project, sync_type, started_at, SyncStatus.FAILED, duration_ms, error)
            store.commit()
        except Exception as exc:
            self._safe_rollback(store)
            logger.error(
                "Could not write sync failure log",
                extra=sanitize_log_extra(repo=project.full_name, error=str(exc), sync_error=error),
            )

    def _open_store(self) -> ProjectStore:
        if self._store_factory is not None:
            return self._store_factory()
        return SQLAlchemyProjectStore(self._session_factory())

    def _finish_batch(self, result: BatchSyncResult, started_monotonic: float) -> BatchSyncResult:
        result.completed_at = self._clock()
        result.duration_ms = self._elapsed_ms(started_monotonic)
        logger.info(
            "Stats batch sync completed",
            extra=sanitize_log_extra(
                total=result.total,
                succeeded=result.succeeded,
                failed=result.failed,
                duration_ms=result.duration_ms,
            ),
        )
        return result

    @staticmethod
    def _safe_rollback(store: ProjectStore) -> None:
        try:
            store.rollback()
        except Exception as exc:
            logger.warning("Store rollback failed", extra=sanitize_log_extra(error=str(exc)))

    @staticmethod
    def _describe_error(exc: BaseException) -> str:
        message = str(exc).strip()
        return message or exc.__class__.__name__

    @staticmethod
    def _elapsed_ms(started_monotonic: float) -> int:
        return max(int((time.monotonic() - started_monotonic) * 1000), 0)
