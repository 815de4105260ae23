from __future__ import annotations

import asyncio
import time
from datetime import date, timedelta
from typing import Any

import pytest

from app.crawlers.github.errors import ProjectInactiveError, ProjectNotFoundError
from app.models.project import Project
from app.models.repository_stats import RepositoryStats
from app.models.sync_log import SyncLog, SyncStatus, SyncType
from app.orchestrator_sync import StatsSyncOrchestrator
from app.stores.project_store import SQLAlchemyProjectStore
from stats_fakes import NOW, FakeStatsClient, descriptor, failed

TODAY = date(2026, 3, 10)


class FlakyStore(SQLAlchemyProjectStore):
    """SQLAlchemy store with switchable write failures."""

    def __init__(self, session: Any, *, fail_start_log: bool = False, fail_snapshot: bool = False) -> None:
        super().__init__(session)
        self.fail_start_log = fail_start_log
        self.fail_snapshot = fail_snapshot

    def insert_sync_log(self, entry):
        if self.fail_start_log and entry.status == SyncStatus.IN_PROGRESS:
            raise RuntimeError("sync_logs is locked")
        return super().insert_sync_log(entry)

    def insert_snapshot(self, day, project_id, values):
        if self.fail_snapshot:
            raise RuntimeError("disk full")
        return super().insert_snapshot(day, project_id, values)


def _orchestrator(session_factory, client: FakeStatsClient, **kwargs: Any) -> StatsSyncOrchestrator:
    options: dict[str, Any] = {
        "session_factory": session_factory,
        "github_client_factory": lambda: client,
        "delay_seconds": 0,
        "project_timeout_seconds": 0,
        "clock": lambda: NOW,
    }
    options.update(kwargs)
    return StatsSyncOrchestrator(**options)


def _snapshots(session_factory, project_id: int) -> list[RepositoryStats]:
    db = session_factory()
    try:
        return db.query(RepositoryStats).filter(RepositoryStats.repository_id == project_id).all()
    finally:
        db.close()


def _logs(session_factory, project_id: int) -> list[SyncLog]:
    db = session_factory()
    try:
        return db.query(SyncLog).filter(SyncLog.repository_id == project_id).order_by(SyncLog.id).all()
    finally:
        db.close()


def test_batch_sync_persists_one_snapshot_with_aggregated_commits(session_factory, add_project) -> None:
    project_id = add_project("acme/demo")
    client = FakeStatsClient({"acme/demo": descriptor("acme/demo")})

    result = asyncio.run(_orchestrator(session_factory, client).run_batch_sync())

    assert (result.total, result.succeeded, result.failed) == (1, 1, 0)
    assert result.errors == []
    rows = _snapshots(session_factory, project_id)
    assert len(rows) == 1
    snapshot = rows[0]
    assert snapshot.snapshot_date == TODAY
    assert snapshot.stars_count == 120
    assert snapshot.branches_count == 2
    assert snapshot.closed_issues_count == 90
    assert (snapshot.commits_count, snapshot.commits_last_month, snapshot.commits_last_week) == (12, 7, 7)


def test_second_sync_on_same_day_updates_the_existing_snapshot(session_factory, add_project) -> None:
    project_id = add_project("acme/demo")
    client = FakeStatsClient({"acme/demo": descriptor("acme/demo")})
    orchestrator = _orchestrator(session_factory, client)

    asyncio.run(orchestrator.run_batch_sync())
    client.repos["acme/demo"] = descriptor("acme/demo", stargazers_count=121)
    asyncio.run(orchestrator.run_batch_sync())

    rows = _snapshots(session_factory, project_id)
    assert len(rows) == 1
    assert rows[0].stars_count == 121
    assert [log.status for log in _logs(session_factory, project_id)] == ["success", "success"]


def test_failing_project_does_not_stop_the_batch(session_factory, add_project) -> None:
    good_id = add_project("acme/good")
    gone_id = add_project("acme/gone")
    late_id = add_project("acme/late")
    client = FakeStatsClient(
        {"acme/good": descriptor("acme/good"), "acme/late": descriptor("acme/late")}
    )

    result = asyncio.run(_orchestrator(session_factory, client).run_batch_sync())

    assert (result.total, result.succeeded, result.failed) == (3, 2, 1)
    assert [failure.project for failure in result.errors] == ["acme/gone"]
    assert "404" in result.errors[0].error
    assert len(_snapshots(session_factory, good_id)) == 1
    assert _snapshots(session_factory, gone_id) == []
    assert len(_snapshots(session_factory, late_id)) == 1

    gone_logs = _logs(session_factory, gone_id)
    assert [log.status for log in gone_logs] == ["failed"]
    assert gone_logs[0].error_message


def test_degraded_sub_queries_still_count_as_success(session_factory, add_project) -> None:
    project_id = add_project("acme/demo")
    client = FakeStatsClient({"acme/demo": descriptor("acme/demo")})
    client.overrides[("acme/demo", "list_branches")] = failed(502)
    client.overrides[("acme/demo", "search:is:issue is:open")] = RuntimeError("search down")

    result = asyncio.run(_orchestrator(session_factory, client).run_batch_sync())

    assert result.succeeded == 1
    snapshot = _snapshots(session_factory, project_id)[0]
    assert snapshot.branches_count == 0
    assert snapshot.open_issues_count == 0
    assert snapshot.releases_count == 1


def test_each_attempt_leaves_exactly_one_terminal_log_row(session_factory, add_project) -> None:
    ok_id = add_project("acme/ok")
    bad_id = add_project("acme/bad")
    client = FakeStatsClient({"acme/ok": descriptor("acme/ok")})

    asyncio.run(_orchestrator(session_factory, client).run_batch_sync())

    for project_id, expected in ((ok_id, "success"), (bad_id, "failed")):
        logs = _logs(session_factory, project_id)
        assert len(logs) == 1
        log = logs[0]
        assert log.status == expected
        assert log.sync_type == SyncType.SCHEDULED.value
        assert log.completed_at is not None
        assert log.completed_at >= log.started_at
        assert log.duration_ms >= 0


def test_successful_sync_marks_project_as_synced(session_factory, add_project) -> None:
    project_id = add_project("acme/demo")
    client = FakeStatsClient({"acme/demo": descriptor("acme/demo")})

    asyncio.run(_orchestrator(session_factory, client).run_batch_sync())

    db = session_factory()
    project = db.get(Project, project_id)
    assert project.last_synced_at is not None
    db.close()


def test_pause_is_applied_between_consecutive_projects(session_factory, add_project) -> None:
    for name in ("acme/a", "acme/b", "acme/c"):
        add_project(name)
    client = FakeStatsClient({name: descriptor(name) for name in ("acme/a", "acme/b", "acme/c")})
    pauses: list[float] = []

    async def record_sleep(seconds: float) -> None:
        pauses.append(seconds)

    orchestrator = _orchestrator(session_factory, client, delay_seconds=1.5, sleep=record_sleep)
    result = asyncio.run(orchestrator.run_batch_sync())

    assert result.succeeded == 3
    assert pauses == [1.5, 1.5]


def test_real_pause_spreads_project_starts(session_factory, add_project) -> None:
    for name in ("acme/a", "acme/b", "acme/c"):
        add_project(name)
    client = FakeStatsClient({name: descriptor(name) for name in ("acme/a", "acme/b", "acme/c")})

    started = time.monotonic()
    result = asyncio.run(_orchestrator(session_factory, client, delay_seconds=0.05).run_batch_sync())
    elapsed = time.monotonic() - started

    assert result.succeeded == 3
    assert elapsed >= 0.1


def test_empty_batch_reports_zero_totals(session_factory) -> None:
    client = FakeStatsClient({})

    result = asyncio.run(_orchestrator(session_factory, client).run_batch_sync())

    assert (result.total, result.succeeded, result.failed) == (0, 0, 0)
    assert result.completed_at is not None
    assert client.calls == []


def test_inactive_projects_are_not_synced_in_batch(session_factory, add_project) -> None:
    add_project("acme/live")
    paused_id = add_project("acme/paused", is_active=False)
    client = FakeStatsClient({"acme/live": descriptor("acme/live"), "acme/paused": descriptor("acme/paused")})

    result = asyncio.run(_orchestrator(session_factory, client).run_batch_sync())

    assert result.total == 1
    assert {full_name for full_name, _ in client.calls} == {"acme/live"}
    assert _logs(session_factory, paused_id) == []


def test_single_sync_returns_stats_and_writes_manual_log(session_factory, add_project) -> None:
    project_id = add_project("acme/demo")
    client = FakeStatsClient({"acme/demo": descriptor("acme/demo")})

    result = asyncio.run(_orchestrator(session_factory, client).run_single_sync(project_id))

    assert result.success is True
    assert result.metrics.stars_count == 120
    assert result.metrics.last_commit_date == NOW - timedelta(days=1)
    payload = result.to_dict()
    assert payload["repository"] == {"id": project_id, "full_name": "acme/demo"}
    assert payload["stats"]["commits_last_week"] == 7
    assert isinstance(payload["stats"]["last_commit_date"], str)
    assert [log.sync_type for log in _logs(session_factory, project_id)] == ["manual"]


def test_single_sync_rejects_unknown_and_inactive_projects(session_factory, add_project) -> None:
    paused_id = add_project("acme/paused", is_active=False)
    client = FakeStatsClient({"acme/paused": descriptor("acme/paused")})
    orchestrator = _orchestrator(session_factory, client)

    with pytest.raises(ProjectNotFoundError):
        asyncio.run(orchestrator.run_single_sync(9999))
    with pytest.raises(ProjectInactiveError):
        asyncio.run(orchestrator.run_single_sync(paused_id))

    assert client.calls == []
    assert _logs(session_factory, paused_id) == []


def test_single_sync_reports_fetch_failure_in_result(session_factory, add_project) -> None:
    project_id = add_project("acme/gone")
    client = FakeStatsClient({})

    result = asyncio.run(_orchestrator(session_factory, client).run_single_sync(project_id))

    assert result.success is False
    assert "acme/gone" in result.error
    assert result.to_dict()["stats"] is None
    assert [log.status for log in _logs(session_factory, project_id)] == ["failed"]


def test_start_log_failure_still_records_a_terminal_entry(session_factory, add_project) -> None:
    project_id = add_project("acme/demo")
    client = FakeStatsClient({"acme/demo": descriptor("acme/demo")})
    orchestrator = _orchestrator(
        session_factory,
        client,
        store_factory=lambda: FlakyStore(session_factory(), fail_start_log=True),
    )

    result = asyncio.run(orchestrator.run_batch_sync())

    assert result.succeeded == 1
    logs = _logs(session_factory, project_id)
    assert len(logs) == 1
    assert logs[0].status == "success"
    assert logs[0].completed_at is not None
    assert len(_snapshots(session_factory, project_id)) == 1


def test_snapshot_write_failure_rolls_back_and_logs_failed(session_factory, add_project) -> None:
    project_id = add_project("acme/demo")
    client = FakeStatsClient({"acme/demo": descriptor("acme/demo")})
    orchestrator = _orchestrator(
        session_factory,
        client,
        store_factory=lambda: FlakyStore(session_factory(), fail_snapshot=True),
    )

    result = asyncio.run(orchestrator.run_batch_sync())

    assert result.failed == 1
    assert result.errors[0].error == "disk full"
    assert _snapshots(session_factory, project_id) == []
    logs = _logs(session_factory, project_id)
    assert [log.status for log in logs] == ["failed"]
    assert logs[0].error_message == "disk full"

    db = session_factory()
    assert db.get(Project, project_id).last_synced_at is None
    db.close()


def test_slow_fetch_exceeding_deadline_fails_the_project(session_factory, add_project) -> None:
    project_id = add_project("acme/slow")
    client = FakeStatsClient({"acme/slow": descriptor("acme/slow")})

    class StalledCollector:
        def __init__(self, _: Any) -> None:
            pass

        async def fetch_metrics(self, owner: str, repo: str) -> Any:
            await asyncio.sleep(5)

    orchestrator = _orchestrator(
        session_factory,
        client,
        collector_factory=StalledCollector,
        project_timeout_seconds=0.05,
    )

    result = asyncio.run(orchestrator.run_batch_sync())

    assert result.failed == 1
    assert "exceeded" in result.errors[0].error
    assert [log.status for log in _logs(session_factory, project_id)] == ["failed"]


def test_single_sync_twice_on_same_day_keeps_second_values(session_factory, add_project) -> None:
    project_id = add_project("acme/demo")
    client = FakeStatsClient({"acme/demo": descriptor("acme/demo", forks_count=30)})
    orchestrator = _orchestrator(session_factory, client)

    asyncio.run(orchestrator.run_single_sync(project_id))
    client.repos["acme/demo"] = descriptor("acme/demo", forks_count=31)
    second = asyncio.run(orchestrator.run_single_sync(project_id))

    rows = _snapshots(session_factory, project_id)
    assert len(rows) == 1
    assert rows[0].forks_count == second.metrics.forks_count == 31


def test_single_sync_survives_failed_commit_activity(session_factory, add_project) -> None:
    project_id = add_project("acme/demo")
    client = FakeStatsClient({"acme/demo": descriptor("acme/demo")})
    client.overrides[("acme/demo", "get_commit_activity")] = failed(500)

    result = asyncio.run(_orchestrator(session_factory, client).run_single_sync(project_id))

    assert result.success is True
    assert (result.metrics.commits_count, result.metrics.commits_last_month, result.metrics.commits_last_week) == (3, 2, 1)
    assert len(_snapshots(session_factory, project_id)) == 1
