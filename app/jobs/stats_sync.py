"""
Stats sync job entry points.

Used by the scheduler (batch pass over all active repositories), by the
manual per-repository trigger, and from the command line:

    python -m app.jobs.stats_sync batch
    python -m app.jobs.stats_sync single 42
    python -m app.jobs.stats_sync status --limit 20
"""

from __future__ import annotations

import argparse
import asyncio
import hmac
import json
import logging
import sys
from typing import Any, Callable, Optional, Sequence

from app.config.database import SessionLocal
from app.config.settings import settings
from app.crawlers.github.client import GitHubStatsClient
from app.crawlers.github.errors import ProjectInactiveError, ProjectNotFoundError
from app.models.sync_log import SyncType
from app.orchestrator_sync import StatsSyncOrchestrator
from app.stores.project_store import SQLAlchemyProjectStore
from app.utils.logger import setup_logger

logger = logging.getLogger(__name__)


def verify_trigger_secret(authorization: Optional[str], expected: Optional[str] = None) -> bool:
    """Check an `Authorization: Bearer <secret>` header against the shared trigger secret."""
    secret = expected if expected is not None else settings.CRON_SECRET
    if not secret or not authorization:
        return False
    return hmac.compare_digest(authorization.strip().encode("utf-8"), f"Bearer {secret}".encode("utf-8"))


async def run_stats_batch_sync(
    *,
    orchestrator: StatsSyncOrchestrator | None = None,
    sync_type: SyncType = SyncType.SCHEDULED,
) -> dict[str, Any]:
    runner = orchestrator or StatsSyncOrchestrator()
    result = await runner.run_batch_sync(sync_type=sync_type)
    if result.total == 0:
        return {"success": True, "message": "No repositories to sync", "synced": 0}
    return {"success": True, "results": result.to_dict()}


async def run_stats_single_sync(
    project_id: int,
    *,
    orchestrator: StatsSyncOrchestrator | None = None,
) -> dict[str, Any]:
    runner = orchestrator or StatsSyncOrchestrator()
    result = await runner.run_single_sync(project_id, sync_type=SyncType.MANUAL)
    return result.to_dict()


def list_sync_status(*, session_factory: Callable[[], Any] = SessionLocal, limit: int = 50) -> dict[str, Any]:
    """Most recent sync log rows plus the last successful sync time."""
    store = SQLAlchemyProjectStore(session_factory())
    try:
        logs = [
            {
                "id": row.id,
                "repository_id": row.repository_id,
                "sync_type": row.sync_type,
                "status": row.status,
                "error_message": row.error_message,
                "started_at": row.started_at.isoformat() if row.started_at else None,
                "completed_at": row.completed_at.isoformat() if row.completed_at else None,
                "duration_ms": row.duration_ms,
            }
            for row in store.list_recent_sync_logs(limit=limit)
        ]
        last_sync = store.get_last_sync_time()
    finally:
        store.close()

    return {
        "success": True,
        "last_sync_time": last_sync.isoformat() if last_sync else None,
        "logs": logs,
    }


async def fetch_rate_limit(*, github_client_factory: Callable[[], Any] = GitHubStatsClient) -> dict[str, Any]:
    async with github_client_factory() as client:
        response = await client.get_rate_limit()
    if response.is_ok:
        return {"success": True, "rate_limit": response.data}
    return {"success": False, "error": response.error}


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="stats_sync", description="Synchronize repository statistics from GitHub")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("batch", help="Sync every active repository")

    single = subparsers.add_parser("single", help="Sync one repository by id")
    single.add_argument("project_id", type=int)

    status = subparsers.add_parser("status", help="Show recent sync logs and GitHub quota")
    status.add_argument("--limit", type=int, default=50)
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point."""
    args = _build_parser().parse_args(argv)
    setup_logger("app", level=settings.LOG_LEVEL)

    if args.command == "batch":
        output = asyncio.run(run_stats_batch_sync())
        exit_code = 0 if output.get("results", {}).get("failed", 0) == 0 else 1
    elif args.command == "single":
        try:
            output = asyncio.run(run_stats_single_sync(args.project_id))
        except (ProjectNotFoundError, ProjectInactiveError) as exc:
            print(str(exc), file=sys.stderr)
            return 2
        exit_code = 0 if output["success"] else 1
    else:
        output = list_sync_status(limit=args.limit)
        output["github"] = asyncio.run(fetch_rate_limit())
        exit_code = 0

    logger.info("Stats sync job finished", extra={"command": args.command, "exit_code": exit_code})
    print(json.dumps(output, indent=2, default=str))
    return exit_code


if __name__ == "__main__":
    sys.exit(main())
