"""Lambda-style handler for scheduled and manual stats sync triggers."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from app.crawlers.github.client import sanitize_for_log
from app.crawlers.github.errors import ProjectInactiveError, ProjectNotFoundError
from app.jobs.stats_sync import list_sync_status, run_stats_batch_sync, run_stats_single_sync, verify_trigger_secret

logger = logging.getLogger(__name__)

SOURCE_BATCH = "stats_sync"
SOURCE_SINGLE = "stats_sync_single"
SOURCE_STATUS = "sync_status"


def _authorization_header(event: dict[str, Any]) -> str | None:
    headers = event.get("headers") or {}
    for key, value in headers.items():
        if str(key).lower() == "authorization":
            return value
    return event.get("authorization")


def lambda_handler(event: dict[str, Any], context: Any) -> dict[str, Any]:
    """Dispatch a trigger event.

    Event shape: ``{"source": "stats_sync" | "stats_sync_single" | "sync_status",
    "project_id": 42, "headers": {"Authorization": "Bearer <CRON_SECRET>"}}``.
    """
    del context
    source = str(event.get("source") or SOURCE_BATCH)

    if not verify_trigger_secret(_authorization_header(event)):
        return {"statusCode": 401, "source": source, "error": "Unauthorized"}

    try:
        if source == SOURCE_BATCH:
            return {"statusCode": 200, "source": source, "result": asyncio.run(run_stats_batch_sync())}

        if source == SOURCE_SINGLE:
            try:
                project_id = int(event["project_id"])
            except (KeyError, TypeError, ValueError):
                return {"statusCode": 400, "source": source, "error": "project_id is required"}
            result = asyncio.run(run_stats_single_sync(project_id))
            return {"statusCode": 200 if result["success"] else 500, "source": source, "result": result}

        if source == SOURCE_STATUS:
            return {"statusCode": 200, "source": source, "result": list_sync_status()}

        return {"statusCode": 400, "source": source, "error": f"Unknown source: {source}"}
    except ProjectNotFoundError:
        return {"statusCode": 404, "source": source, "error": "Repository not found"}
    except ProjectInactiveError:
        return {"statusCode": 400, "source": source, "error": "Repository is not active"}
    except Exception as exc:
        logger.exception("Stats sync trigger failed", extra={"source": source})
        return {"statusCode": 500, "source": source, "error": sanitize_for_log(str(exc), key="error")}
