"""Insert-or-update planning that keeps one snapshot per project per day."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Any, Optional

from app.services.snapshot_metrics import SnapshotMetrics

logger = logging.getLogger(__name__)


class WriteAction(str, Enum):
    INSERT = "insert"
    UPDATE = "update"


@dataclass(frozen=True, slots=True)
class SnapshotWritePlan:
    """Complete row write for `(project_id, snapshot_date)`; applied as a single unit."""

    action: WriteAction
    project_id: int
    snapshot_date: date
    values: dict[str, Any]
    snapshot_id: Optional[int] = None


class SnapshotReconciler:
    """Decides whether today's snapshot is created or overwritten in place.

    Values always describe current upstream truth: a second sync on the same
    day replaces every field of the existing row, nothing is accumulated.
    """

    def __init__(self, store: Any) -> None:
        self._store = store

    def reconcile(self, project_id: int, metrics: SnapshotMetrics, today: date) -> SnapshotWritePlan:
        return self.plan_values(project_id, metrics.as_row(), today)

    def plan_values(self, project_id: int, values: dict[str, Any], today: date) -> SnapshotWritePlan:
        existing = self._store.get_snapshot(project_id, today)
        if existing is None:
            return SnapshotWritePlan(
                action=WriteAction.INSERT,
                project_id=project_id,
                snapshot_date=today,
                values=values,
            )
        return SnapshotWritePlan(
            action=WriteAction.UPDATE,
            project_id=project_id,
            snapshot_date=today,
            values=values,
            snapshot_id=existing.id,
        )

    def apply(self, plan: SnapshotWritePlan) -> Any:
        if plan.action is WriteAction.UPDATE:
            row = self._store.update_snapshot(plan.snapshot_id, plan.values)
        else:
            row = self._store.insert_snapshot(plan.snapshot_date, plan.project_id, plan.values)
        logger.debug(
            "Snapshot %s for project %s on %s",
            plan.action.value,
            plan.project_id,
            plan.snapshot_date.isoformat(),
        )
        return row
