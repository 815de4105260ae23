"""Typed statistics snapshot values shared by the collector, reconciler and store."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Optional


@dataclass(frozen=True, slots=True)
class SnapshotMetrics:
    """Field-for-field values of one `repository_stats` row (minus keys and day)."""

    stars_count: int = 0
    forks_count: int = 0
    watchers_count: int = 0
    open_issues_count: int = 0
    closed_issues_count: int = 0
    open_prs_count: int = 0
    closed_prs_count: int = 0
    commits_count: int = 0
    branches_count: int = 0
    releases_count: int = 0
    contributors_count: int = 0
    code_size_kb: int = 0
    last_commit_date: Optional[datetime] = None
    commits_last_month: int = 0
    commits_last_week: int = 0

    def as_row(self) -> dict[str, Any]:
        return asdict(self)
