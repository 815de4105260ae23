"""Commit activity aggregation over already-fetched GitHub data.

Two input shapes are supported:

* weekly buckets from ``/stats/commit_activity`` (last 52 weeks), which give
  exact totals per week;
* a single bounded page of recent commits, used when GitHub has not finished
  computing the weekly statistics (HTTP 202) or returned nothing.

The fallback path only sees the commits on that page, so its all-time count
is a lower bound and ``CommitStats.is_approximate`` is set.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, Optional, Sequence

from app.utils.helpers import parse_github_datetime

MONTH_WINDOW = timedelta(days=30)
WEEK_WINDOW = timedelta(days=7)


@dataclass(frozen=True, slots=True)
class WeeklyBucket:
    """Commits authored in the week starting at `week_start`."""

    week_start: datetime
    total: int


@dataclass(frozen=True, slots=True)
class CommitStats:
    total_commits: int
    commits_last_30_days: int
    commits_last_7_days: int
    last_commit_at: Optional[datetime]
    is_approximate: bool = False


def parse_weekly_buckets(payload: Any) -> list[WeeklyBucket]:
    """Convert the raw commit_activity payload into buckets, skipping malformed rows."""
    if not isinstance(payload, list):
        return []

    buckets: list[WeeklyBucket] = []
    for row in payload:
        if not isinstance(row, dict):
            continue
        try:
            week_start = datetime.fromtimestamp(int(row["week"]), tz=timezone.utc)
            total = int(row.get("total") or 0)
        except (KeyError, TypeError, ValueError, OverflowError):
            continue
        buckets.append(WeeklyBucket(week_start=week_start, total=total))
    return buckets


def _signature_date(signature: Any) -> Optional[datetime]:
    if not isinstance(signature, dict):
        return None
    return parse_github_datetime(signature.get("date"))


def parse_commit_timestamps(payload: Any) -> list[datetime]:
    """Committer (or author) dates of a commit listing page."""
    if not isinstance(payload, list):
        return []

    timestamps: list[datetime] = []
    for row in payload:
        if not isinstance(row, dict):
            continue
        commit = row.get("commit")
        if not isinstance(commit, dict):
            continue
        value = _signature_date(commit.get("committer")) or _signature_date(commit.get("author"))
        if value is not None:
            timestamps.append(value)
    return timestamps


def aggregate_commit_activity(
    weekly_buckets: Sequence[WeeklyBucket],
    fallback_commits: Iterable[datetime],
    pushed_at: Optional[datetime],
    now: datetime,
) -> CommitStats:
    """Fold commit data into all-time / 30-day / 7-day counts and a last-activity time.

    `now` is the reference instant for both rolling windows; a week or commit
    counts toward a window when its timestamp is at or after ``now - window``.
    """
    month_start = now - MONTH_WINDOW
    week_start = now - WEEK_WINDOW
    commit_dates = [value for value in fallback_commits if value is not None]
    last_commit_at = max(commit_dates) if commit_dates else pushed_at

    if weekly_buckets:
        total = 0
        last_month = 0
        last_week = 0
        for bucket in weekly_buckets:
            total += bucket.total
            if bucket.week_start >= month_start:
                last_month += bucket.total
            if bucket.week_start >= week_start:
                last_week += bucket.total
        return CommitStats(
            total_commits=total,
            commits_last_30_days=last_month,
            commits_last_7_days=last_week,
            last_commit_at=last_commit_at,
        )

    return CommitStats(
        total_commits=len(commit_dates),
        commits_last_30_days=sum(1 for value in commit_dates if value >= month_start),
        commits_last_7_days=sum(1 for value in commit_dates if value >= week_start),
        last_commit_at=last_commit_at,
        is_approximate=True,
    )
