"""Concurrent fan-out of the per-repository metric queries."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional, TypeVar

from app.config.settings import settings
from app.crawlers.github.client import sanitize_log_extra
from app.crawlers.github.contracts import FetchResult
from app.crawlers.github.errors import RepositoryUnavailableError
from app.services.commit_activity import (
    CommitStats,
    WeeklyBucket,
    parse_commit_timestamps,
    parse_weekly_buckets,
)
from app.services.snapshot_metrics import SnapshotMetrics
from app.utils.helpers import parse_github_datetime

logger = logging.getLogger(__name__)

T = TypeVar("T")

METRIC_BRANCHES = "branches"
METRIC_RELEASES = "releases"
METRIC_CONTRIBUTORS = "contributors"
METRIC_COMMIT_ACTIVITY = "commit_activity"
METRIC_RECENT_COMMITS = "recent_commits"
METRIC_OPEN_PRS = "open_prs"
METRIC_CLOSED_PRS = "closed_prs"
METRIC_OPEN_ISSUES = "open_issues"
METRIC_CLOSED_ISSUES = "closed_issues"


@dataclass(slots=True)
class MetricBundle:
    """Everything fetched for one repository in a single sync attempt.

    List-derived counts (branches, releases, contributors) come from one page
    and saturate at the page size. PR/issue counts come from the search
    endpoint's `total_count`, which can lag behind the repository.
    """

    full_name: str
    stars_count: int
    forks_count: int
    watchers_count: int
    code_size_kb: int
    default_branch: Optional[str]
    pushed_at: Optional[datetime]
    branches_count: int = 0
    releases_count: int = 0
    contributors_count: int = 0
    open_prs_count: int = 0
    closed_prs_count: int = 0
    open_issues_count: int = 0
    closed_issues_count: int = 0
    weekly_buckets: list[WeeklyBucket] = field(default_factory=list)
    recent_commit_dates: list[datetime] = field(default_factory=list)
    commit_activity_pending: bool = False
    degraded: list[str] = field(default_factory=list)

    def snapshot_metrics(self, commits: CommitStats) -> SnapshotMetrics:
        return SnapshotMetrics(
            stars_count=self.stars_count,
            forks_count=self.forks_count,
            watchers_count=self.watchers_count,
            open_issues_count=self.open_issues_count,
            closed_issues_count=self.closed_issues_count,
            open_prs_count=self.open_prs_count,
            closed_prs_count=self.closed_prs_count,
            commits_count=commits.total_commits,
            branches_count=self.branches_count,
            releases_count=self.releases_count,
            contributors_count=self.contributors_count,
            code_size_kb=self.code_size_kb,
            last_commit_date=commits.last_commit_at,
            commits_last_month=commits.commits_last_30_days,
            commits_last_week=commits.commits_last_7_days,
        )


class MetricsCollector:
    """Fetches the repository descriptor, then every secondary metric concurrently.

    Only the descriptor is fatal. Each secondary query degrades on its own to
    a neutral default (0 or an empty list) and is named in
    `MetricBundle.degraded`; nothing is retried within the same pass.
    """

    def __init__(self, client: Any, *, recent_commits_limit: int | None = None) -> None:
        self._client = client
        self._recent_commits_limit = recent_commits_limit or settings.RECENT_COMMITS_LIMIT

    async def fetch_metrics(self, owner: str, repo: str) -> MetricBundle:
        full_name = f"{owner}/{repo}"
        descriptor = await self._client.get_repo(owner, repo)
        if not descriptor.is_ok or not isinstance(descriptor.data, dict):
            raise RepositoryUnavailableError(
                full_name,
                status_code=descriptor.status_code,
                reason=descriptor.error or f"descriptor fetch returned {descriptor.state.value}",
            )

        data = descriptor.data
        bundle = MetricBundle(
            full_name=str(data.get("full_name") or full_name),
            stars_count=_as_int(data.get("stargazers_count")),
            forks_count=_as_int(data.get("forks_count")),
            watchers_count=_as_int(data.get("watchers_count")),
            code_size_kb=_as_int(data.get("size")),
            default_branch=data.get("default_branch"),
            pushed_at=parse_github_datetime(data.get("pushed_at")),
        )

        search_scope = f"repo:{full_name}"
        (
            bundle.branches_count,
            bundle.releases_count,
            bundle.contributors_count,
            (bundle.weekly_buckets, bundle.commit_activity_pending),
            bundle.recent_commit_dates,
            bundle.open_prs_count,
            bundle.closed_prs_count,
            bundle.open_issues_count,
            bundle.closed_issues_count,
        ) = await asyncio.gather(
            self._degradable(bundle, METRIC_BRANCHES, lambda: self._client.list_branches(owner, repo), default=0, extract=len),
            self._degradable(bundle, METRIC_RELEASES, lambda: self._client.list_releases(owner, repo), default=0, extract=len),
            self._degradable(
                bundle, METRIC_CONTRIBUTORS, lambda: self._client.list_contributors(owner, repo), default=0, extract=len
            ),
            self._commit_activity(bundle, owner, repo),
            self._degradable(
                bundle,
                METRIC_RECENT_COMMITS,
                lambda: self._client.list_recent_commits(owner, repo, limit=self._recent_commits_limit),
                default=[],
                extract=parse_commit_timestamps,
            ),
            self._search_count(bundle, METRIC_OPEN_PRS, f"{search_scope} is:pr is:open"),
            self._search_count(bundle, METRIC_CLOSED_PRS, f"{search_scope} is:pr is:closed"),
            self._search_count(bundle, METRIC_OPEN_ISSUES, f"{search_scope} is:issue is:open"),
            self._search_count(bundle, METRIC_CLOSED_ISSUES, f"{search_scope} is:issue is:closed"),
        )

        if bundle.degraded:
            logger.info(
                "Repository metrics collected with degraded values",
                extra=sanitize_log_extra(repo=bundle.full_name, degraded=list(bundle.degraded)),
            )
        return bundle

    async def _commit_activity(self, bundle: MetricBundle, owner: str, repo: str) -> tuple[list[WeeklyBucket], bool]:
        try:
            result = await self._client.get_commit_activity(owner, repo)
        except Exception as exc:
            self._mark_degraded(bundle, METRIC_COMMIT_ACTIVITY, str(exc))
            return [], False

        if result.is_pending:
            return [], True
        if result.is_failed:
            self._mark_degraded(bundle, METRIC_COMMIT_ACTIVITY, result.error)
            return [], False
        return parse_weekly_buckets(result.data), False

    async def _search_count(self, bundle: MetricBundle, metric: str, query: str) -> int:
        return await self._degradable(
            bundle,
            metric,
            lambda: self._client.search_issue_count(query),
            default=0,
            extract=_as_int,
        )

    async def _degradable(
        self,
        bundle: MetricBundle,
        metric: str,
        call: Callable[[], Awaitable[FetchResult[Any]]],
        *,
        default: T,
        extract: Callable[[Any], T],
    ) -> T:
        try:
            result = await call()
        except Exception as exc:
            self._mark_degraded(bundle, metric, str(exc))
            return default

        if result.is_failed:
            self._mark_degraded(bundle, metric, result.error)
            return default
        if not result.is_ok:
            return default

        try:
            return extract(result.data)
        except Exception as exc:
            self._mark_degraded(bundle, metric, str(exc))
            return default

    @staticmethod
    def _mark_degraded(bundle: MetricBundle, metric: str, error: Optional[str]) -> None:
        bundle.degraded.append(metric)
        logger.warning(
            "Metric query degraded to default",
            extra=sanitize_log_extra(repo=bundle.full_name, metric=metric, error=error),
        )


def _as_int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0
