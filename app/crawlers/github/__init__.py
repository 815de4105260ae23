"""GitHub stats crawler primitives."""

from app.crawlers.github.client import GitHubStatsClient
from app.crawlers.github.contracts import FetchResult, FetchState
from app.crawlers.github.errors import RepositoryUnavailableError
from app.crawlers.github.metrics_collector import MetricBundle, MetricsCollector

__all__ = [
    "GitHubStatsClient",
    "FetchState",
    "FetchResult",
    "MetricBundle",
    "MetricsCollector",
    "RepositoryUnavailableError",
]
