"""Exceptions raised by the stats sync pipeline."""

from __future__ import annotations

from typing import Optional


class StatsSyncError(Exception):
    """Base class for errors that abort a single project's sync."""


class RepositoryUnavailableError(StatsSyncError):
    """The primary repository descriptor could not be fetched (missing, forbidden, or unreachable)."""

    def __init__(self, full_name: str, *, status_code: Optional[int] = None, reason: Optional[str] = None) -> None:
        self.full_name = full_name
        self.status_code = status_code
        self.reason = reason
        detail = reason or "unknown error"
        if status_code is not None:
            message = f"Repository {full_name} unavailable (HTTP {status_code}): {detail}"
        else:
            message = f"Repository {full_name} unavailable: {detail}"
        super().__init__(message)


class ProjectNotFoundError(StatsSyncError):
    def __init__(self, project_id: int) -> None:
        self.project_id = project_id
        super().__init__(f"Project {project_id} not found")


class ProjectInactiveError(StatsSyncError):
    def __init__(self, project_id: int) -> None:
        self.project_id = project_id
        super().__init__(f"Project {project_id} is not active")
