"""Typed contracts for GitHub stats client responses."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Generic, Optional, TypeVar


T = TypeVar("T")


class FetchState(str, Enum):
    """Normalized response state for downstream collectors."""

    OK = "ok"
    EMPTY = "empty"
    PENDING = "pending"
    FAILED = "failed"


@dataclass(slots=True)
class FetchResult(Generic[T]):
    """Container that separates payload from fetch semantics."""

    state: FetchState
    data: Optional[T] = None
    status_code: Optional[int] = None
    error: Optional[str] = None

    @property
    def is_ok(self) -> bool:
        return self.state == FetchState.OK

    @property
    def is_empty(self) -> bool:
        return self.state == FetchState.EMPTY

    @property
    def is_pending(self) -> bool:
        """Upstream accepted the request but is still computing the payload (HTTP 202)."""
        return self.state == FetchState.PENDING

    @property
    def is_failed(self) -> bool:
        return self.state == FetchState.FAILED


RepoPayload = dict[str, Any]
ListPayload = list[dict[str, Any]]
CommitActivityPayload = list[dict[str, Any]]

RepoContract = FetchResult[RepoPayload]
ListContract = FetchResult[ListPayload]
CommitActivityContract = FetchResult[CommitActivityPayload]
CountContract = FetchResult[int]
