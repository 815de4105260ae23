"""Async GitHub REST client used by the stats sync pipeline."""

from __future__ import annotations

import asyncio
import logging
import random
import re
import time
from typing import Any, Mapping

import httpx

from app.config.settings import settings
from app.crawlers.github.contracts import (
    CommitActivityContract,
    CountContract,
    FetchResult,
    FetchState,
    ListContract,
    RepoContract,
)

logger = logging.getLogger(__name__)

REDACTED = "***REDACTED***"
MAX_PAGE_SIZE = 100

_SENSITIVE_KEY_FRAGMENTS = ("authorization", "token", "secret", "password", "api_key", "apikey", "session", "cookie")
_PAYLOAD_KEYS = frozenset({"body", "content", "payload", "raw", "raw_text"})
_INLINE_SECRET_PATTERNS = (
    re.compile(r"(?i)(authorization\s*[:=]\s*)(?:bearer\s+|token\s+)?[^\s,;&]+"),
    re.compile(r"(?i)(bearer\s+)[^\s,;&]+"),
    re.compile(r"(?i)((?:access_token|token|api_key|apikey|secret|password)=)[^\s,;&]+"),
)
_GITHUB_TOKEN_PATTERN = re.compile(r"\bgh[pousr]_[A-Za-z0-9_]{8,}\b")
_RESERVED_LOG_KEYS = frozenset(
    {"name", "msg", "args", "message", "asctime", "levelname", "levelno", "pathname", "filename", "module", "lineno"}
)


def _is_sensitive_key(key: str) -> bool:
    lowered = key.lower()
    return any(fragment in lowered for fragment in _SENSITIVE_KEY_FRAGMENTS)


def _redact_inline(text: str) -> str:
    for pattern in _INLINE_SECRET_PATTERNS:
        text = pattern.sub(lambda match: f"{match.group(1)}{REDACTED}", text)
    return _GITHUB_TOKEN_PATTERN.sub(REDACTED, text)


def sanitize_for_log(value: Any, *, key: str | None = None) -> Any:
    """Mask credentials and large payload bodies before values reach logs or run stats."""
    if key is not None and _is_sensitive_key(key):
        return None if value is None else REDACTED
    if key is not None and key.lower() in _PAYLOAD_KEYS and isinstance(value, str):
        return f"<redacted payload: {len(value)} chars>"
    if isinstance(value, Mapping):
        return {item_key: sanitize_for_log(item, key=str(item_key)) for item_key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [sanitize_for_log(item) for item in value]
    if isinstance(value, str):
        return _redact_inline(value)
    return value


def sanitize_log_extra(**fields: Any) -> dict[str, Any]:
    """Build a logging `extra` mapping with redacted values and no LogRecord key clashes."""
    extra: dict[str, Any] = {}
    for key, value in fields.items():
        safe_key = f"ctx_{key}" if key in _RESERVED_LOG_KEYS else key
        extra[safe_key] = sanitize_for_log(value, key=key)
    return extra


class GitHubStatsClient:
    """Thin async wrapper over the GitHub REST endpoints the stats pipeline needs.

    HTTP failures never raise: every call returns a `FetchResult` whose state
    tells the caller whether the payload is usable. Rate-limited (429 and
    rate-limit 403) and 5xx responses are retried with backoff up to
    `max_retries` attempts in total.
    """

    def __init__(
        self,
        token: str | None = None,
        *,
        base_url: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float | None = None,
        max_retries: int | None = None,
        backoff_base_seconds: float | None = None,
        backoff_max_seconds: float | None = None,
        rate_limit_buffer_seconds: float | None = None,
        user_agent: str | None = None,
    ) -> None:
        resolved_token = token if token is not None else settings.GITHUB_TOKEN
        headers = {
            "Accept": "application/vnd.github+json",
            "User-Agent": user_agent or settings.USER_AGENT,
            "X-GitHub-Api-Version": "2022-11-28",
        }
        if resolved_token:
            headers["Authorization"] = f"Bearer {resolved_token}"

        self._max_retries = max(int(max_retries if max_retries is not None else settings.GITHUB_MAX_RETRIES), 1)
        self._backoff_base = float(
            backoff_base_seconds if backoff_base_seconds is not None else settings.GITHUB_BACKOFF_BASE_SECONDS
        )
        self._backoff_max = float(
            backoff_max_seconds if backoff_max_seconds is not None else settings.GITHUB_BACKOFF_MAX_SECONDS
        )
        self._rate_limit_buffer = float(
            rate_limit_buffer_seconds
            if rate_limit_buffer_seconds is not None
            else settings.GITHUB_RATE_LIMIT_BUFFER_SECONDS
        )
        self._client = httpx.AsyncClient(
            base_url=(base_url or settings.GITHUB_API_BASE_URL).rstrip("/"),
            headers=headers,
            timeout=timeout if timeout is not None else settings.GITHUB_TIMEOUT_SECONDS,
            transport=transport,
        )

    async def __aenter__(self) -> "GitHubStatsClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        del exc_type, exc, tb
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def get_repo(self, owner: str, repo: str) -> RepoContract:
        return await self._request(f"/repos/{owner}/{repo}")

    async def list_branches(self, owner: str, repo: str, *, per_page: int = MAX_PAGE_SIZE) -> ListContract:
        return await self._request(f"/repos/{owner}/{repo}/branches", params={"per_page": _page_size(per_page)})

    async def list_releases(self, owner: str, repo: str, *, per_page: int = MAX_PAGE_SIZE) -> ListContract:
        return await self._request(f"/repos/{owner}/{repo}/releases", params={"per_page": _page_size(per_page)})

    async def list_contributors(self, owner: str, repo: str, *, per_page: int = MAX_PAGE_SIZE) -> ListContract:
        return await self._request(
            f"/repos/{owner}/{repo}/contributors",
            params={"per_page": _page_size(per_page), "anon": "true"},
        )

    async def get_commit_activity(self, owner: str, repo: str) -> CommitActivityContract:
        """Weekly commit buckets for the last year; PENDING while GitHub computes them."""
        return await self._request(f"/repos/{owner}/{repo}/stats/commit_activity")

    async def list_recent_commits(self, owner: str, repo: str, *, limit: int = MAX_PAGE_SIZE) -> ListContract:
        """Single page of the most recent commits on the default branch."""
        return await self._request(f"/repos/{owner}/{repo}/commits", params={"per_page": _page_size(limit)})

    async def search_issue_count(self, query: str) -> CountContract:
        """Total matches reported by the issue search endpoint.

        Only one result is requested; the count comes from `total_count` and
        inherits the search index's staleness.
        """
        response = await self._request("/search/issues", params={"q": query, "per_page": 1})
        if not response.is_ok:
            return FetchResult(state=response.state, status_code=response.status_code, error=response.error)

        try:
            total = int(response.data.get("total_count") or 0)
        except (AttributeError, TypeError, ValueError):
            return FetchResult(state=FetchState.FAILED, status_code=response.status_code, error="Malformed search payload")
        return FetchResult(state=FetchState.OK, data=total, status_code=response.status_code)

    async def get_rate_limit(self) -> FetchResult[dict[str, Any]]:
        """Core REST quota: limit, remaining and reset epoch."""
        response = await self._request("/rate_limit")
        if not response.is_ok or not isinstance(response.data, dict):
            return FetchResult(state=FetchState.FAILED, status_code=response.status_code, error=response.error)
        core = (response.data.get("resources") or {}).get("core") or response.data.get("rate") or {}
        return FetchResult(
            state=FetchState.OK,
            data={
                "limit": int(core.get("limit") or 0),
                "remaining": int(core.get("remaining") or 0),
                "reset": int(core.get("reset") or 0),
            },
            status_code=response.status_code,
        )

    async def _request(self, path: str, *, params: dict[str, Any] | None = None) -> FetchResult[Any]:
        last_status: int | None = None
        last_error: str | None = None

        for attempt in range(1, self._max_retries + 1):
            try:
                response = await self._client.get(path, params=params)
            except httpx.HTTPError as exc:
                last_status = None
                last_error = f"{exc.__class__.__name__}: {exc}"
                if attempt < self._max_retries:
                    await asyncio.sleep(self._backoff_delay(attempt))
                    continue
                break

            status = response.status_code
            if status == 202:
                return FetchResult(state=FetchState.PENDING, status_code=status)
            if status == 204:
                return FetchResult(state=FetchState.EMPTY, data=[], status_code=status)
            if 200 <= status < 300:
                try:
                    payload = response.json()
                except ValueError:
                    last_status, last_error = status, "Invalid JSON payload"
                    break
                if payload is None or payload == []:
                    return FetchResult(state=FetchState.EMPTY, data=payload if payload is not None else [], status_code=status)
                return FetchResult(state=FetchState.OK, data=payload, status_code=status)

            last_status = status
            last_error = f"HTTP {status}: {self._error_message(response)}"
            if self._is_retryable(response) and attempt < self._max_retries:
                delay = self._retry_delay(response, attempt)
                logger.info(
                    "GitHub request throttled, retrying",
                    extra=sanitize_log_extra(path=path, status_code=status, attempt=attempt, delay_seconds=round(delay, 3)),
                )
                await asyncio.sleep(delay)
                continue
            break

        logger.warning(
            "GitHub request failed",
            extra=sanitize_log_extra(path=path, params=params, status_code=last_status, error=last_error),
        )
        return FetchResult(
            state=FetchState.FAILED,
            status_code=last_status,
            error=sanitize_for_log(last_error or "unknown error", key="error"),
        )

    @staticmethod
    def _is_rate_limited(response: httpx.Response) -> bool:
        if response.status_code == 429:
            return True
        if response.status_code != 403:
            return False
        headers = response.headers
        if "retry-after" in headers:
            return True
        remaining = headers.get("x-ratelimit-remaining")
        if remaining is not None:
            return remaining.strip() == "0"
        return "x-ratelimit-reset" in headers

    def _is_retryable(self, response: httpx.Response) -> bool:
        return self._is_rate_limited(response) or response.status_code >= 500

    def _retry_delay(self, response: httpx.Response, attempt: int) -> float:
        retry_after = response.headers.get("retry-after")
        if retry_after is not None:
            try:
                return min(max(float(retry_after), 0.0) + self._rate_limit_buffer, self._backoff_max)
            except ValueError:
                pass

        reset = response.headers.get("x-ratelimit-reset")
        if reset is not None and self._is_rate_limited(response):
            try:
                wait = max(float(reset) - time.time(), 0.0)
                return min(wait + self._rate_limit_buffer, self._backoff_max)
            except ValueError:
                pass

        return self._backoff_delay(attempt)

    def _backoff_delay(self, attempt: int) -> float:
        """Exponential backoff with +/-25% jitter, capped at `backoff_max`."""
        base = min(self._backoff_base * (2 ** max(attempt - 1, 0)), self._backoff_max)
        return base * random.uniform(0.75, 1.25)

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            payload = response.json()
        except ValueError:
            return response.text[:200]
        if isinstance(payload, dict) and payload.get("message"):
            return str(payload["message"])[:200]
        return response.text[:200]


def _page_size(value: int) -> int:
    return min(max(int(value), 1), MAX_PAGE_SIZE)
