"""Utility helper functions"""

from datetime import datetime, timezone
from typing import Any, Optional, Tuple
import re


_GITHUB_URL_PATTERNS = (
    re.compile(r'github\.com[/:]([^/\s]+)/([^/\s?#]+)'),
    re.compile(r'^([^/\s]+)/([^/\s]+)$'),
)


def parse_github_url(url: str) -> Optional[Tuple[str, str]]:
    """
    Extract owner and repository name from a GitHub URL or "owner/repo" string

    Args:
        url: e.g. "https://github.com/facebook/react.git" or "facebook/react"

    Returns:
        (owner, repo) tuple or None when the input is not recognizable
    """
    text = (url or "").strip()
    for pattern in _GITHUB_URL_PATTERNS:
        match = pattern.search(text)
        if match:
            owner = match.group(1)
            repo = re.sub(r'\.git$', '', match.group(2))
            if owner and repo:
                return owner, repo

    return None


def parse_github_datetime(raw: Any) -> Optional[datetime]:
    """
    Parse GitHub ISO 8601 timestamps ("2026-01-01T00:00:00Z") into aware datetimes

    Args:
        raw: Timestamp string, datetime, or anything else

    Returns:
        UTC-aware datetime or None if unparseable
    """
    if isinstance(raw, datetime):
        value = raw
    elif isinstance(raw, str) and raw.strip():
        try:
            value = datetime.fromisoformat(raw.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None

    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes (as returned by some DB drivers) as UTC."""
    if dt is None or dt.tzinfo is not None:
        return dt
    return dt.replace(tzinfo=timezone.utc)


def truncate_string(text: str, max_length: int, suffix: str = "...") -> str:
    """
    Truncate string to maximum length

    Args:
        text: Text to truncate
        max_length: Maximum length
        suffix: Suffix to add if truncated

    Returns:
        Truncated string
    """
    if len(text) <= max_length:
        return text

    return text[:max_length - len(suffix)] + suffix
