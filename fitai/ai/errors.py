"""Shared error taxonomy for AI provider calls.

Every provider failure is classified into one ``ErrorKind``.  The kind
(plus the HTTP status for ``unknown``) is the only input to the retry and
fallback decisions; error message text is never inspected.
"""

from __future__ import annotations

from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Literal

ErrorKind = Literal[
    "network",
    "timeout",
    "rate_limit",
    "auth",
    "invalid_request",
    "server_error",
    "content_filter",
    "quota_exceeded",
    "unknown",
]

RETRYABLE_KINDS: frozenset[str] = frozenset({"network", "timeout", "rate_limit", "server_error"})

_STATUS_KINDS: dict[int, ErrorKind] = {
    400: "invalid_request",
    401: "auth",
    403: "auth",
    404: "invalid_request",
    408: "timeout",
    413: "invalid_request",
    422: "invalid_request",
    429: "rate_limit",
    500: "server_error",
    502: "server_error",
    503: "server_error",
    504: "server_error",
    529: "server_error",  # Anthropic "overloaded"
}

_DEFAULT_MESSAGES: dict[str, str] = {
    "network": "Network error.",
    "timeout": "Request timed out.",
    "rate_limit": "Rate limit reached.",
    "auth": "Authentication failed.",
    "invalid_request": "Invalid request.",
    "server_error": "Server error.",
    "content_filter": "Content filtered.",
    "quota_exceeded": "API quota exceeded.",
    "unknown": "An unexpected error occurred.",
}


def status_to_kind(status: int) -> ErrorKind:
    """Map an HTTP status to exactly one error kind (default ``unknown``)."""
    return _STATUS_KINDS.get(status, "unknown")


def is_retryable(kind: str, status: int | None = None) -> bool:
    """Derive retryability from the kind, and from the status for ``unknown``."""
    if kind in RETRYABLE_KINDS:
        return True
    if kind == "unknown" and status is not None:
        return status >= 500
    return False


def parse_retry_after(value: str | None, *, now: datetime | None = None) -> int | None:
    """Convert a ``Retry-After`` header (seconds or HTTP-date) to milliseconds."""
    if not value:
        return None
    value = value.strip()
    try:
        seconds = float(value)
    except ValueError:
        try:
            when = parsedate_to_datetime(value)
        except (TypeError, ValueError):
            return None
        if when.tzinfo is None:
            when = when.replace(tzinfo=timezone.utc)
        seconds = (when - (now or datetime.now(timezone.utc))).total_seconds()
    return max(0, int(seconds * 1000))


class AIError(Exception):
    """A classified provider failure.

    Build instances with ``from_kind`` / ``from_status`` so ``retryable``
    always follows the taxonomy.
    """

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        *,
        retryable: bool,
        retry_after_ms: int | None = None,
        provider: str | None = None,
        status: int | None = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.retryable = retryable
        self.retry_after_ms = retry_after_ms
        self.provider = provider
        self.status = status

    @classmethod
    def from_kind(
        cls,
        kind: ErrorKind,
        message: str | None = None,
        *,
        status: int | None = None,
        retry_after_ms: int | None = None,
        provider: str | None = None,
    ) -> AIError:
        return cls(
            kind,
            message or _DEFAULT_MESSAGES[kind],
            retryable=is_retryable(kind, status),
            retry_after_ms=retry_after_ms,
            provider=provider,
            status=status,
        )

    @classmethod
    def from_status(
        cls,
        status: int,
        message: str | None = None,
        *,
        retry_after_ms: int | None = None,
        provider: str | None = None,
    ) -> AIError:
        return cls.from_kind(
            status_to_kind(status),
            message,
            status=status,
            retry_after_ms=retry_after_ms,
            provider=provider,
        )

    def with_provider(self, provider: str) -> AIError:
        """Tag the error with *provider* unless it already carries one."""
        if self.provider is None:
            self.provider = provider
        return self

    def __repr__(self) -> str:
        return (
            f"AIError(kind={self.kind!r}, message={self.message!r}, "
            f"retryable={self.retryable}, provider={self.provider!r})"
        )
