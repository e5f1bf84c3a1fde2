"""Failure classification for provider errors.

``classify`` maps a raw failure to a ``FailoverReason`` so callers can
decide whether to retry, rotate credentials or give up. The function is
pure: it only reads the error and never mutates it.
"""

from __future__ import annotations

import asyncio
from enum import StrEnum

import httpx

from switchyard.errors import FailoverError, ProviderTimeoutError, TransportError


class FailoverReason(StrEnum):
    AUTH = "auth"
    RATE_LIMIT = "rate_limit"
    TIMEOUT = "timeout"
    BILLING = "billing"
    FORMAT = "format"
    COMPACTION = "compaction"
    UNKNOWN = "unknown"


_STATUS_REASONS: dict[int, FailoverReason] = {
    402: FailoverReason.BILLING,
    429: FailoverReason.RATE_LIMIT,
    401: FailoverReason.AUTH,
    403: FailoverReason.AUTH,
    408: FailoverReason.TIMEOUT,
}

_TRANSIENT_NETWORK_CODES = frozenset({"ECONNRESET", "ECONNABORTED", "ETIMEDOUT", "ESOCKETTIMEDOUT"})

_TIMEOUT_HINTS = ("timeout", "timed out", "deadline exceeded", "deadline_exceeded")

# Evaluated in order; the first list with a matching phrase wins.
_MESSAGE_PATTERNS: tuple[tuple[FailoverReason, tuple[str, ...]], ...] = (
    (
        FailoverReason.RATE_LIMIT,
        (
            "rate limit",
            "rate_limit",
            "ratelimit",
            "too many requests",
            "429",
            "overloaded",
            "quota exceeded",
            "resource_exhausted",
            "resource has been exhausted",
            "throttl",
        ),
    ),
    (
        FailoverReason.TIMEOUT,
        ("timeout", "timed out", "deadline exceeded", "deadline_exceeded", "etimedout"),
    ),
    (
        FailoverReason.BILLING,
        (
            "402",
            "payment required",
            "insufficient credits",
            "insufficient funds",
            "insufficient balance",
            "credit balance",
            "credits exceeded",
            "billing",
        ),
    ),
    (
        FailoverReason.AUTH,
        (
            "401",
            "403",
            "unauthorized",
            "forbidden",
            "invalid api key",
            "invalid_api_key",
            "incorrect api key",
            "authentication",
            "invalid token",
            "token has expired",
            "expired",
            "no credentials",
        ),
    ),
    (
        FailoverReason.FORMAT,
        (
            "invalid_request_error",
            "invalid request format",
            "malformed",
            "tool_use_id",
            "tool_call_id",
            "tool_use.id",
            "tool call id",
            "string should match pattern",
            "unexpected role",
        ),
    ),
    (
        FailoverReason.COMPACTION,
        (
            "compaction failed",
            "context compaction",
            "summarization failed",
            "failed to summarize",
            "summary failed",
        ),
    ),
)

_NON_RETRYABLE = frozenset(
    {
        FailoverReason.AUTH,
        FailoverReason.BILLING,
        FailoverReason.FORMAT,
        FailoverReason.COMPACTION,
    }
)
_RETRYABLE = frozenset({FailoverReason.RATE_LIMIT, FailoverReason.TIMEOUT})

# Coarser net for errors the classifier could not place.
_RETRYABLE_FALLBACK_PATTERNS = (
    "timeout",
    "econnreset",
    "econnrefused",
    "socket hang up",
    "network",
    "503",
    "502",
    "504",
    "rate limit",
    "too many requests",
)

_REASON_HINTS: dict[FailoverReason, str] = {
    FailoverReason.AUTH: "Check API key configuration and permissions",
    FailoverReason.RATE_LIMIT: "Wait and retry with exponential backoff",
    FailoverReason.TIMEOUT: "Increase the timeout or retry with a smaller request",
    FailoverReason.BILLING: "Check account billing status and credits",
    FailoverReason.FORMAT: "Fix the request payload; retrying will not help",
    FailoverReason.COMPACTION: "Conversation summarization failed; shorten the history",
    FailoverReason.UNKNOWN: "Investigate error details",
}


def _message_of(error: BaseException | str) -> str:
    if isinstance(error, str):
        return error
    return str(error) or type(error).__name__


def _status_of(error: BaseException) -> int | None:
    if isinstance(error, (TransportError, FailoverError)):
        return error.status
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code
    return None


def _code_of(error: BaseException) -> str | None:
    if isinstance(error, (TransportError, FailoverError)) and error.code:
        return error.code.upper()
    if isinstance(error, ConnectionResetError):
        return "ECONNRESET"
    if isinstance(error, ConnectionAbortedError):
        return "ECONNABORTED"
    return None


def _is_timeout_typed(error: BaseException) -> bool:
    return isinstance(error, (ProviderTimeoutError, TimeoutError, httpx.TimeoutException))


def _caused_by_timeout(error: BaseException) -> bool:
    # A cancellation only counts as a timeout when its cause says so.
    seen: set[int] = set()
    current: BaseException | None = error.__cause__ or error.__context__
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        if _is_timeout_typed(current):
            return True
        if any(hint in _message_of(current).lower() for hint in _TIMEOUT_HINTS):
            return True
        current = current.__cause__ or current.__context__
    return False


def classify(error: BaseException | str) -> FailoverReason | None:
    """Return the failover reason for ``error`` or ``None`` when uncategorized."""
    if isinstance(error, FailoverError):
        return error.reason

    if not isinstance(error, str):
        status = _status_of(error)
        if status is not None and status in _STATUS_REASONS:
            return _STATUS_REASONS[status]

        code = _code_of(error)
        if code in _TRANSIENT_NETWORK_CODES:
            return FailoverReason.TIMEOUT

        if _is_timeout_typed(error):
            return FailoverReason.TIMEOUT
        if isinstance(error, asyncio.CancelledError) and _caused_by_timeout(error):
            return FailoverReason.TIMEOUT

    message = _message_of(error).lower()
    if not message:
        return None
    if any(hint in message for hint in _TIMEOUT_HINTS):
        return FailoverReason.TIMEOUT
    for reason, phrases in _MESSAGE_PATTERNS:
        if any(phrase in message for phrase in phrases):
            return reason
    return None


def is_retryable(reason: FailoverReason | None) -> bool:
    """Retryability by reason alone; unknown reasons are not retryable here."""
    if reason is None:
        return False
    if reason in _NON_RETRYABLE:
        return False
    return reason in _RETRYABLE


def matches_retryable_pattern(error: BaseException | str) -> bool:
    message = _message_of(error).lower()
    return any(pattern in message for pattern in _RETRYABLE_FALLBACK_PATTERNS)


def is_retryable_error(error: BaseException | str) -> bool:
    """Retry decision for a raw error, with the pattern check for unknown reasons."""
    reason = classify(error)
    if reason is None or reason == FailoverReason.UNKNOWN:
        return matches_retryable_pattern(error)
    return is_retryable(reason)


def to_failover_error(
    error: BaseException | str,
    *,
    provider_id: str | None = None,
    model: str | None = None,
) -> FailoverError:
    """Wrap ``error`` into a ``FailoverError``; already-classified errors pass through."""
    if isinstance(error, FailoverError):
        return error
    reason = classify(error) or FailoverReason.UNKNOWN
    status: int | None = None
    code: str | None = None
    cause: BaseException | None = None
    if isinstance(error, BaseException):
        status = _status_of(error)
        code = _code_of(error)
        cause = error
        if isinstance(error, TransportError):
            provider_id = provider_id or error.provider_id
            model = model or error.model
    return FailoverError(
        _message_of(error),
        reason=reason,
        provider_id=provider_id,
        model=model,
        status=status,
        code=code,
        cause=cause,
    )


def describe_reason(reason: FailoverReason | None) -> str:
    return _REASON_HINTS[reason or FailoverReason.UNKNOWN]
