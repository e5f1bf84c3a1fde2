import asyncio

import httpx
import pytest

from switchyard.errors import FailoverError, ProviderTimeoutError, TransportError
from switchyard.failover.classifier import (
    FailoverReason,
    classify,
    describe_reason,
    is_retryable,
    is_retryable_error,
    matches_retryable_pattern,
    to_failover_error,
)


@pytest.mark.parametrize(
    ("status", "expected"),
    [
        (401, FailoverReason.AUTH),
        (403, FailoverReason.AUTH),
        (429, FailoverReason.RATE_LIMIT),
        (402, FailoverReason.BILLING),
        (408, FailoverReason.TIMEOUT),
    ],
)
def test_status_codes_map_to_reasons(status: int, expected: FailoverReason) -> None:
    assert classify(TransportError("request failed", status=status)) == expected


def test_unmapped_status_falls_through_to_message() -> None:
    err = TransportError("API error: 400 - invalid_request_error: tool_use_id mismatch", status=400)
    assert classify(err) == FailoverReason.FORMAT
    assert classify(TransportError("API error: 500 - boom", status=500)) is None


def test_status_wins_over_message() -> None:
    err = TransportError("quota exceeded", status=401)
    assert classify(err) == FailoverReason.AUTH


def test_httpx_status_error_is_read() -> None:
    request = httpx.Request("POST", "http://api.local/v1/chat/completions")
    response = httpx.Response(429, request=request)
    err = httpx.HTTPStatusError("too busy", request=request, response=response)
    assert classify(err) == FailoverReason.RATE_LIMIT


@pytest.mark.parametrize(
    ("message", "expected"),
    [
        ("Rate limit exceeded, please retry", FailoverReason.RATE_LIMIT),
        ("model is overloaded", FailoverReason.RATE_LIMIT),
        ("insufficient credits", FailoverReason.BILLING),
        ("Payment Required (402)", FailoverReason.BILLING),
        ("invalid_request_error: tool_use_id mismatch", FailoverReason.FORMAT),
        ("Unauthorized: token has expired", FailoverReason.AUTH),
        ("deadline exceeded while waiting", FailoverReason.TIMEOUT),
        ("context compaction failed", FailoverReason.COMPACTION),
    ],
)
def test_message_patterns(message: str, expected: FailoverReason) -> None:
    assert classify(message) == expected
    assert classify(RuntimeError(message)) == expected


def test_connection_reset_code_is_timeout() -> None:
    err = TransportError("connection reset", code="ECONNRESET")
    assert classify(err) == FailoverReason.TIMEOUT


def test_builtin_connection_errors_are_timeout() -> None:
    assert classify(ConnectionResetError("peer went away")) == FailoverReason.TIMEOUT
    assert classify(ConnectionAbortedError("aborted")) == FailoverReason.TIMEOUT


def test_timeout_typed_errors() -> None:
    assert classify(ProviderTimeoutError("cli stalled")) == FailoverReason.TIMEOUT
    assert classify(TimeoutError()) == FailoverReason.TIMEOUT
    assert classify(httpx.ReadTimeout("read")) == FailoverReason.TIMEOUT


def test_cancellation_caused_by_timeout() -> None:
    cancelled = asyncio.CancelledError()
    cancelled.__cause__ = TimeoutError("probe deadline")
    assert classify(cancelled) == FailoverReason.TIMEOUT


def test_plain_cancellation_is_uncategorized() -> None:
    assert classify(asyncio.CancelledError()) is None


def test_classification_is_idempotent() -> None:
    err = FailoverError("something odd", reason=FailoverReason.BILLING)
    assert classify(err) == FailoverReason.BILLING
    assert to_failover_error(err) is err


def test_unknown_message_is_none() -> None:
    assert classify("the model said something strange") is None


def test_is_retryable_by_reason() -> None:
    for reason in (
        FailoverReason.AUTH,
        FailoverReason.BILLING,
        FailoverReason.FORMAT,
        FailoverReason.COMPACTION,
    ):
        assert is_retryable(reason) is False
    assert is_retryable(FailoverReason.RATE_LIMIT) is True
    assert is_retryable(FailoverReason.TIMEOUT) is True


def test_unknown_reason_uses_secondary_patterns() -> None:
    assert classify("upstream returned 503") is None
    assert is_retryable_error("upstream returned 503") is True
    assert is_retryable_error(RuntimeError("socket hang up")) is True
    assert is_retryable_error(RuntimeError("the model said something strange")) is False
    assert matches_retryable_pattern("ECONNREFUSED 127.0.0.1:1234") is True


def test_non_retryable_reason_beats_pattern() -> None:
    # "network" would match the coarse net, but the reason is auth.
    assert is_retryable_error(TransportError("network auth gateway", status=401)) is False


def test_to_failover_error_copies_origin() -> None:
    err = TransportError("API error: 429 - slow down", status=429, provider_id="lm", model="m1")
    failure = to_failover_error(err)
    assert failure.reason == FailoverReason.RATE_LIMIT
    assert failure.status == 429
    assert failure.provider_id == "lm"
    assert failure.model == "m1"
    assert failure.cause is err
    assert failure.retryable is True


def test_to_failover_error_unknown() -> None:
    failure = to_failover_error("weird", provider_id="cli")
    assert failure.reason == FailoverReason.UNKNOWN
    assert failure.provider_id == "cli"
    assert failure.cause is None


def test_describe_reason() -> None:
    assert "billing" in describe_reason(FailoverReason.BILLING).lower()
    assert describe_reason(None) == describe_reason(FailoverReason.UNKNOWN)


def test_timeout_wording_beats_rate_limit_phrases() -> None:
    err = TransportError("rate limit proxy: upstream request timed out")
    assert classify(err) == FailoverReason.TIMEOUT
    assert classify("quota exceeded after deadline exceeded") == FailoverReason.TIMEOUT
    assert classify(TransportError("request timed out", status=429)) == FailoverReason.RATE_LIMIT
