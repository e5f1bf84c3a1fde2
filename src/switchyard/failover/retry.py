"""Retry with exponential backoff driven by the failure classifier."""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from switchyard.failover.classifier import FailoverReason, classify, is_retryable_error
from switchyard.logging import get_logger

T = TypeVar("T")

logger = get_logger(__name__)


@dataclass(slots=True, frozen=True)
class RetryOptions:
    max_retries: int = 3
    initial_delay_ms: int = 1_000
    max_delay_ms: int = 5 * 60 * 1000
    backoff_multiplier: float = 2.0


@dataclass(slots=True, frozen=True)
class RetryAttempt:
    attempt: int
    delay_ms: int
    error: BaseException
    reason: FailoverReason | None


RetryObserver = Callable[[RetryAttempt], Awaitable[None] | None]


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    options: RetryOptions | None = None,
    *,
    on_retry: RetryObserver | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Run ``operation`` until it succeeds, fails fatally or retries run out.

    Attempts are strictly sequential. The error that ends the loop is
    re-raised unchanged.
    """
    opts = options or RetryOptions()
    delay_ms = opts.initial_delay_ms
    attempt = 0
    while True:
        try:
            return await operation()
        except Exception as exc:
            reason = classify(exc)
            if not is_retryable_error(exc) or attempt >= opts.max_retries:
                raise
            attempt += 1
            event = RetryAttempt(attempt=attempt, delay_ms=delay_ms, error=exc, reason=reason)
            logger.warning(
                "provider.retry.scheduled",
                attempt=attempt,
                max_retries=opts.max_retries,
                delay_ms=delay_ms,
                reason=reason.value if reason else None,
                error=str(exc)[:200],
            )
            if on_retry is not None:
                result = on_retry(event)
                if inspect.isawaitable(result):
                    await result
            await sleep(delay_ms / 1000)
            delay_ms = min(int(delay_ms * opts.backoff_multiplier), opts.max_delay_ms)
