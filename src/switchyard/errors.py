"""Switchyard exception hierarchy.

All Switchyard-specific exceptions inherit from SwitchyardError,
enabling structured error handling and cleaner catch clauses.
Backend failures are converted to TransportError (or one of its
variants) at the provider boundary so the failure classifier reads a
stable shape instead of inspecting arbitrary exception attributes.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from switchyard.failover.classifier import FailoverReason


class SwitchyardError(Exception):
    """Base exception for all Switchyard errors."""

    def __init__(self, message: str = "", *, retryable: bool = False) -> None:
        super().__init__(message)
        self.retryable = retryable


class ConfigError(SwitchyardError):
    """Invalid or missing configuration."""


class TransportError(SwitchyardError):
    """A backend call failed: non-2xx HTTP, network failure or process failure."""

    def __init__(
        self,
        message: str = "",
        *,
        status: int | None = None,
        code: str | None = None,
        provider_id: str | None = None,
        model: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status = status
        self.code = code
        self.provider_id = provider_id
        self.model = model


class ProviderTimeoutError(TransportError):
    """The backend did not answer in time (HTTP timeout or CLI hard timeout)."""

    def __init__(
        self,
        message: str = "",
        *,
        code: str | None = "ETIMEDOUT",
        provider_id: str | None = None,
        model: str | None = None,
        partial_output: str = "",
    ) -> None:
        super().__init__(message, code=code, provider_id=provider_id, model=model)
        self.partial_output = partial_output


class ProcessExitError(TransportError):
    """A CLI backend exited with a non-zero status."""

    def __init__(
        self,
        message: str = "",
        *,
        exit_code: int | None = None,
        detail: str = "",
        provider_id: str | None = None,
        model: str | None = None,
    ) -> None:
        super().__init__(message, provider_id=provider_id, model=model)
        self.exit_code = exit_code
        self.detail = detail


class FailoverError(SwitchyardError):
    """A backend failure with a classified reason."""

    def __init__(
        self,
        message: str = "",
        *,
        reason: FailoverReason,
        provider_id: str | None = None,
        model: str | None = None,
        status: int | None = None,
        code: str | None = None,
        cause: BaseException | None = None,
    ) -> None:
        from switchyard.failover.classifier import is_retryable

        super().__init__(message, retryable=is_retryable(reason))
        self.reason = reason
        self.provider_id = provider_id
        self.model = model
        self.status = status
        self.code = code
        self.cause = cause


class NoProviderAvailableError(SwitchyardError):
    """No provider resolves for an action, or none is healthy. Never retryable."""
