"""Helpers shared by the HTTP-backed providers."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager

import httpx

from switchyard.errors import ProviderTimeoutError, TransportError

ERROR_DETAIL_LIMIT = 500


def normalize_base_url(base_url: str) -> str:
    return base_url.strip().rstrip("/")


def coerce_text(value: object) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, list):
        chunks: list[str] = []
        for item in value:
            if isinstance(item, str):
                chunks.append(item)
            elif isinstance(item, dict):
                text = item.get("text")
                if isinstance(text, str):
                    chunks.append(text)
        return "".join(chunks)
    return ""


def _network_code(exc: httpx.TransportError) -> str | None:
    if isinstance(exc, httpx.ConnectError):
        return "ECONNREFUSED"
    if isinstance(exc, (httpx.ReadError, httpx.WriteError, httpx.RemoteProtocolError)):
        return "ECONNRESET"
    if isinstance(exc, httpx.CloseError):
        return "ECONNABORTED"
    return None


@contextmanager
def translate_transport_errors(label: str, *, provider_id: str, model: str) -> Iterator[None]:
    """Re-raise httpx failures as switchyard transport errors."""
    try:
        yield
    except httpx.TimeoutException as exc:
        raise ProviderTimeoutError(
            f"{label} request timed out: {exc}",
            provider_id=provider_id,
            model=model,
        ) from exc
    except httpx.TransportError as exc:
        raise TransportError(
            f"{label} network error: {type(exc).__name__}: {exc}",
            code=_network_code(exc),
            provider_id=provider_id,
            model=model,
        ) from exc


def raise_for_status(response: httpx.Response, label: str, *, provider_id: str, model: str) -> None:
    if response.is_success:
        return
    detail = response.text[:ERROR_DETAIL_LIMIT]
    raise TransportError(
        f"{label} error: {response.status_code} - {detail}",
        status=response.status_code,
        provider_id=provider_id,
        model=model,
    )


def decode_json_object(response: httpx.Response, label: str, *, provider_id: str, model: str) -> dict:
    try:
        payload = response.json()
    except ValueError as exc:
        raise TransportError(
            f"{label} response is not valid JSON",
            status=response.status_code,
            provider_id=provider_id,
            model=model,
        ) from exc
    if not isinstance(payload, dict):
        raise TransportError(
            f"{label} response is not an object",
            status=response.status_code,
            provider_id=provider_id,
            model=model,
        )
    return payload
