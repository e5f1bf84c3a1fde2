"""Local-network provider for Ollama-style inference servers."""

from __future__ import annotations

import time
from typing import Any

import httpx

from switchyard.errors import TransportError
from switchyard.logging import get_logger, preview
from switchyard.providers._http_common import (
    coerce_text,
    decode_json_object,
    normalize_base_url,
    raise_for_status,
    translate_transport_errors,
)
from switchyard.providers.base import ChatOptions, ChatResponse, Message, ProviderType

DEFAULT_BASE_URL = "http://localhost:11434"


class LocalNetworkProvider:
    type = ProviderType.LOCAL_NETWORK

    def __init__(
        self,
        id: str,
        *,
        model: str,
        base_url: str = DEFAULT_BASE_URL,
        logger: Any = None,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout_seconds: float = 600.0,
    ) -> None:
        self.id = id
        self.name = f"Local ({model})"
        self.model = model
        self._base_url = normalize_base_url(base_url)
        self._logger = logger or get_logger(__name__)
        self._transport = transport
        self._timeout_seconds = timeout_seconds

    async def chat(
        self,
        messages: list[Message],
        options: ChatOptions | None = None,
    ) -> ChatResponse:
        opts = options or ChatOptions()
        model = opts.model or self.model
        body: dict[str, object] = {
            "model": model,
            "messages": [{"role": m.role, "content": m.content} for m in messages],
            "stream": False,
            "options": {"temperature": opts.temperature},
        }
        log = self._logger.bind(provider_id=self.id, provider_type=self.type.value, model=model)
        log.info("provider.chat.start", messages=len(messages))
        started = time.monotonic()
        try:
            with translate_transport_errors("Local model", provider_id=self.id, model=model):
                async with httpx.AsyncClient(
                    timeout=self._timeout_seconds, transport=self._transport
                ) as client:
                    response = await client.post(f"{self._base_url}/api/chat", json=body)
            raise_for_status(response, "Local model API", provider_id=self.id, model=model)
            payload = decode_json_object(response, "Local model API", provider_id=self.id, model=model)
            message = payload.get("message")
            if not isinstance(message, dict):
                raise TransportError(
                    "Local model response message missing", provider_id=self.id, model=model
                )
            content = coerce_text(message.get("content"))
        except Exception as exc:
            log.warning(
                "provider.chat.failed",
                duration_ms=int((time.monotonic() - started) * 1000),
                success=False,
                error=str(exc)[:200],
            )
            raise
        log.info(
            "provider.chat.complete",
            duration_ms=int((time.monotonic() - started) * 1000),
            success=True,
            content_preview=preview(content),
        )
        return ChatResponse(content=content, finish_reason="stop")

    async def embeddings(self, texts: list[str]) -> list[list[float]]:
        # No batching: one request per text, in order.
        results: list[list[float]] = []
        endpoint = f"{self._base_url}/api/embeddings"
        log = self._logger.bind(provider_id=self.id, provider_type=self.type.value, model=self.model)
        log.info("provider.embeddings.start", count=len(texts))
        started = time.monotonic()
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout_seconds, transport=self._transport
            ) as client:
                for text in texts:
                    results.append(await self._embed_one(client, endpoint, text))
        except Exception as exc:
            log.warning(
                "provider.embeddings.failed",
                duration_ms=int((time.monotonic() - started) * 1000),
                success=False,
                completed=len(results),
                error=str(exc)[:200],
            )
            raise
        log.info(
            "provider.embeddings.complete",
            count=len(results),
            duration_ms=int((time.monotonic() - started) * 1000),
            success=True,
        )
        return results

    async def _embed_one(self, client: httpx.AsyncClient, endpoint: str, text: str) -> list[float]:
        with translate_transport_errors("Local embeddings", provider_id=self.id, model=self.model):
            response = await client.post(endpoint, json={"model": self.model, "prompt": text})
        raise_for_status(response, "Local embeddings", provider_id=self.id, model=self.model)
        payload = decode_json_object(
            response, "Local embeddings", provider_id=self.id, model=self.model
        )
        embedding = payload.get("embedding")
        if not isinstance(embedding, list):
            raise TransportError(
                "Local embeddings response missing embedding",
                provider_id=self.id,
                model=self.model,
            )
        return [float(value) for value in embedding]

    async def health(self) -> bool:
        try:
            async with httpx.AsyncClient(timeout=10, transport=self._transport) as client:
                response = await client.get(f"{self._base_url}/api/tags")
            return response.is_success
        except Exception:
            return False

    def estimate_cost(self, messages: list[Message]) -> float:
        return 0.0
