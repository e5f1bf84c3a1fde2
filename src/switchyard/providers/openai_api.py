"""HTTP-API provider speaking the OpenAI chat-completions wire format."""

from __future__ import annotations

import json
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
from switchyard.providers.auth_profiles import AuthProfile, AuthProfilePool
from switchyard.providers.base import (
    ChatOptions,
    ChatResponse,
    FinishReason,
    Message,
    ProviderType,
    ToolCall,
    Usage,
    estimate_tokens,
    thinking_enabled,
)

DEFAULT_API_BASE_URL = "http://localhost:1234/v1"
COST_PER_TOKEN = 0.00001
_NO_KEY = "not-needed"


class ApiProvider:
    type = ProviderType.API

    def __init__(
        self,
        id: str,
        *,
        base_url: str,
        model: str,
        api_key: str | None = None,
        auth_profiles: list[AuthProfile] | None = None,
        logger: Any = None,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout_seconds: float = 120.0,
    ) -> None:
        self.id = id
        self.name = f"API ({id})"
        self.model = model
        self._base_url = normalize_base_url(base_url)
        profiles = list(auth_profiles or [])
        if not profiles:
            profiles = [AuthProfile(api_key=api_key or _NO_KEY, label="default")]
        self._profiles = AuthProfilePool(profiles)
        self._logger = logger or get_logger(__name__)
        self._transport = transport
        self._timeout_seconds = timeout_seconds

    @property
    def auth_profiles(self) -> AuthProfilePool:
        return self._profiles

    def active_profile(self) -> AuthProfile:
        return self._profiles.active_profile()

    def mark_auth_failure(self) -> None:
        """Cool down the current credential after the caller saw an auth failure."""
        failed = self._profiles.mark_failure()
        self._logger.warning(
            "provider.auth.rotated",
            provider_id=self.id,
            failed_profile=failed.label,
            next_index=self._profiles.index,
        )

    def _headers(self) -> dict[str, str]:
        profile = self._profiles.active_profile()
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {profile.api_key}",
        }

    @staticmethod
    def _to_wire_message(message: Message) -> dict[str, Any]:
        wire: dict[str, Any] = {"role": message.role, "content": message.content}
        if message.tool_call_id:
            wire["tool_call_id"] = message.tool_call_id
        if message.tool_calls:
            wire["tool_calls"] = [
                {
                    "id": call.id,
                    "type": "function",
                    "function": {"name": call.name, "arguments": json.dumps(call.arguments)},
                }
                for call in message.tool_calls
            ]
        if message.name:
            wire["name"] = message.name
        return wire

    def _build_body(self, messages: list[Message], options: ChatOptions) -> dict[str, Any]:
        body: dict[str, Any] = {
            "model": options.model or self.model,
            "messages": [self._to_wire_message(message) for message in messages],
            "temperature": options.temperature,
        }
        if options.max_tokens:
            body["max_tokens"] = options.max_tokens
        if options.tools:
            body["tools"] = options.tools
            body["tool_choice"] = options.tool_choice or "auto"
        if thinking_enabled(options):
            body["reasoning"] = {"effort": options.thinking_level}
        return body

    @staticmethod
    def _parse_arguments(arguments: object) -> dict[str, Any]:
        if isinstance(arguments, dict):
            return arguments
        if not isinstance(arguments, str):
            return {}
        try:
            decoded = json.loads(arguments)
        except json.JSONDecodeError:
            return {}
        return decoded if isinstance(decoded, dict) else {}

    @staticmethod
    def _map_finish_reason(reason: object) -> FinishReason:
        if reason in ("tool_calls", "function_call"):
            return "tool_calls"
        if reason == "length":
            return "length"
        return "stop"

    def _parse_response(self, payload: dict[str, Any]) -> ChatResponse:
        choices = payload.get("choices")
        if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
            raise TransportError(
                "API response missing choices", provider_id=self.id, model=self.model
            )
        first = choices[0]
        message = first.get("message")
        if not isinstance(message, dict):
            raise TransportError(
                "API response message missing", provider_id=self.id, model=self.model
            )

        tool_calls: list[ToolCall] = []
        raw_calls = message.get("tool_calls")
        if isinstance(raw_calls, list):
            for idx, call in enumerate(raw_calls):
                if not isinstance(call, dict):
                    continue
                fn = call.get("function")
                if not isinstance(fn, dict):
                    continue
                name = fn.get("name")
                if not isinstance(name, str) or not name:
                    continue
                call_id = call.get("id")
                tool_calls.append(
                    ToolCall(
                        id=call_id if isinstance(call_id, str) and call_id else f"call-{idx + 1}",
                        name=name,
                        arguments=self._parse_arguments(fn.get("arguments")),
                    )
                )

        usage: Usage | None = None
        raw_usage = payload.get("usage")
        if isinstance(raw_usage, dict):
            usage = Usage(
                prompt_tokens=int(raw_usage.get("prompt_tokens", 0) or 0),
                completion_tokens=int(raw_usage.get("completion_tokens", 0) or 0),
                total_tokens=int(raw_usage.get("total_tokens", 0) or 0),
            )

        return ChatResponse(
            content=coerce_text(message.get("content")),
            tool_calls=tool_calls or None,
            finish_reason=self._map_finish_reason(first.get("finish_reason")),
            usage=usage,
        )

    async def chat(
        self,
        messages: list[Message],
        options: ChatOptions | None = None,
    ) -> ChatResponse:
        opts = options or ChatOptions()
        body = self._build_body(messages, opts)
        endpoint = f"{self._base_url}/chat/completions"
        log = self._logger.bind(provider_id=self.id, provider_type=self.type.value, model=body["model"])
        log.info("provider.chat.start", messages=len(messages), tools=len(opts.tools or []))
        started = time.monotonic()
        try:
            with translate_transport_errors("API", provider_id=self.id, model=body["model"]):
                async with httpx.AsyncClient(
                    timeout=self._timeout_seconds, transport=self._transport
                ) as client:
                    response = await client.post(endpoint, json=body, headers=self._headers())
            raise_for_status(response, "API", provider_id=self.id, model=body["model"])
            payload = decode_json_object(response, "API", provider_id=self.id, model=body["model"])
            result = self._parse_response(payload)
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
            finish_reason=result.finish_reason,
            tool_calls=len(result.tool_calls or []),
            content_preview=preview(result.content),
        )
        return result

    def _parse_vectors(self, data: list[Any], *, expected: int) -> list[list[float]]:
        vectors: list[list[float]] = []
        for idx, item in enumerate(data):
            embedding = item.get("embedding") if isinstance(item, dict) else None
            if not isinstance(embedding, list):
                raise TransportError(
                    f"Embeddings API response item {idx} has no embedding",
                    provider_id=self.id,
                    model=self.model,
                )
            vectors.append([float(value) for value in embedding])
        if len(vectors) != expected:
            raise TransportError(
                f"Embeddings API returned {len(vectors)} vectors for {expected} inputs",
                provider_id=self.id,
                model=self.model,
            )
        return vectors

    async def embeddings(self, texts: list[str]) -> list[list[float]]:
        endpoint = f"{self._base_url}/embeddings"
        log = self._logger.bind(provider_id=self.id, provider_type=self.type.value, model=self.model)
        log.info("provider.embeddings.start", count=len(texts))
        started = time.monotonic()
        try:
            with translate_transport_errors("Embeddings API", provider_id=self.id, model=self.model):
                async with httpx.AsyncClient(
                    timeout=self._timeout_seconds, transport=self._transport
                ) as client:
                    response = await client.post(
                        endpoint,
                        json={"model": self.model, "input": texts},
                        headers=self._headers(),
                    )
            raise_for_status(response, "Embeddings API", provider_id=self.id, model=self.model)
            payload = decode_json_object(
                response, "Embeddings API", provider_id=self.id, model=self.model
            )
            data = payload.get("data")
            if not isinstance(data, list):
                raise TransportError(
                    "Embeddings API response missing data", provider_id=self.id, model=self.model
                )
            vectors = self._parse_vectors(data, expected=len(texts))
        except Exception as exc:
            log.warning(
                "provider.embeddings.failed",
                duration_ms=int((time.monotonic() - started) * 1000),
                success=False,
                error=str(exc)[:200],
            )
            raise
        log.info(
            "provider.embeddings.complete",
            count=len(vectors),
            duration_ms=int((time.monotonic() - started) * 1000),
            success=True,
        )
        return vectors

    async def health(self) -> bool:
        try:
            async with httpx.AsyncClient(timeout=10, transport=self._transport) as client:
                response = await client.get(f"{self._base_url}/models", headers=self._headers())
            return response.is_success
        except Exception:
            return False

    def estimate_cost(self, messages: list[Message]) -> float:
        return estimate_tokens(messages) * COST_PER_TOKEN
