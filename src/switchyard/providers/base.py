"""Provider contracts."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Literal, Protocol, runtime_checkable

Role = Literal["system", "user", "assistant", "tool"]
FinishReason = Literal["stop", "tool_calls", "length"]
Action = Literal["chat", "tools", "embeddings", "subagent"]

ACTIONS: tuple[Action, ...] = ("chat", "tools", "embeddings", "subagent")


class ProviderType(StrEnum):
    API = "api"
    CLI = "cli"
    LOCAL_NETWORK = "local-network"


class CliFlavor(StrEnum):
    CLAUDE = "claude"
    COPILOT = "copilot"
    CODEX = "codex"
    KIMI = "kimi"


@dataclass(slots=True)
class ToolCall:
    id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class Message:
    role: Role
    content: str
    name: str | None = None
    tool_call_id: str | None = None
    tool_calls: list[ToolCall] | None = None


@dataclass(slots=True)
class ChatOptions:
    temperature: float = 0.2
    max_tokens: int | None = None
    tools: list[dict[str, Any]] | None = None
    tool_choice: str | dict[str, Any] | None = None
    thinking_level: str | None = None
    # Per-call overrides.
    model: str | None = None
    timeout_ms: int | None = None


@dataclass(slots=True)
class Usage:
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int


@dataclass(slots=True)
class ChatResponse:
    content: str
    tool_calls: list[ToolCall] | None = None
    finish_reason: FinishReason = "stop"
    usage: Usage | None = None


@runtime_checkable
class ModelProvider(Protocol):
    id: str
    name: str
    type: ProviderType
    model: str

    async def chat(
        self,
        messages: list[Message],
        options: ChatOptions | None = None,
    ) -> ChatResponse: ...

    async def health(self) -> bool: ...

    def estimate_cost(self, messages: list[Message]) -> float: ...


@runtime_checkable
class EmbeddingProvider(Protocol):
    async def embeddings(self, texts: list[str]) -> list[list[float]]: ...


def supports_embeddings(provider: object) -> bool:
    return isinstance(provider, EmbeddingProvider)


def estimate_tokens(messages: list[Message]) -> int:
    return sum(math.ceil(len(message.content or "") / 4) for message in messages)


def thinking_enabled(options: ChatOptions | None) -> bool:
    if options is None or not options.thinking_level:
        return False
    return options.thinking_level.strip().lower() != "off"
