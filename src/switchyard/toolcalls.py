"""Recover structured tool calls from free-form model text.

Backends that cannot emit native tool calls (CLI tools, some local
models) tend to answer with either a JSON payload or ``<tool_call>``
tag markup. ``parse_tool_calls_from_text`` tries JSON first, then tags.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any
from uuid import uuid4

from switchyard.providers.base import ToolCall

_TOOL_CALL_TAG_RE = re.compile(r"<tool_call\b[^>]*>", re.IGNORECASE)
_TOOL_CALL_END_TAG_RE = re.compile(r"</tool_call>", re.IGNORECASE)
_TOOL_CALL_JSON_HINT_RE = re.compile(r'"tool_calls"\s*:|"toolCalls"\s*:')
_FENCED_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```", re.IGNORECASE)
_ARG_PAIR_RE = re.compile(
    r"<arg_key>([\s\S]*?)</arg_key>\s*<arg_value>([\s\S]*?)</arg_value>",
    re.IGNORECASE,
)
_LITERAL_RE = re.compile(r"^(?:true|false|null)$", re.IGNORECASE)
_NUMBER_RE = re.compile(r"^-?\d+(?:\.\d+)?$")


@dataclass(slots=True)
class ToolCallParseResult:
    ok: bool
    tool_calls: list[ToolCall] = field(default_factory=list)
    cleaned_content: str = ""
    had_markup: bool = False
    truncated: bool = False
    error: str | None = None


def looks_like_tool_call_markup(text: str) -> bool:
    return bool(_TOOL_CALL_TAG_RE.search(text) or _TOOL_CALL_JSON_HINT_RE.search(text))


def parse_tool_calls_from_text(text: str | None) -> ToolCallParseResult:
    trimmed = (text or "").strip()
    had_markup = looks_like_tool_call_markup(trimmed)

    parsed = _parse_json_tool_calls(trimmed)
    if parsed is None:
        parsed = _parse_tag_tool_calls(trimmed)
    if parsed is not None:
        calls, cleaned = parsed
        return ToolCallParseResult(
            ok=True,
            tool_calls=calls,
            cleaned_content=cleaned,
            had_markup=True,
        )

    truncated = bool(_TOOL_CALL_TAG_RE.search(trimmed)) and not _TOOL_CALL_END_TAG_RE.search(
        trimmed
    )
    return ToolCallParseResult(
        ok=False,
        had_markup=had_markup,
        truncated=truncated,
        error="tool_call_parse_failed" if had_markup else "no_tool_call_markup",
    )


def _parse_json_tool_calls(text: str) -> tuple[list[ToolCall], str] | None:
    # (json text, span removed from the original on success)
    candidates: list[tuple[str, str]] = []
    if text.startswith("{") or text.startswith("["):
        candidates.append((text, text))
    fenced = _extract_fenced_json(text)
    if fenced:
        candidates.append(fenced)
    embedded = _extract_embedded_json_object(text)
    if embedded:
        candidates.append((embedded, embedded))

    for candidate, span in candidates:
        try:
            decoded = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        calls = _coerce_tool_calls(decoded)
        if not calls:
            continue
        return calls, _strip_candidate(text, span).strip()
    return None


def _extract_fenced_json(text: str) -> tuple[str, str] | None:
    match = _FENCED_RE.search(text)
    if match is None:
        return None
    block = match.group(1).strip()
    if not block:
        return None
    return block, match.group(0)


def _extract_embedded_json_object(text: str) -> str | None:
    hint = _TOOL_CALL_JSON_HINT_RE.search(text)
    if hint is None:
        return None
    before = text.rfind("{", 0, hint.start())
    if before == -1:
        return None
    after = text.rfind("}")
    if after <= before:
        return None
    candidate = text[before : after + 1].strip()
    if candidate.startswith("{") and candidate.endswith("}"):
        return candidate
    return None


def _strip_candidate(text: str, candidate: str) -> str:
    idx = text.find(candidate)
    if idx == -1:
        return text
    return (text[:idx] + text[idx + len(candidate) :]).strip()


def _coerce_tool_calls(value: Any) -> list[ToolCall]:
    if isinstance(value, list):
        calls: list[ToolCall] = []
        for item in value:
            calls.extend(_coerce_tool_calls(item))
        return calls
    if not isinstance(value, dict):
        return []

    nested = value.get("toolCalls")
    if not isinstance(nested, list):
        nested = value.get("tool_calls")
    if isinstance(nested, list):
        coerced = (_coerce_single_tool_call(item, idx) for idx, item in enumerate(nested))
        return [call for call in coerced if call is not None]

    name = value.get("name")
    if isinstance(name, str) and name.strip():
        return [
            ToolCall(
                id=_existing_id(value) or f"parsed-{uuid4()}",
                name=name.strip(),
                arguments=_coerce_arguments(value.get("arguments")),
            )
        ]
    return []


def _existing_id(value: dict[str, Any]) -> str | None:
    call_id = value.get("id")
    if isinstance(call_id, str) and call_id.strip():
        return call_id
    return None


def _coerce_single_tool_call(value: Any, idx: int) -> ToolCall | None:
    if not isinstance(value, dict):
        return None
    function = value.get("function")
    function = function if isinstance(function, dict) else {}

    name = value.get("name") or function.get("name")
    if not isinstance(name, str) or not name.strip():
        return None
    raw_args = value.get("arguments")
    if raw_args is None:
        raw_args = function.get("arguments")
    return ToolCall(
        id=_existing_id(value) or f"parsed-{idx + 1}",
        name=name.strip(),
        arguments=_coerce_arguments(raw_args),
    )


def _coerce_arguments(value: Any) -> dict[str, Any]:
    if isinstance(value, dict):
        return value
    if not isinstance(value, str) or not value.strip():
        return {}
    try:
        decoded = json.loads(value)
    except json.JSONDecodeError:
        return {}
    return decoded if isinstance(decoded, dict) else {}


def _parse_tag_tool_calls(text: str) -> tuple[list[ToolCall], str] | None:
    if not _TOOL_CALL_TAG_RE.search(text) or not _TOOL_CALL_END_TAG_RE.search(text):
        return None

    calls: list[ToolCall] = []
    cleaned_parts: list[str] = []
    cursor = 0
    while True:
        start = _TOOL_CALL_TAG_RE.search(text, cursor)
        if start is None:
            cleaned_parts.append(text[cursor:])
            break
        end = _TOOL_CALL_END_TAG_RE.search(text, start.end())
        if end is None:
            # Open tag without a close tag: the call was cut off.
            return None
        cleaned_parts.append(text[cursor : start.start()])
        call = _coerce_tag_tool_call(text[start.end() : end.start()], len(calls))
        if call is not None:
            calls.append(call)
        cursor = end.end()

    if not calls:
        return None
    return calls, "".join(cleaned_parts).strip()


def _coerce_tag_tool_call(inner: str, idx: int) -> ToolCall | None:
    body = inner.strip()
    if not body:
        return None
    name = body.split("<", 1)[0].strip()
    if not name:
        return None
    arguments: dict[str, Any] = {}
    for match in _ARG_PAIR_RE.finditer(body):
        key = match.group(1).strip()
        if not key:
            continue
        arguments[key] = _coerce_tag_value(match.group(2))
    return ToolCall(id=f"parsed-xml-{idx + 1}", name=name, arguments=arguments)


def _coerce_tag_value(value: str) -> Any:
    trimmed = value.strip()
    if not trimmed:
        return ""
    if _LITERAL_RE.match(trimmed):
        lowered = trimmed.lower()
        if lowered == "null":
            return None
        return lowered == "true"
    if _NUMBER_RE.match(trimmed):
        return float(trimmed) if "." in trimmed else int(trimmed)
    if trimmed.startswith(("{", "[")):
        try:
            return json.loads(trimmed)
        except json.JSONDecodeError:
            pass
    return trimmed
