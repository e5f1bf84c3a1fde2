"""Normalize raw stdout from CLI model tools into answer text."""

from __future__ import annotations

import re

_THINK_END = "</think>"
_THINK_BLOCK_RE = re.compile(r"<think>[\s\S]*?</think>")
_CHOICE_BLOCK_RE = re.compile(r"<choice>[\s\S]*?</choice>")

_TURN_MARKER = "TurnBegin("
_LOOP_CONTROL_MARKERS = ("automated loop", "Available branches:")
_ECHO_PREFIXES = ("System:", "User:")
_TEXT_PART_RE = re.compile(
    r"TextPart\("
    r"(?:(?!TextPart\().)*?"
    r"type=(['\"])text\1"
    r"(?:(?!TextPart\().)*?"
    r"text=(['\"])(?P<body>(?:\\.|(?!\2).)*)\2",
    re.DOTALL,
)


def strip_reasoning(text: str) -> str:
    if not text:
        return text
    idx = text.rfind(_THINK_END)
    if idx != -1:
        return text[idx + len(_THINK_END) :].strip()
    return _THINK_BLOCK_RE.sub("", text).strip()


def strip_choice_spans(text: str) -> str:
    if not text:
        return text
    return _CHOICE_BLOCK_RE.sub("", text).strip()


def normalize_output(text: str) -> str:
    return strip_choice_spans(strip_reasoning(text))


def _unescape(payload: str) -> str:
    return payload.replace("\\n", "\n").replace("\\'", "'").replace('\\"', '"')


def _is_loop_control(turn: str) -> bool:
    lowered = turn.lower()
    return any(marker.lower() in lowered for marker in _LOOP_CONTROL_MARKERS)


def extract_text_parts(turn: str) -> list[str]:
    parts: list[str] = []
    for match in _TEXT_PART_RE.finditer(turn):
        payload = _unescape(match.group("body")).strip()
        if not payload or payload.startswith(_ECHO_PREFIXES):
            continue
        parts.append(payload)
    return parts


def parse_turn_output(text: str) -> str:
    """Extract the answer from turn-structured output (``TurnBegin(...)`` records).

    Text before the first turn is echoed input and is dropped, as are turns
    produced by the tool's own loop control. Output without any turn marker
    is treated like plain output.
    """
    if _TURN_MARKER not in text:
        return normalize_output(text)
    turns = text.split(_TURN_MARKER)[1:]
    payloads: list[str] = []
    for turn in turns:
        if _is_loop_control(turn):
            continue
        payloads.extend(extract_text_parts(turn))
    return strip_choice_spans("\n".join(payloads))
