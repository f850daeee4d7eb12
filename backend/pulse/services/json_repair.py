"""
Tolerant parsing of JSON produced by language models.

Models regularly wrap JSON in markdown fences, add prose around it, leave
trailing commas or put raw newlines inside strings. `parse_json_array` and
`parse_json_object` try a direct parse first and then an ordered list of
repair passes, each applied on top of the previous one. The outcome is
either `Parsed(value)` or `Fallback(reason)`; nothing here raises.
"""
from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Callable, Generic, TypeVar, Union

T = TypeVar("T")

_CODE_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)```", re.IGNORECASE)
_TRAILING_COMMA_RE = re.compile(r",\s*([}\]])")
_QUOTED_STRING_RE = re.compile(r'"(?:[^"\\]|\\.)*"')


@dataclass(frozen=True)
class Parsed(Generic[T]):
    value: T


@dataclass(frozen=True)
class Fallback:
    reason: str


ParseResult = Union[Parsed[T], Fallback]


def strip_code_fence(text: str) -> str:
    match = _CODE_FENCE_RE.search(text)
    if match:
        return match.group(1).strip()
    return text


def extract_outer(text: str, open_char: str, close_char: str) -> str:
    """Slice from the first `open_char` to the last `close_char` when both exist."""
    start = text.find(open_char)
    end = text.rfind(close_char)
    if start != -1 and end > start:
        return text[start : end + 1]
    return text


def remove_trailing_commas(text: str) -> str:
    return _TRAILING_COMMA_RE.sub(r"\1", text)


def escape_newlines_in_strings(text: str) -> str:
    def _escape(match: re.Match[str]) -> str:
        return match.group(0).replace("\n", "\\n").replace("\r", "\\r")

    return _QUOTED_STRING_RE.sub(_escape, text)


REPAIR_PASSES: tuple[Callable[[str], str], ...] = (
    remove_trailing_commas,
    escape_newlines_in_strings,
)


def _parse_with_repairs(candidate: str, expected: type) -> ParseResult[Any]:
    attempts = [candidate]
    repaired = candidate
    for repair in REPAIR_PASSES:
        repaired = repair(repaired)
        attempts.append(repaired)

    last_error = "empty response"
    for attempt in attempts:
        try:
            value = json.loads(attempt)
        except json.JSONDecodeError as e:
            last_error = f"invalid JSON: {e}"
            continue
        if not isinstance(value, expected):
            return Fallback(f"expected {expected.__name__}, got {type(value).__name__}")
        return Parsed(value)

    return Fallback(last_error)


def parse_json_array(text: str | None) -> ParseResult[list]:
    if not text or not text.strip():
        return Fallback("empty response")
    candidate = extract_outer(strip_code_fence(text.strip()), "[", "]")
    return _parse_with_repairs(candidate, list)


def parse_json_object(text: str | None) -> ParseResult[dict]:
    if not text or not text.strip():
        return Fallback("empty response")
    candidate = extract_outer(strip_code_fence(text.strip()), "{", "}")
    return _parse_with_repairs(candidate, dict)
