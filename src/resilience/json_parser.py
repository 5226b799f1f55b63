"""Best-effort JSON recovery for LLM responses.

LLM output is often wrapped in Markdown fences, cut off mid-object when
``max_tokens`` is hit, or surrounded by prose.  :func:`parse_json` tries an
ordered list of strategies and stops at the first that succeeds:

1. :class:`DirectParse` -- the text is already valid JSON.
2. :class:`FencedBlockParse` -- a ```` ```json ```` (or generic) fenced block.
3. :class:`TruncationRepairParse` -- strip dangling commas / keys and close
   unbalanced brackets.
4. :class:`LargestObjectParse` -- the largest brace-balanced object in the
   text, repaired.
5. :class:`FieldExtractionParse` -- regex extraction of individual fields.

A clean parse has ``partial=False``.  Recovered data has ``partial=True``
and ``recovered_fields`` naming the strategy or the salvaged keys, so
callers can decide whether to trust it.
"""

from __future__ import annotations

import json
import re
from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ParseResult(BaseModel):
    """Outcome of a resilient parse."""

    model_config = ConfigDict(frozen=True)

    success: bool
    data: Any = None
    partial: bool = False
    recovered_fields: list[str] = Field(default_factory=list)
    error: str | None = None


_FAILED = ParseResult(success=False)

# ---------------------------------------------------------------------------
# Repair helpers
# ---------------------------------------------------------------------------

_TRAILING_COMMA_BEFORE_CLOSER = re.compile(r",\s*([}\]])")
_DANGLING_KEY = re.compile(r',\s*"[^"]*"\s*:\s*$')
_DANGLING_PARTIAL_STRING = re.compile(r',\s*"[^"]*"\s*:\s*"[^"]*$')
_TRAILING_COMMA = re.compile(r",\s*$")

_JSON_FENCE = re.compile(r"```json\s*([\s\S]*?)\s*```", re.IGNORECASE)
_ANY_FENCE = re.compile(r"```\s*([\s\S]*?)\s*```")


def _unclosed_openers(text: str) -> tuple[list[str], bool]:
    """Return the stack of unclosed ``{``/``[`` and whether a string is open."""
    stack: list[str] = []
    in_string = False
    escaped = False
    for ch in text:
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch in "{[":
            stack.append(ch)
        elif ch in "}]" and stack:
            stack.pop()
    return stack, in_string


def repair_truncated_json(text: str) -> str:
    """Repair common truncation damage so the text has a chance to parse.

    Removes trailing commas before closers, drops a dangling ``,"key":`` or
    ``,"key":"partial`` tail, and appends the closers needed to balance
    every unclosed ``[`` and ``{`` in nesting order.
    """
    repaired = text.strip()
    repaired = _TRAILING_COMMA_BEFORE_CLOSER.sub(r"\1", repaired)
    repaired = _DANGLING_KEY.sub("", repaired)
    repaired = _DANGLING_PARTIAL_STRING.sub("", repaired)

    stack, in_string = _unclosed_openers(repaired)
    if in_string:
        repaired += '"'
    repaired = _TRAILING_COMMA.sub("", repaired)

    closers = {"{": "}", "[": "]"}
    repaired += "".join(closers[opener] for opener in reversed(stack))
    return _TRAILING_COMMA_BEFORE_CLOSER.sub(r"\1", repaired)


def extract_fenced_block(text: str) -> str | None:
    """Return the body of a ```` ```json ```` block, or of a generic fenced
    block whose body starts with ``{`` or ``[``."""
    match = _JSON_FENCE.search(text)
    if match:
        return match.group(1).strip()
    match = _ANY_FENCE.search(text)
    if match:
        content = match.group(1).strip()
        if content.startswith(("{", "[")):
            return content
    return None


def extract_largest_object(text: str) -> str | None:
    """Return the largest brace-balanced ``{...}`` substring.

    When no object closes, the slice from the first ``{`` is returned so it
    can still be repaired.
    """
    best: str | None = None
    depth = 0
    start = -1
    in_string = False
    escaped = False
    for idx, ch in enumerate(text):
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"' and depth > 0:
            in_string = True
        elif ch == "{":
            if depth == 0:
                start = idx
            depth += 1
        elif ch == "}" and depth > 0:
            depth -= 1
            if depth == 0:
                candidate = text[start : idx + 1]
                if best is None or len(candidate) > len(best):
                    best = candidate
    if best is not None:
        return best
    first = text.find("{")
    return text[first:] if first != -1 else None


_STRING_FIELD = re.compile(r'"([^"]+)"\s*:\s*"([^"\\]*(?:\\.[^"\\]*)*)"')
_NUMBER_FIELD = re.compile(r'"([^"]+)"\s*:\s*(-?\d+(?:\.\d+)?)')
_BOOL_FIELD = re.compile(r'"([^"]+)"\s*:\s*(true|false)')
_NULL_FIELD = re.compile(r'"([^"]+)"\s*:\s*null')
_ARRAY_FIELD = re.compile(r'"([^"]+)"\s*:\s*\[([\s\S]*?)\]')


def extract_partial_fields(text: str) -> dict[str, Any]:
    """Pull individual ``"key": value`` pairs out of malformed JSON."""
    result: dict[str, Any] = {}

    for match in _STRING_FIELD.finditer(text):
        key, value = match.groups()
        result[key] = value.replace('\\"', '"').replace("\\n", "\n")

    for match in _NUMBER_FIELD.finditer(text):
        key, value = match.groups()
        result[key] = float(value) if "." in value else int(value)

    for match in _BOOL_FIELD.finditer(text):
        key, value = match.groups()
        result[key] = value == "true"

    for match in _NULL_FIELD.finditer(text):
        result[match.group(1)] = None

    for match in _ARRAY_FIELD.finditer(text):
        key, content = match.groups()
        try:
            result[key] = json.loads(f"[{content}]")
        except json.JSONDecodeError:
            result[key] = [
                item.strip().strip("\"'") for item in content.split(",") if item.strip()
            ]

    return result


def _loads(text: str) -> tuple[Any, bool]:
    try:
        return json.loads(text), True
    except (json.JSONDecodeError, ValueError):
        return None, False


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------

class ParseStrategy(ABC):
    """One recovery technique; strategies are tried in order."""

    name: str = ""

    @abstractmethod
    def attempt(self, text: str) -> tuple[ParseResult, bool]:
        """Try to parse *text*; return the result and whether it succeeded."""


class DirectParse(ParseStrategy):
    name = "direct"

    def attempt(self, text: str) -> tuple[ParseResult, bool]:
        data, ok = _loads(text)
        if not ok:
            return _FAILED, False
        return ParseResult(success=True, data=data), True


class FencedBlockParse(ParseStrategy):
    name = "fenced_block"

    def attempt(self, text: str) -> tuple[ParseResult, bool]:
        block = extract_fenced_block(text)
        if block is None:
            return _FAILED, False
        data, ok = _loads(block)
        if ok:
            return ParseResult(success=True, data=data), True
        data, ok = _loads(repair_truncated_json(block))
        if ok:
            return (
                ParseResult(
                    success=True,
                    data=data,
                    partial=True,
                    recovered_fields=["repaired_from_markdown"],
                ),
                True,
            )
        return _FAILED, False


class TruncationRepairParse(ParseStrategy):
    name = "truncation_repair"

    def attempt(self, text: str) -> tuple[ParseResult, bool]:
        data, ok = _loads(repair_truncated_json(text))
        if not ok:
            return _FAILED, False
        return (
            ParseResult(
                success=True, data=data, partial=True, recovered_fields=["repaired_truncation"]
            ),
            True,
        )


class LargestObjectParse(ParseStrategy):
    name = "largest_object"

    def attempt(self, text: str) -> tuple[ParseResult, bool]:
        candidate = extract_largest_object(text)
        if candidate is None:
            return _FAILED, False
        data, ok = _loads(repair_truncated_json(candidate))
        if not ok:
            return _FAILED, False
        return (
            ParseResult(
                success=True, data=data, partial=True, recovered_fields=["extracted_object"]
            ),
            True,
        )


class FieldExtractionParse(ParseStrategy):
    name = "field_extraction"

    def attempt(self, text: str) -> tuple[ParseResult, bool]:
        fields = extract_partial_fields(text)
        if not fields:
            return _FAILED, False
        return (
            ParseResult(
                success=True,
                data=fields,
                partial=True,
                recovered_fields=list(fields.keys()),
                error="Partial extraction only",
            ),
            True,
        )


DEFAULT_STRATEGIES: tuple[ParseStrategy, ...] = (
    DirectParse(),
    FencedBlockParse(),
    TruncationRepairParse(),
    LargestObjectParse(),
    FieldExtractionParse(),
)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def parse_json(
    text: Any,
    strategies: tuple[ParseStrategy, ...] = DEFAULT_STRATEGIES,
) -> ParseResult:
    """Parse *text* with each strategy in turn until one succeeds."""
    if not text or not isinstance(text, str):
        return ParseResult(success=False, error="Invalid input")

    clean = text.strip()
    for strategy in strategies:
        result, ok = strategy.attempt(clean)
        if ok:
            return result

    return ParseResult(success=False, error="All parsing strategies failed")


def parse_json_with_schema(
    text: Any,
    required_fields: list[str],
    defaults: dict[str, Any] | None = None,
) -> ParseResult:
    """Parse *text* as an object, merging *defaults* and checking *required_fields*.

    * Total failure with defaults -> the defaults, flagged partial.
    * Otherwise parsed fields win over defaults; fields still missing are
      listed in ``error`` and the result is flagged partial.
    """
    defaults = defaults or {}
    result = parse_json(text)

    if not result.success or not isinstance(result.data, dict):
        if defaults:
            return ParseResult(
                success=True,
                data=dict(defaults),
                partial=True,
                recovered_fields=list(defaults.keys()),
                error="Used defaults due to parse failure",
            )
        return ParseResult(
            success=False,
            error=result.error or "Parsed value is not an object",
        )

    data = {**defaults, **result.data}
    missing = [field for field in required_fields if field not in data]
    if missing:
        return ParseResult(
            success=True,
            data=data,
            partial=True,
            recovered_fields=result.recovered_fields,
            error=f"Missing required fields: {', '.join(missing)}",
        )
    return ParseResult(
        success=True,
        data=data,
        partial=result.partial,
        recovered_fields=result.recovered_fields,
        error=result.error,
    )


def parse_json_or_default(text: Any, default: Any) -> Any:
    """Return the parsed value, or *default* when nothing could be recovered."""
    result = parse_json(text)
    return result.data if result.success else default
