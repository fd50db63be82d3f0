"""Lenient parsing of structured (JSON) model output.

Generated text is unreliable: it may be wrapped in markdown fences, prefixed
with chatter, carry trailing commas, or be cut off mid-object. Parsing goes
through layers (strict, fenced block, brace span, truncation repair) and the
first layer that yields JSON is validated against a pydantic schema.
"""

import json
import re
from dataclasses import dataclass
from typing import Any, Generic, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

T = TypeVar("T", bound=BaseModel)

_FENCE_RE = re.compile(r"```(?:json|JSON)?\s*\n?(.*?)\n?```", re.DOTALL)
_TRAILING_COMMA_RE = re.compile(r",\s*([}\]])")


@dataclass(frozen=True)
class ParseResult(Generic[T]):
    ok: bool
    value: Optional[T] = None
    error: str = ""


def _loads(text: str) -> Any:
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        fixed = _TRAILING_COMMA_RE.sub(r"\1", text)
        if fixed == text:
            raise
        return json.loads(fixed)


def _scan_brackets(text: str) -> tuple[list[str], bool]:
    """Closers still owed at the end of ``text``, and whether it ends inside a string."""
    closers = []
    in_string = escaped = False
    for c in text:
        if escaped:
            escaped = False
        elif in_string:
            if c == '\\':
                escaped = True
            elif c == '"':
                in_string = False
        elif c == '"':
            in_string = True
        elif c in '{[':
            closers.append('}' if c == '{' else ']')
        elif c in '}]' and closers:
            closers.pop()
    return closers, in_string


def _repair_truncated_json(text: str) -> Optional[str]:
    """Close a truncated JSON document at its last complete value."""
    if not text or text[0] not in ('{', '['):
        return None

    end = len(text)
    while end > 0:
        cut = max(text.rfind('}', 0, end), text.rfind(']', 0, end), text.rfind('"', 0, end))
        if cut <= 0:
            return None
        candidate = text[:cut + 1].rstrip().rstrip(',')
        closers, in_string = _scan_brackets(candidate)
        if not in_string:
            closed = candidate + ''.join(reversed(closers))
            try:
                _loads(closed)
                return closed
            except json.JSONDecodeError:
                pass
        end = cut
    return None


def parse_json_response(text: str) -> dict | list:
    """Extract JSON from an LLM response that may contain markdown fences.

    Raises:
        ValueError: if no layer produces valid JSON.
    """
    cleaned = (text or "").strip()

    # Whole response
    if cleaned.startswith('{') or cleaned.startswith('['):
        try:
            return _loads(cleaned)
        except json.JSONDecodeError:
            pass

    # Fenced block
    m = _FENCE_RE.search(cleaned)
    if m:
        try:
            return _loads(m.group(1).strip())
        except json.JSONDecodeError:
            pass

    # Outermost brace span
    for open_ch, close_ch in [('{', '}'), ('[', ']')]:
        start = cleaned.find(open_ch)
        end = cleaned.rfind(close_ch)
        if start != -1 and end > start:
            try:
                return _loads(cleaned[start:end + 1])
            except json.JSONDecodeError:
                pass

    # Truncated output
    for open_ch in ('{', '['):
        start = cleaned.find(open_ch)
        if start != -1:
            repaired = _repair_truncated_json(cleaned[start:])
            if repaired is not None:
                return _loads(repaired)

    raise ValueError(f"Could not parse JSON from response: {cleaned[:200]}...")


def parse_structured(text: str, schema: Type[T]) -> ParseResult[T]:
    """Parse ``text`` into ``schema`` without raising."""
    try:
        data = parse_json_response(text)
    except ValueError as e:
        return ParseResult(ok=False, error=str(e))

    try:
        return ParseResult(ok=True, value=schema.model_validate(data))
    except ValidationError as e:
        return ParseResult(ok=False, error=f"Schema validation failed: {e.error_count()} error(s): {e.errors()[0]['msg']}")
