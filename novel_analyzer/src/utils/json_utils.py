"""JSON extraction for model output, built on orjson.

Chunk analysis responses are expected to be a single JSON object, but models
still wrap it in markdown fences, prefix it with prose, or leave raw
newlines inside string values. ``parse_json_object`` handles all three:

  1. Strip a surrounding code fence.
  2. Parse directly, or the first balanced ``{...}`` substring. A top-level
     array is parsed as-is and rejected.
  3. On failure, escape raw control characters inside string literals and
     parse once more.
"""

from __future__ import annotations

import re
from typing import Any, Dict, Optional

import orjson

_FENCE_RE = re.compile(r"^```[a-zA-Z0-9]*\s*\n?(.*?)\n?\s*```$", re.DOTALL)

_CONTROL_ESCAPES = {"\n": "\\n", "\r": "\\r", "\t": "\\t"}


class JSONExtractionError(ValueError):
    """Raised when no JSON object can be recovered from the text."""


def safe_loads(data: str | bytes) -> Any:
    return orjson.loads(data)


def strip_code_fences(text: str) -> str:
    """Return the fenced payload when the whole text is one fenced block."""
    stripped = text.strip()
    match = _FENCE_RE.match(stripped)
    if match and match.group(1):
        return match.group(1).strip()
    return stripped


def find_json_substring(text: str) -> Optional[str]:
    """Find the first balanced JSON object substring, string-aware."""
    depth = 0
    in_string = False
    escaped = False
    start_index: Optional[int] = None

    for i, ch in enumerate(text):
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            if depth:
                in_string = True
            continue
        if ch == "{":
            if depth == 0:
                start_index = i
            depth += 1
        elif ch == "}" and depth:
            depth -= 1
            if depth == 0 and start_index is not None:
                return text[start_index : i + 1]
    return None


def repair_control_characters(text: str) -> str:
    """Escape raw newlines, carriage returns and tabs inside string literals.

    A quote toggles the in-string state only when preceded by an even number
    of backslashes.
    """
    out: list[str] = []
    in_string = False
    backslashes = 0
    for ch in text:
        if ch == '"' and backslashes % 2 == 0:
            in_string = not in_string
        if in_string and ch in _CONTROL_ESCAPES:
            out.append(_CONTROL_ESCAPES[ch])
            backslashes = 0
            continue
        backslashes = backslashes + 1 if ch == "\\" else 0
        out.append(ch)
    return "".join(out)


def _loads_object(candidate: str) -> Dict[str, Any]:
    parsed = safe_loads(candidate)
    if not isinstance(parsed, dict):
        kind = "array" if isinstance(parsed, list) else type(parsed).__name__
        raise JSONExtractionError(f"parsed JSON is not an object (got {kind})")
    return parsed


def parse_json_object(text: str) -> Dict[str, Any]:
    """Parse a JSON object from model output or raise ``JSONExtractionError``."""
    if not text or not text.strip():
        raise JSONExtractionError("model returned an empty response")

    candidate = strip_code_fences(text)
    if not candidate.startswith(("{", "[")):
        candidate = find_json_substring(candidate) or candidate

    try:
        return _loads_object(candidate)
    except orjson.JSONDecodeError as first_error:
        try:
            return _loads_object(repair_control_characters(candidate))
        except orjson.JSONDecodeError as repair_error:
            raise JSONExtractionError(
                f"failed to parse JSON. original error: {first_error}. "
                f"after-repair error: {repair_error}"
            ) from repair_error


__all__ = [
    "JSONExtractionError",
    "safe_loads",
    "strip_code_fences",
    "find_json_substring",
    "repair_control_characters",
    "parse_json_object",
]
