"""Defensive JSON extraction from free-form model output.

Models wrap JSON in markdown fences, prepend chatter, or trail commentary.
These helpers strip fences, locate the first balanced object or array while
respecting string literals, and return ``None`` rather than raising.
"""

from __future__ import annotations

import json
import re
from typing import Any, Optional

_FENCE_RE = re.compile(r"```(?:json|JSON)?\s*(.*?)```", re.DOTALL)


def strip_code_fences(text: str) -> str:
    """Return the body of the first fenced block, or ``text`` unchanged."""
    if not text:
        return ""
    match = _FENCE_RE.search(text)
    if match:
        return match.group(1).strip()
    cleaned = text.strip()
    # Unterminated fence: drop the opening line only
    if cleaned.startswith("```"):
        lines = cleaned.split("\n")[1:]
        cleaned = "\n".join(lines).strip()
    return cleaned


def find_balanced(text: str, opener: str) -> Optional[str]:
    """Return the first balanced ``opener``...closer span in ``text``."""
    closer = "}" if opener == "{" else "]"
    start = text.find(opener)
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for i in range(start, len(text)):
            ch = text[i]
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
            elif ch == opener:
                depth += 1
            elif ch == closer:
                depth -= 1
                if depth == 0:
                    return text[start : i + 1]
        # Unbalanced from this start; try the next opener
        start = text.find(opener, start + 1)
    return None


def _extract(text: str, opener: str, expected: type) -> Optional[Any]:
    body = strip_code_fences(text)
    candidates = [body]
    span = find_balanced(body, opener)
    if span is not None and span != body:
        candidates.append(span)
    for candidate in candidates:
        try:
            value = json.loads(candidate)
        except (json.JSONDecodeError, TypeError):
            continue
        if isinstance(value, expected):
            return value
    return None


def extract_json_object(text: Optional[str]) -> Optional[dict]:
    """Parse the first JSON object in ``text``; None when there is none."""
    if not text:
        return None
    return _extract(text, "{", dict)


def extract_json_array(text: Optional[str]) -> Optional[list]:
    """Parse the first JSON array in ``text``; None when there is none."""
    if not text:
        return None
    return _extract(text, "[", list)
