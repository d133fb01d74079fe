"""
Tolerant JSON extraction from model replies.

Models wrap JSON in code fences or prose; we locate the first opening
bracket and the bracket that balances it, and parse only that slice.
"""

from __future__ import annotations

import json
import re
from typing import Any, Dict, List, Optional

from .errors import ParseError

_FENCE_PATTERN = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)
_CLOSERS = {"{": "}", "[": "]"}


def strip_code_fences(text: str) -> str:
    return _FENCE_PATTERN.sub("", (text or "").strip()).strip()


def extract_balanced(text: str, opener: str) -> Optional[str]:
    """Return the substring from the first `opener` to the bracket that closes it."""
    start = text.find(opener)
    if start == -1:
        return None

    stack: List[str] = []
    in_str = False
    esc = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_str:
            if esc:
                esc = False
            elif ch == "\\":
                esc = True
            elif ch == '"':
                in_str = False
            continue
        if ch == '"':
            in_str = True
        elif ch in _CLOSERS:
            stack.append(_CLOSERS[ch])
        elif ch in "}]":
            if not stack or stack[-1] != ch:
                return None
            stack.pop()
            if not stack:
                return text[start:i + 1]

    # Unbalanced: fall back to the last matching closer, as a plain slice
    end = text.rfind(_CLOSERS[opener])
    if end > start:
        return text[start:end + 1]
    return None


def _loads(fragment: Optional[str]) -> Any:
    if fragment is None:
        return None
    try:
        return json.loads(fragment)
    except json.JSONDecodeError:
        return None


def parse_json_object(text: str) -> Dict[str, Any]:
    cleaned = strip_code_fences(text)
    payload = _loads(extract_balanced(cleaned, "{"))
    if not isinstance(payload, dict):
        raise ParseError(f"No JSON object in reply: {cleaned[:120]!r}")
    return payload


def parse_json_array(text: str, list_keys=("jobs", "jobList", "jobCards", "list", "data")) -> List[Any]:
    """
    Parse a JSON array from a reply.

    An object wrapping the array under one of `list_keys` is accepted too.
    """
    cleaned = strip_code_fences(text)
    first_arr = cleaned.find("[")
    first_obj = cleaned.find("{")

    if first_arr != -1 and (first_obj == -1 or first_arr < first_obj):
        payload = _loads(extract_balanced(cleaned, "["))
        if isinstance(payload, list):
            return payload

    payload = _loads(extract_balanced(cleaned, "{"))
    if isinstance(payload, dict):
        for key in list_keys:
            value = payload.get(key)
            if isinstance(value, list):
                return value

    payload = _loads(extract_balanced(cleaned, "["))
    if isinstance(payload, list):
        return payload
    raise ParseError(f"No JSON array in reply: {cleaned[:120]!r}")


def get_case_insensitive(payload: Dict[str, Any], *keys: str, default: Any = None) -> Any:
    """Look up the first of `keys` ignoring case and underscores."""
    folded = {str(k).replace("_", "").lower(): v for k, v in payload.items()}
    for key in keys:
        value = folded.get(key.replace("_", "").lower())
        if value is not None:
            return value
    return default


def as_bool(value: Any) -> bool:
    """Coerce model output like true, "true", "yes", 1 into a bool."""
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        return value.strip().lower() in ("true", "yes", "1", "y")
    return False
