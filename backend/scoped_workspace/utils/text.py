"""Text processing helpers."""

from __future__ import annotations

import re
from typing import Any

import orjson

WHITESPACE_RE = re.compile(r"\s+")


def normalize(text: str) -> str:
    """Collapse whitespace and strip."""
    return WHITESPACE_RE.sub(" ", text).strip()


def to_text(value: Any) -> str:
    """Text representation of a stored value; structured values are JSON-encoded."""
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return orjson.dumps(value, option=orjson.OPT_SORT_KEYS).decode("utf-8")
