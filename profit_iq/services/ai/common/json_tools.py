"""JSON helpers for LLM responses."""

from __future__ import annotations

import re

_LEADING_FENCE_RE = re.compile(r"^```(?:json)?[ \t]*\n?", re.IGNORECASE)
_TRAILING_FENCE_RE = re.compile(r"\n?[ \t]*```$")


def strip_code_fences(text: str) -> str:
    """Remove an optional ```json / ``` wrapper around *text*."""
    if not text:
        return ""
    cleaned = text.strip()
    cleaned = _LEADING_FENCE_RE.sub("", cleaned, count=1)
    cleaned = _TRAILING_FENCE_RE.sub("", cleaned, count=1)
    return cleaned.strip()
