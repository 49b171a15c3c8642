"""Strip provider bookkeeping tokens from extracted text."""

from __future__ import annotations

import re

_MODEL_TOKEN = re.compile(r"\bmodel\S+", re.IGNORECASE)
_TEXT_MARKER = re.compile(r"\bTEXT\d+\b", re.IGNORECASE)
_STOP_WORD = re.compile(r"\bSTOP\b", re.IGNORECASE)
_OPAQUE_ID = re.compile(r"[A-Za-z0-9_-]{16,}")
_WHITESPACE_RUN = re.compile(r"\s{2,}")

_REMOVALS: tuple[re.Pattern[str], ...] = (
    _MODEL_TOKEN,
    _TEXT_MARKER,
    _STOP_WORD,
    _OPAQUE_ID,
)


def sanitize_text(text: str) -> str:
    """Remove model ids, finish markers and opaque ids, then tidy whitespace.

    This is a best-effort cleanup for text recovered by the catch-all
    extraction path; it does not guarantee the result is free of noise and
    it will also drop legitimate words that look like identifiers.
    """

    if not text:
        return ""
    cleaned = text
    for pattern in _REMOVALS:
        cleaned = pattern.sub("", cleaned)
    cleaned = _WHITESPACE_RUN.sub(" ", cleaned)
    return cleaned.strip()


__all__ = ["sanitize_text"]
