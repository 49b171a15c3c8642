"""Type definitions for the streaming subsystem."""

from __future__ import annotations

from typing import AsyncIterable, Callable

SseEvent = dict[str, str | None]

ByteSource = AsyncIterable[bytes] | AsyncIterable[str]

TextTransform = Callable[[str], str]


__all__ = ["ByteSource", "SseEvent", "TextTransform"]
