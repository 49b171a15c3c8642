"""Canonical delta stream format exchanged between server and client."""

from __future__ import annotations

import json

from .types import SseEvent

DONE_SENTINEL = "[DONE]"
EVENT_STREAM_MEDIA_TYPE = "text/event-stream"


def delta_payload(text: str) -> str:
    """Return the JSON payload carrying one text delta."""

    return json.dumps(
        {"choices": [{"delta": {"content": text}}]}, ensure_ascii=False
    )


def delta_event(text: str) -> SseEvent:
    return {"data": delta_payload(text)}


def done_event() -> SseEvent:
    return {"data": DONE_SENTINEL}


def encode_event(event: SseEvent) -> str:
    """Render an event dictionary as ``data:`` lines followed by a blank line."""

    data = event.get("data") or ""
    lines = [f"data: {line}" for line in data.split("\n")]
    return "\n".join(lines) + "\n\n"


__all__ = [
    "DONE_SENTINEL",
    "EVENT_STREAM_MEDIA_TYPE",
    "delta_event",
    "delta_payload",
    "done_event",
    "encode_event",
]
