"""Client-side consumer for the canonical delta event stream."""

from __future__ import annotations

import json
import logging
import re
from typing import Any, AsyncIterator, Callable, Optional

from .buffer import StreamBuffer
from .extraction import extract_text
from .types import ByteSource
from .wire import DONE_SENTINEL

logger = logging.getLogger(__name__)

_EVENT_SEPARATOR = re.compile(r"\r?\n\r?\n")
_LINE_SEPARATOR = re.compile(r"\r?\n")
_DATA_PREFIX = "data:"


def parse_event_payload(raw_event: str) -> str:
    """Join the ``data:`` lines of one event into a single payload."""

    data_lines: list[str] = []
    for raw_line in _LINE_SEPARATOR.split(raw_event):
        line = raw_line.strip()
        if not line.startswith(_DATA_PREFIX):
            continue
        value = line[len(_DATA_PREFIX) :]
        if value.startswith(" "):
            value = value[1:]
        data_lines.append(value)
    return "\n".join(data_lines)


class EventStreamReader:
    """Async iterator of text deltas decoded from an event-stream source.

    ``source`` yields raw chunks exactly as they come off the network; event
    boundaries need not line up with chunk boundaries. Iteration ends at the
    ``[DONE]`` sentinel or when the source is exhausted, whichever is first.
    """

    def __init__(
        self,
        source: ByteSource,
        *,
        extractor: Callable[[Any], str] = extract_text,
    ) -> None:
        self._source = source
        self._extract = extractor
        self._finished = False

    def __aiter__(self) -> AsyncIterator[str]:
        return self._iterate()

    @property
    def finished(self) -> bool:
        """True once the sentinel was observed or the source ran dry."""

        return self._finished

    async def _iterate(self) -> AsyncIterator[str]:
        buffer = StreamBuffer()
        async for chunk in self._source:
            buffer.feed(chunk)
            for raw_event in buffer.split(_EVENT_SEPARATOR):
                payload = parse_event_payload(raw_event)
                if payload == DONE_SENTINEL:
                    self._finished = True
                    await self.aclose()
                    return
                text = self._render(payload)
                if text:
                    yield text

        self._finished = True
        remainder = buffer.drain()
        if not remainder.strip():
            return
        payload = parse_event_payload(remainder)
        if payload == DONE_SENTINEL:
            return
        text = self._render(payload)
        if text:
            yield text

    def _render(self, payload: str) -> str:
        if not payload:
            return ""
        try:
            value = json.loads(payload)
        except (ValueError, RecursionError):
            logger.debug("Non-JSON event payload treated as text")
            return payload
        return self._extract(value).strip()

    async def aclose(self) -> None:
        closer = getattr(self._source, "aclose", None)
        if closer is not None:
            await closer()


__all__ = ["EventStreamReader", "parse_event_payload"]
