"""Re-emit upstream provider responses as a canonical delta stream."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, AsyncGenerator, Awaitable, Callable, Iterable, Optional

from ..errors import TransportError
from .buffer import StreamBuffer
from .extraction import extract_text
from .sanitizer import sanitize_text
from .types import ByteSource, SseEvent, TextTransform
from .wire import DONE_SENTINEL, EVENT_STREAM_MEDIA_TYPE, delta_event, done_event

logger = logging.getLogger(__name__)

_LINE_BREAK = re.compile(r"\n")
_SKIPPED_SSE_FIELDS = frozenset({"event", "id", "retry"})


@dataclass
class UpstreamResponse:
    """An opened upstream reply: either a buffered body or a byte stream."""

    content_type: str
    body: Optional[bytes] = None
    stream: Optional[ByteSource] = None
    transfer_encoding: Optional[str] = None
    close: Optional[Callable[[], Awaitable[None]]] = None

    @property
    def media_type(self) -> str:
        return self.content_type.split(";", 1)[0].strip().lower()

    @property
    def is_whole_document(self) -> bool:
        if self.stream is None:
            return True
        chunked = "chunked" in (self.transfer_encoding or "").lower()
        return self.media_type == "application/json" and not chunked

    async def aclose(self) -> None:
        if self.close is not None:
            await self.close()


def _decode_documents(text: str) -> tuple[list[Any], str]:
    """Decode one or more concatenated JSON documents.

    Returns the decoded values and any trailing text that is not JSON.
    """

    decoder = json.JSONDecoder()
    values: list[Any] = []
    index = 0
    length = len(text)
    while True:
        while index < length and text[index].isspace():
            index += 1
        if index >= length:
            return values, ""
        try:
            value, index = decoder.raw_decode(text, index)
        except (ValueError, RecursionError):
            return values, text[index:]
        values.append(value)


class UpstreamReframer:
    """Normalize one upstream response into canonical text deltas."""

    def __init__(
        self,
        *,
        extractor: Callable[[Any], str] = extract_text,
        sanitizer: TextTransform = sanitize_text,
    ) -> None:
        self._extract = extractor
        self._sanitize = sanitizer

    def document_deltas(self, body: bytes | str) -> list[str]:
        """Whole-document mode: one delta per non-empty decoded value."""

        text = body.decode("utf-8", errors="replace") if isinstance(body, bytes) else body
        values, remainder = _decode_documents(text)

        deltas: list[str] = []
        for value in values:
            items: Iterable[Any] = value if isinstance(value, list) else (value,)
            for item in items:
                rendered = self._sanitize(self._extract(item))
                if rendered:
                    deltas.append(rendered)

        if remainder.strip():
            logger.debug("Upstream document had %d undecodable chars", len(remainder))
            rendered = self._sanitize(remainder)
            if rendered:
                deltas.append(rendered)
        return deltas

    async def stream_deltas(
        self, chunks: ByteSource, *, event_stream: bool = True
    ) -> AsyncGenerator[str, None]:
        """Streamed mode: frame by newline and emit one delta per line.

        SSE comments and `event:`/`id:`/`retry:` fields are only skipped when
        ``event_stream`` is set; other framings keep such lines as text.
        """

        buffer = StreamBuffer()
        async for chunk in chunks:
            buffer.feed(chunk)
            for line in buffer.split(_LINE_BREAK):
                rendered = self._render_line(line, event_stream)
                if rendered:
                    yield rendered

        remainder = buffer.drain()
        if remainder.strip():
            rendered = self._render_line(remainder, event_stream)
            if rendered:
                yield rendered

    async def deltas(self, upstream: UpstreamResponse) -> AsyncGenerator[str, None]:
        if upstream.is_whole_document:
            body = upstream.body
            if body is None:
                body = await _read_all(upstream.stream)
            for text in self.document_deltas(body):
                yield text
            return

        assert upstream.stream is not None
        event_stream = upstream.media_type == EVENT_STREAM_MEDIA_TYPE
        async for text in self.stream_deltas(upstream.stream, event_stream=event_stream):
            yield text

    async def events(
        self,
        upstream: UpstreamResponse,
        *,
        on_complete: Optional[Callable[[list[str]], Awaitable[None]]] = None,
    ) -> AsyncGenerator[SseEvent, None]:
        """Yield canonical SSE events, always terminated by ``[DONE]``."""

        emitted: list[str] = []
        try:
            async for text in self.deltas(upstream):
                emitted.append(text)
                yield delta_event(text)
        except TransportError as exc:
            logger.warning("Upstream stream interrupted after %d deltas: %s", len(emitted), exc)
        except Exception:
            logger.error(
                "Reframing failed after %d deltas", len(emitted), exc_info=True
            )
        finally:
            await upstream.aclose()

        logger.debug("Reframed upstream response into %d deltas", len(emitted))
        yield done_event()

        if on_complete is not None:
            try:
                await on_complete(emitted)
            except Exception:  # pragma: no cover - logging must not break the stream
                logger.warning("Post-stream hook failed", exc_info=True)

    def _render_line(self, line: str, event_stream: bool = True) -> str:
        payload = _unwrap_line(line, event_stream)
        if payload is None:
            return ""
        try:
            value = json.loads(payload)
        except (ValueError, RecursionError):
            return self._sanitize(payload)
        return self._sanitize(self._extract(value))


def _unwrap_line(line: str, event_stream: bool = True) -> Optional[str]:
    """Return the payload of one upstream line, or ``None`` to skip it."""

    stripped = line.strip()
    if not stripped:
        return None
    if event_stream and stripped.startswith(":"):
        return None

    field, separator, value = stripped.partition(":")
    if separator and field == "data":
        payload = value[1:] if value.startswith(" ") else value
        payload = payload.strip()
        if not payload or payload == DONE_SENTINEL:
            return None
        return payload
    if event_stream and separator and field in _SKIPPED_SSE_FIELDS:
        return None
    return stripped


async def _read_all(stream: Optional[ByteSource]) -> bytes:
    if stream is None:
        return b""
    chunks: list[bytes] = []
    async for chunk in stream:
        chunks.append(chunk.encode("utf-8") if isinstance(chunk, str) else chunk)
    return b"".join(chunks)


__all__ = ["UpstreamReframer", "UpstreamResponse"]
