"""Streaming response normalization package."""

from .extraction import ResponseShape, TextExtractor, extract_text
from .reader import EventStreamReader
from .reframer import UpstreamReframer, UpstreamResponse
from .sanitizer import sanitize_text
from .types import SseEvent
from .wire import DONE_SENTINEL

__all__ = [
    "DONE_SENTINEL",
    "EventStreamReader",
    "ResponseShape",
    "SseEvent",
    "TextExtractor",
    "UpstreamReframer",
    "UpstreamResponse",
    "extract_text",
    "sanitize_text",
]
