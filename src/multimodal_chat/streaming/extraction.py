"""Best-effort text extraction from heterogeneous provider payloads.

Providers disagree on where generated text lives: OpenAI-style chunks use
``choices[0].delta.content``, complete responses use ``message.content``,
Gemini nests text under ``candidates[].content.parts[]`` and other gateways
wrap it in ``output.content``. Each layout is described by a
:class:`ResponseShape` and the shapes are tried in order; the first one whose
predicate matches produces the result.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Sequence

logger = logging.getLogger(__name__)

Extract = Callable[[Any], str]


@dataclass(frozen=True)
class ResponseShape:
    """A predicate/extractor pair for one provider payload layout."""

    name: str
    matches: Callable[[Any], bool]
    extract: Callable[[Any, Extract], str]


def _is_sequence(value: Any) -> bool:
    return isinstance(value, Sequence) and not isinstance(value, (str, bytes))


def _get(value: Any, *path: str) -> Any:
    current = value
    for key in path:
        if not isinstance(current, Mapping):
            return None
        current = current.get(key)
    return current


def _scalar(value: Any, _extract: Extract) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _sequence(value: Any, extract: Extract) -> str:
    return "".join(extract(item) for item in value)


def _text_field(value: Any, _extract: Extract) -> str:
    return value["text"]


def _delta_content(value: Any, _extract: Extract) -> str:
    return value["delta"]["content"]


def _choices(value: Any, extract: Extract) -> str:
    choices = value["choices"]
    if not choices:
        return ""
    first = choices[0]
    delta_content = _get(first, "delta", "content")
    if isinstance(delta_content, str) and delta_content:
        return delta_content
    message_content = _get(first, "message", "content")
    if message_content is not None:
        text = extract(message_content)
        if text:
            return text
    text = _get(first, "text")
    if isinstance(text, str) and text:
        return text
    return ""


def _output_content(value: Any, extract: Extract) -> str:
    return extract(value["output"]["content"])


def _join_parts(parts: Any) -> str:
    fragments: list[str] = []
    for part in parts:
        text = _get(part, "text")
        fragments.append(text if isinstance(text, str) else "")
    return "".join(fragments)


def _candidates(value: Any, extract: Extract) -> str:
    fragments: list[str] = []
    for candidate in value["candidates"]:
        parts = _get(candidate, "content", "parts")
        if _is_sequence(parts):
            fragments.append(_join_parts(parts))
            continue
        output_content = _get(candidate, "output", "content")
        if output_content is not None:
            fragments.append(extract(output_content))
    return "".join(fragments)


def _parts(value: Any, _extract: Extract) -> str:
    return _join_parts(value["parts"])


def _every_value(value: Any, extract: Extract) -> str:
    # Unknown layouts: keep every leaf rather than silently losing text.
    return "".join(extract(item) for item in value.values())


DEFAULT_SHAPES: tuple[ResponseShape, ...] = (
    ResponseShape(
        "scalar",
        lambda v: isinstance(v, (str, int, float, bool)),
        _scalar,
    ),
    ResponseShape("sequence", _is_sequence, _sequence),
    ResponseShape(
        "text",
        lambda v: isinstance(_get(v, "text"), str),
        _text_field,
    ),
    ResponseShape(
        "delta",
        lambda v: isinstance(_get(v, "delta", "content"), str),
        _delta_content,
    ),
    ResponseShape(
        "choices",
        lambda v: _is_sequence(_get(v, "choices")),
        _choices,
    ),
    ResponseShape(
        "output",
        lambda v: isinstance(_get(v, "output"), Mapping)
        and "content" in v["output"],
        _output_content,
    ),
    ResponseShape(
        "candidates",
        lambda v: _is_sequence(_get(v, "candidates")),
        _candidates,
    ),
    ResponseShape(
        "parts",
        lambda v: _is_sequence(_get(v, "parts")),
        _parts,
    ),
    ResponseShape("fallback", lambda v: isinstance(v, Mapping), _every_value),
)


class TextExtractor:
    """Apply an ordered list of response shapes to decoded JSON values."""

    def __init__(self, shapes: Sequence[ResponseShape] = DEFAULT_SHAPES) -> None:
        self._shapes: list[ResponseShape] = list(shapes)

    @property
    def shapes(self) -> tuple[ResponseShape, ...]:
        return tuple(self._shapes)

    def register(self, shape: ResponseShape, *, before: str | None = None) -> None:
        """Add a provider shape, ahead of ``before`` or ahead of the fallback."""

        anchor = before or "fallback"
        for index, existing in enumerate(self._shapes):
            if existing.name == anchor:
                self._shapes.insert(index, shape)
                return
        self._shapes.append(shape)

    def extract(self, value: Any) -> str:
        try:
            return self._extract(value)
        except RecursionError:
            logger.debug("Payload nested too deeply for text extraction")
            return ""

    def _extract(self, value: Any) -> str:
        if value is None:
            return ""
        for shape in self._shapes:
            try:
                matched = shape.matches(value)
            except Exception:  # pragma: no cover - third-party predicates
                logger.debug("Shape %s predicate failed", shape.name, exc_info=True)
                continue
            if not matched:
                continue
            try:
                return shape.extract(value, self._extract)
            except RecursionError:
                raise
            except Exception:  # pragma: no cover - third-party extractors
                logger.debug("Shape %s extractor failed", shape.name, exc_info=True)
                return ""
        return ""


_default_extractor = TextExtractor()


def extract_text(value: Any) -> str:
    """Return the plain text carried by ``value`` using the default shapes."""

    return _default_extractor.extract(value)


__all__ = ["DEFAULT_SHAPES", "ResponseShape", "TextExtractor", "extract_text"]
