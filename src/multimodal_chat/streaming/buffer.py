"""Incremental text buffer shared by the stream reframer and reader."""

from __future__ import annotations

import codecs
import re


class StreamBuffer:
    """Accumulate decoded chunks and hand back completed units.

    The buffer always holds the suffix of everything received that has not
    yet been resolved into a complete unit.
    """

    def __init__(self, encoding: str = "utf-8") -> None:
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._text = ""

    def __bool__(self) -> bool:
        return bool(self._text)

    @property
    def pending(self) -> str:
        return self._text

    def feed(self, chunk: bytes | str) -> None:
        if isinstance(chunk, str):
            self._text += chunk
        else:
            self._text += self._decoder.decode(chunk)

    def split(self, separator: re.Pattern[str]) -> list[str]:
        """Return complete fragments, keeping the trailing one buffered."""

        parts = separator.split(self._text)
        self._text = parts.pop()
        return parts

    def drain(self) -> str:
        """Flush the decoder and return whatever is left."""

        self._text += self._decoder.decode(b"", final=True)
        remainder, self._text = self._text, ""
        return remainder


__all__ = ["StreamBuffer"]
