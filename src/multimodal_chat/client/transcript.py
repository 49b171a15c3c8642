"""In-memory transcript that streaming deltas are applied to."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Optional

from ..errors import SessionBusyError
from .models import Message

logger = logging.getLogger(__name__)

TranscriptListener = Callable[[list[Message]], None]


class TranscriptAccumulator:
    """Own the ordered message list and publish every change."""

    def __init__(self, on_update: Optional[TranscriptListener] = None) -> None:
        self._messages: list[Message] = []
        self._in_flight: Optional[Message] = None
        self._on_update = on_update

    @property
    def messages(self) -> list[Message]:
        return list(self._messages)

    @property
    def in_flight(self) -> Optional[Message]:
        return self._in_flight

    def _publish(self) -> None:
        if self._on_update is not None:
            self._on_update(self.messages)

    def history(self) -> list[dict[str, Any]]:
        """Role/content pairs for the outbound request.

        Assistant turns that produced no text are left out.
        """

        return [
            message.to_api()
            for message in self._messages
            if message.content or message.role == "user"
        ]

    def append_user(
        self,
        content: str,
        *,
        image_ref: Optional[str] = None,
        tabular_ref: Optional[str] = None,
        tabular_name: Optional[str] = None,
    ) -> Message:
        if self._in_flight is not None:
            raise SessionBusyError("Previous reply is still streaming")
        message = Message(
            role="user",
            content=content,
            image_ref=image_ref,
            tabular_ref=tabular_ref,
            tabular_name=tabular_name,
        )
        self._messages.append(message)
        self._publish()
        return message

    def begin_assistant(self) -> Message:
        if self._in_flight is not None:
            raise SessionBusyError("Previous reply is still streaming")
        message = Message(role="assistant", streaming=True)
        self._messages.append(message)
        self._in_flight = message
        self._publish()
        return message

    def apply_delta(self, text: str) -> None:
        """Append one delta to the in-flight reply and publish once."""

        if self._in_flight is None:
            raise RuntimeError("No assistant message is streaming")
        self._in_flight.content += text
        self._publish()

    def complete(self) -> Optional[Message]:
        """Freeze the in-flight reply, keeping whatever text arrived."""

        message = self._in_flight
        if message is None:
            return None
        message.streaming = False
        self._in_flight = None
        self._publish()
        return message

    def load(self, records: Iterable[dict[str, Any]]) -> None:
        """Replace the transcript with stored message records."""

        if self._in_flight is not None:
            raise SessionBusyError("Cannot switch conversations while streaming")
        self._messages = [_message_from_record(record) for record in records]
        self._publish()

    def clear(self) -> None:
        self.load(())


def _message_from_record(record: dict[str, Any]) -> Message:
    timestamp = record.get("created_at")
    parsed: datetime
    try:
        parsed = datetime.fromisoformat(timestamp) if timestamp else datetime.now(timezone.utc)
    except ValueError:
        logger.debug("Unparseable stored timestamp %r", timestamp)
        parsed = datetime.now(timezone.utc)
    kwargs: dict[str, Any] = {
        "role": record.get("role", "assistant"),
        "content": record.get("content") or "",
        "timestamp": parsed,
        "image_ref": record.get("image_ref"),
        "tabular_ref": record.get("tabular_ref"),
        "tabular_name": record.get("tabular_file_name"),
    }
    if record.get("id"):
        kwargs["id"] = str(record["id"])
    return Message(**kwargs)


__all__ = ["TranscriptAccumulator", "TranscriptListener"]
