"""Data structures for the chat client transcript."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal, Optional
from uuid import uuid4

Role = Literal["user", "assistant"]


class RoundState(str, Enum):
    """Lifecycle of one request/response round."""

    IDLE = "idle"
    SENDING = "sending"
    STREAMING = "streaming"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class SessionContext:
    """Who is chatting and in which conversation."""

    user_id: Optional[str] = None
    user_name: Optional[str] = None
    conversation_id: Optional[str] = None

    def with_conversation(self, conversation_id: Optional[str]) -> "SessionContext":
        return SessionContext(self.user_id, self.user_name, conversation_id)


@dataclass
class Message:
    """One turn of the conversation.

    Only ``content`` of an in-flight assistant message may change; every
    other field is fixed at creation.
    """

    role: Role
    content: str = ""
    id: str = field(default_factory=lambda: uuid4().hex)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    image_ref: Optional[str] = None
    tabular_ref: Optional[str] = None
    tabular_name: Optional[str] = None
    streaming: bool = False

    def to_api(self) -> dict[str, Any]:
        return {"role": self.role, "content": self.content}

    def to_record(self, context: SessionContext) -> dict[str, Any]:
        """Shape the message for the persistence collaborator."""

        return {
            "conversation_id": context.conversation_id,
            "user_id": context.user_id,
            "role": self.role,
            "content": self.content,
            "image_ref": self.image_ref,
            "tabular_ref": self.tabular_ref,
            "tabular_file_name": self.tabular_name,
        }


@dataclass(frozen=True)
class ResolvedAttachments:
    """Attachment payloads ready to be sent with a chat request."""

    image_data: Optional[str] = None
    csv_data: Optional[str] = None
    csv_file_name: Optional[str] = None


__all__ = [
    "Message",
    "ResolvedAttachments",
    "Role",
    "RoundState",
    "SessionContext",
]
