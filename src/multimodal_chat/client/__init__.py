"""Terminal chat client: transcript, session orchestration and attachments."""

from .identity import Identity, IdentityStore
from .models import Message, ResolvedAttachments, RoundState, SessionContext
from .session import ChatSession
from .transcript import TranscriptAccumulator

__all__ = [
    "ChatSession",
    "Identity",
    "IdentityStore",
    "Message",
    "ResolvedAttachments",
    "RoundState",
    "SessionContext",
    "TranscriptAccumulator",
]
