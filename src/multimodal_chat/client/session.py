"""Client-side orchestration of one chat round at a time."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Callable, Optional

import httpx

from ..errors import (
    ChatError,
    PersistenceError,
    RoundCancelledError,
    SessionBusyError,
    TransportError,
    UpstreamHTTPError,
    ValidationError,
)
from ..repository import MessageStore
from ..schemas.chat import ChatRequest
from ..streaming.reader import EventStreamReader
from ..streaming.wire import EVENT_STREAM_MEDIA_TYPE
from .attachments import AttachmentLimits, resolve_attachments
from .models import Message, RoundState, SessionContext
from .transcript import TranscriptAccumulator, TranscriptListener

logger = logging.getLogger(__name__)

StateListener = Callable[[RoundState], None]

CHAT_PATH = "/api/chat"


class ChatSession:
    """Drive request building, streaming and persistence for a conversation.

    Rounds are serialized: ``send`` refuses to start while a previous round
    is still in progress. A failed round keeps every message already shown.
    """

    def __init__(
        self,
        context: SessionContext,
        *,
        base_url: str,
        http_client: Optional[httpx.AsyncClient] = None,
        store: Optional[MessageStore] = None,
        limits: AttachmentLimits = AttachmentLimits(),
        on_update: Optional[TranscriptListener] = None,
        on_state: Optional[StateListener] = None,
    ) -> None:
        self._context = context
        self._base_url = base_url.rstrip("/")
        self._http = http_client or httpx.AsyncClient(timeout=httpx.Timeout(None, connect=10.0))
        self._owns_http = http_client is None
        self._store = store
        self._limits = limits
        self._on_state = on_state
        self.transcript = TranscriptAccumulator(on_update)
        self._state = RoundState.IDLE
        self._round_task: Optional[asyncio.Task[Any]] = None
        self.last_outcome: Optional[RoundState] = None
        self.last_error: Optional[ChatError] = None

    @property
    def context(self) -> SessionContext:
        return self._context

    @property
    def state(self) -> RoundState:
        return self._state

    @property
    def messages(self) -> list[Message]:
        return self.transcript.messages

    def _set_state(self, state: RoundState) -> None:
        self._state = state
        if self._on_state is not None:
            self._on_state(state)

    def switch_conversation(
        self, conversation_id: Optional[str], records: Optional[list[dict[str, Any]]] = None
    ) -> None:
        """Point the session at another conversation and load its history."""

        if self._state is not RoundState.IDLE:
            raise SessionBusyError("Cannot switch conversations during a round")
        self._context = self._context.with_conversation(conversation_id)
        self.transcript.load(records or [])

    async def send(
        self,
        text: str = "",
        *,
        image_path: Optional[Path] = None,
        tabular_path: Optional[Path] = None,
        tabular_url: Optional[str] = None,
    ) -> Message:
        """Run one round and return the finished assistant message."""

        if self._state is not RoundState.IDLE:
            raise SessionBusyError("A reply is still streaming")
        if not (
            text.strip()
            or image_path
            or tabular_path
            or (tabular_url and tabular_url.strip())
        ):
            raise ValidationError("Nothing to send")

        self.last_error = None
        self._round_task = asyncio.current_task()
        self._set_state(RoundState.SENDING)
        try:
            return await self._run_round(text, image_path, tabular_path, tabular_url)
        except asyncio.CancelledError:
            self._fail(RoundCancelledError("Request cancelled"))
            raise
        except ChatError as exc:
            self._fail(exc)
            raise
        except httpx.HTTPError as exc:
            error = TransportError(str(exc) or exc.__class__.__name__)
            self._fail(error)
            raise error from exc
        except Exception as exc:
            self._fail(ChatError(str(exc) or exc.__class__.__name__))
            raise
        finally:
            self._round_task = None

    def cancel(self) -> bool:
        """Abort the active round; returns False when nothing is running."""

        task = self._round_task
        if task is None or task.done() or self._state is RoundState.IDLE:
            return False
        return task.cancel()

    async def _run_round(
        self,
        text: str,
        image_path: Optional[Path],
        tabular_path: Optional[Path],
        tabular_url: Optional[str],
    ) -> Message:
        attachments = await resolve_attachments(
            self._http,
            image_path=image_path,
            tabular_path=tabular_path,
            tabular_url=tabular_url,
            limits=self._limits,
        )

        user_message = self.transcript.append_user(
            text,
            image_ref=attachments.image_data,
            tabular_ref=attachments.csv_data,
            tabular_name=attachments.csv_file_name,
        )
        await self._persist(user_message)

        payload = ChatRequest(
            messages=self.transcript.history(),
            image_data=attachments.image_data,
            csv_data=attachments.csv_data,
        ).to_wire()

        assistant = self.transcript.begin_assistant()
        try:
            async with self._http.stream(
                "POST",
                f"{self._base_url}{CHAT_PATH}",
                json=payload,
                headers={"Accept": EVENT_STREAM_MEDIA_TYPE},
            ) as response:
                if response.status_code >= 400:
                    body = await response.aread()
                    raise UpstreamHTTPError(
                        response.status_code, _error_message(body, response.status_code)
                    )

                self._set_state(RoundState.STREAMING)
                async for delta in EventStreamReader(response.aiter_bytes()):
                    self.transcript.apply_delta(delta)
        finally:
            self.transcript.complete()

        await self._persist(assistant)
        self.last_outcome = RoundState.COMPLETED
        self._set_state(RoundState.COMPLETED)
        self._set_state(RoundState.IDLE)
        return assistant

    def _fail(self, error: ChatError) -> None:
        logger.warning("Chat round failed: %s", error)
        self.last_error = error
        self.last_outcome = RoundState.FAILED
        self._set_state(RoundState.FAILED)
        self._set_state(RoundState.IDLE)

    async def _persist(self, message: Message) -> None:
        if self._store is None:
            return
        if message.role == "assistant" and not message.content:
            return
        if not self._context.conversation_id:
            logger.debug("No active conversation; message %s not stored", message.id)
            return
        try:
            await self._store.add_message(message.to_record(self._context))
        except Exception as exc:
            # Storage is best effort; a finished reply stays completed
            logger.error(
                "Failed to store %s message %s: %s",
                message.role,
                message.id,
                exc,
                exc_info=not isinstance(exc, PersistenceError),
            )

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()


def _error_message(body: bytes, status_code: int) -> str:
    try:
        payload = json.loads(body.decode("utf-8", errors="replace"))
    except ValueError:
        payload = None
    if isinstance(payload, dict) and isinstance(payload.get("error"), str):
        return payload["error"]
    return f"Failed to get response ({status_code})"


__all__ = ["CHAT_PATH", "ChatSession", "StateListener"]
