"""Chat streaming API routes."""

from __future__ import annotations

import logging
import uuid
from typing import Any, Awaitable, Callable, Optional

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse, Response
from sse_starlette.sse import EventSourceResponse

from ..config import Settings, get_settings
from ..errors import ConfigurationError, TransportError, UpstreamHTTPError
from ..gateway import GatewayClient
from ..schemas.chat import ChatRequest, ErrorResponse
from ..services.conversation_logging import ConversationLogWriter
from ..services.image_store import ImageStore
from ..streaming.reframer import UpstreamReframer

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["chat"])


def get_gateway_client(
    settings: Settings = Depends(get_settings),
) -> GatewayClient:
    return GatewayClient(settings)


def get_image_store(settings: Settings = Depends(get_settings)) -> ImageStore:
    return ImageStore(settings)


def get_reframer() -> UpstreamReframer:
    return UpstreamReframer()


def get_conversation_logger(request: Request) -> Optional[ConversationLogWriter]:
    return getattr(request.app.state, "conversation_logger", None)


def error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(
        ErrorResponse(error=message).model_dump(), status_code=status_code
    )


def build_csv_context(csv_data: str) -> str:
    return (
        "I have access to CSV data. Here's the data:\n"
        f"```csv\n{csv_data}\n```\n\n"
        "I can help analyze this data, provide statistics, summaries, "
        "or answer questions about it."
    )


def prepare_messages(
    payload: ChatRequest, image_url: Optional[str] = None
) -> list[dict[str, Any]]:
    """Attach tabular context and the image to the outbound conversation."""

    messages = [message.model_dump() for message in payload.messages]

    if payload.csv_data:
        messages.insert(
            0, {"role": "assistant", "content": build_csv_context(payload.csv_data)}
        )

    if image_url and messages and messages[-1]["role"] == "user":
        last = messages[-1]
        text = last["content"] if isinstance(last["content"], str) else ""
        messages[-1] = {
            "role": "user",
            "content": [
                {"type": "text", "text": text},
                {"type": "image_url", "image_url": {"url": image_url}},
            ],
        }

    return messages


@router.post("/chat", response_model=None, status_code=200)
async def stream_chat(
    payload: ChatRequest,
    gateway: GatewayClient = Depends(get_gateway_client),
    image_store: ImageStore = Depends(get_image_store),
    reframer: UpstreamReframer = Depends(get_reframer),
    conversation_logger: Optional[ConversationLogWriter] = Depends(
        get_conversation_logger
    ),
) -> Response:
    """Relay a chat turn upstream and stream back canonical text deltas."""

    request_id = uuid.uuid4().hex
    logger.info(
        "Processing chat request %s: messages=%d has_image=%s has_csv=%s",
        request_id,
        len(payload.messages),
        bool(payload.image_data),
        bool(payload.csv_data),
    )

    image_url: Optional[str] = None
    if payload.image_data:
        image_url = await image_store.persist(payload.image_data)

    messages = prepare_messages(payload, image_url)

    try:
        upstream = await gateway.open_chat_stream(messages)
    except UpstreamHTTPError as exc:
        return error_response(exc.response_status, exc.user_message)
    except TransportError as exc:
        logger.error("AI gateway unreachable for request %s: %s", request_id, exc)
        return error_response(
            status.HTTP_502_BAD_GATEWAY, f"AI gateway unreachable: {exc}"
        )
    except ConfigurationError as exc:
        logger.error("Chat request %s rejected: %s", request_id, exc)
        return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, str(exc))

    on_complete: Optional[Callable[[list[str]], Awaitable[None]]] = None
    if conversation_logger is not None and conversation_logger.enabled:
        snapshot = {
            "messages": len(payload.messages),
            "has_image": bool(payload.image_data),
            "image_stored": bool(image_url) and image_url != payload.image_data,
            "has_csv": bool(payload.csv_data),
            "last_user_message": next(
                (
                    m.content
                    for m in reversed(payload.messages)
                    if m.role == "user" and isinstance(m.content, str)
                ),
                None,
            ),
        }

        async def on_complete(deltas: list[str]) -> None:
            await conversation_logger.write(
                request_id=request_id,
                request_snapshot=snapshot,
                deltas=deltas,
            )

    return EventSourceResponse(
        reframer.events(upstream, on_complete=on_complete),
        sep="\n",
    )


__all__ = [
    "build_csv_context",
    "error_response",
    "get_conversation_logger",
    "get_gateway_client",
    "get_image_store",
    "get_reframer",
    "prepare_messages",
    "router",
]
