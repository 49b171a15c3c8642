"""Application factory for the FastAPI service."""

from __future__ import annotations

import asyncio
import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import get_settings
from .gateway import GatewayClient
from .logging_settings import parse_logging_settings
from .routers.chat import router as chat_router
from .services.conversation_logging import ConversationLogWriter

_LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
_LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"


def _configure_logging(
    default_level: int | None = logging.INFO,
    upstream_level: int | None = logging.WARNING,
) -> None:
    """Configure logging from LOG_LEVEL / LOG_FILE, falling back to the conf file."""
    # Load .env file first to ensure LOG_FILE is available
    load_dotenv()

    fallback = logging.getLevelName(default_level) if default_level else "WARNING"
    log_level_str = os.getenv("LOG_LEVEL", fallback).upper()
    log_level = getattr(logging, log_level_str, logging.INFO)

    handlers: list[logging.Handler] = []

    log_file = os.getenv("LOG_FILE")
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(_LOG_FORMAT, datefmt=_LOG_DATEFMT))
        handlers.append(file_handler)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(logging.Formatter(_LOG_FORMAT, datefmt=_LOG_DATEFMT))
    handlers.append(console_handler)

    logging.basicConfig(
        level=log_level,
        handlers=handlers,
        force=True,  # Override any existing configuration
    )

    logging.getLogger("multimodal_chat").setLevel(log_level)
    logging.getLogger("uvicorn").setLevel(log_level)
    logging.getLogger("uvicorn.access").setLevel(log_level)
    logging.getLogger("uvicorn.error").setLevel(log_level)

    # "off" still lets errors through for the transport loggers
    transport_level = upstream_level if upstream_level is not None else logging.ERROR
    for name in ("httpx", "httpcore", "google", "multimodal_chat.gateway"):
        logging.getLogger(name).setLevel(transport_level)


def create_app() -> FastAPI:
    settings = get_settings()
    logging_settings = parse_logging_settings(
        settings.resolve_path(settings.logging_settings_path)
    )

    _configure_logging(
        logging_settings.terminal_level, logging_settings.upstream_level
    )

    conversation_logger = ConversationLogWriter(
        settings.resolve_path(settings.conversation_log_dir),
        min_level=logging_settings.conversations_level,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        try:
            yield
        finally:
            # Bound shutdown so a stuck connection cannot hang the process
            try:
                await asyncio.wait_for(GatewayClient.aclose_shared(), timeout=10.0)
            except asyncio.TimeoutError:
                logging.warning("Gateway client shutdown timed out after 10s")

    app = FastAPI(
        title="Multimodal Chat Backend",
        version="0.1.0",
        description="Streams normalized chat deltas from an AI gateway.",
        lifespan=lifespan,
    )

    app.state.conversation_logger = conversation_logger

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RequestValidationError)
    async def _invalid_request(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        errors = exc.errors()
        message = errors[0].get("msg", "Invalid request") if errors else "Invalid request"
        return JSONResponse(
            {"error": f"Invalid chat request: {message}"},
            status_code=status.HTTP_400_BAD_REQUEST,
        )

    app.include_router(chat_router)

    @app.get("/health", tags=["health"])
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok", "model": settings.default_model}

    return app


__all__ = ["create_app"]
