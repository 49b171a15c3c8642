"""Streaming client for the OpenAI-compatible AI gateway."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, AsyncGenerator, Sequence

import httpx

from .config import Settings
from .errors import ConfigurationError, TransportError, UpstreamHTTPError
from .streaming.reframer import UpstreamResponse

logger = logging.getLogger(__name__)


class GatewayClient:
    """Client responsible for opening chat completion streams upstream."""

    _client_lock: asyncio.Lock = asyncio.Lock()
    _client_pool: dict[tuple[str, float], httpx.AsyncClient] = {}

    def __init__(self, settings: Settings):
        self._settings = settings

    def _client_key(self) -> tuple[str, float]:
        return (self._base_url, float(self._settings.request_timeout))

    async def _get_http_client(self) -> httpx.AsyncClient:
        key = self._client_key()
        client = self.__class__._client_pool.get(key)
        if client is not None:
            return client

        async with self.__class__._client_lock:
            client = self.__class__._client_pool.get(key)
            if client is None:
                timeout = httpx.Timeout(self._settings.request_timeout, connect=10.0)
                limits = httpx.Limits(
                    max_connections=50,
                    max_keepalive_connections=20,
                )
                client = httpx.AsyncClient(
                    timeout=timeout,
                    limits=limits,
                    http2=True,
                )
                self.__class__._client_pool[key] = client
        return client

    @property
    def _headers(self) -> dict[str, str]:
        api_key = self._settings.gateway_api_key
        if api_key is None or not api_key.get_secret_value():
            raise ConfigurationError("GATEWAY_API_KEY is not configured")
        headers = {
            "Authorization": f"Bearer {api_key.get_secret_value()}",
            "Content-Type": "application/json",
            "Accept": "text/event-stream",
        }
        if self._settings.gateway_app_url:
            referer = str(self._settings.gateway_app_url)
            headers["HTTP-Referer"] = referer
            headers["Referer"] = referer
        if self._settings.gateway_app_name:
            headers["X-Title"] = self._settings.gateway_app_name
        return headers

    @property
    def _base_url(self) -> str:
        """Return the gateway base URL without a trailing slash."""

        return str(self._settings.gateway_base_url).rstrip("/")

    def build_payload(self, messages: Sequence[dict[str, Any]]) -> dict[str, Any]:
        """Wrap prepared messages with the system prompt and model."""

        conversation: list[dict[str, Any]] = []
        system_prompt = (self._settings.system_prompt or "").strip()
        if system_prompt:
            conversation.append({"role": "system", "content": system_prompt})
        conversation.extend(messages)
        return {
            "model": self._settings.default_model,
            "messages": conversation,
            "stream": True,
        }

    async def open_chat_stream(
        self, messages: Sequence[dict[str, Any]]
    ) -> UpstreamResponse:
        """Send the chat request and return the opened upstream response.

        Raises ``UpstreamHTTPError`` before any body is consumed when the
        gateway answers with a non-success status.
        """

        headers = self._headers
        payload = self.build_payload(messages)
        url = f"{self._base_url}/chat/completions"

        logger.info(
            "Making request to AI gateway with %d messages", len(payload["messages"])
        )

        client = await self._get_http_client()
        request = client.build_request("POST", url, headers=headers, json=payload)
        try:
            response = await client.send(request, stream=True)
        except httpx.HTTPError as exc:
            raise TransportError(str(exc)) from exc

        if response.status_code >= 400:
            try:
                body = await response.aread()
            finally:
                await response.aclose()
            detail = self._extract_error_detail(body)
            logger.error("AI gateway error: %s %s", response.status_code, detail)
            raise UpstreamHTTPError(response.status_code, detail)

        return UpstreamResponse(
            content_type=response.headers.get("content-type", ""),
            stream=self._iter_bytes(response),
            transfer_encoding=response.headers.get("transfer-encoding"),
            close=response.aclose,
        )

    @staticmethod
    async def _iter_bytes(response: httpx.Response) -> AsyncGenerator[bytes, None]:
        try:
            async for chunk in response.aiter_bytes():
                yield chunk
        except httpx.HTTPError as exc:
            raise TransportError(str(exc)) from exc

    async def aclose(self) -> None:
        await self.__class__.aclose_shared()

    @classmethod
    async def aclose_shared(cls) -> None:
        async with cls._client_lock:
            clients = list(cls._client_pool.values())
            cls._client_pool.clear()
        for client in clients:
            try:
                await client.aclose()
            except Exception:  # pragma: no cover - best effort cleanup
                logger.debug("Failed to close pooled HTTP client", exc_info=True)

    @staticmethod
    def _extract_error_detail(raw: bytes) -> Any:
        if not raw:
            return "AI gateway returned an empty error response."
        try:
            text = raw.decode("utf-8")
        except UnicodeDecodeError:
            text = raw.decode("utf-8", errors="ignore")
        try:
            payload = json.loads(text)
        except json.JSONDecodeError:
            return text
        if isinstance(payload, dict):
            return payload.get("error") or payload
        return payload


__all__ = ["GatewayClient"]
