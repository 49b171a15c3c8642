from __future__ import annotations

import json
from pathlib import Path
from typing import Any, AsyncIterator, Optional

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from multimodal_chat.app import create_app
from multimodal_chat.errors import (
    PAYMENT_REQUIRED_MESSAGE,
    RATE_LIMIT_MESSAGE,
    ConfigurationError,
    TransportError,
    UpstreamHTTPError,
)
from multimodal_chat.routers.chat import (
    build_csv_context,
    get_gateway_client,
    get_image_store,
    prepare_messages,
    router,
)
from multimodal_chat.schemas.chat import ChatRequest
from multimodal_chat.streaming.reframer import UpstreamResponse


class DummyGateway:
    def __init__(
        self,
        upstream: Optional[UpstreamResponse] = None,
        error: Optional[Exception] = None,
    ) -> None:
        self._upstream = upstream
        self._error = error
        self.messages: Optional[list[dict[str, Any]]] = None

    async def open_chat_stream(self, messages: list[dict[str, Any]]) -> UpstreamResponse:
        self.messages = list(messages)
        if self._error is not None:
            raise self._error
        assert self._upstream is not None
        return self._upstream


class DummyImageStore:
    def __init__(self, stored_url: str = "https://storage.example/chat-images/1.png") -> None:
        self._stored_url = stored_url
        self.calls: list[str] = []

    async def persist(self, data_url: str) -> str:
        self.calls.append(data_url)
        return self._stored_url


def make_client(app: FastAPI, gateway: DummyGateway, images: DummyImageStore) -> TestClient:
    app.dependency_overrides[get_gateway_client] = lambda: gateway
    app.dependency_overrides[get_image_store] = lambda: images
    return TestClient(app)


def make_router_client(gateway: DummyGateway, images: DummyImageStore | None = None) -> TestClient:
    app = FastAPI()
    app.include_router(router)
    return make_client(app, gateway, images or DummyImageStore())


def document(text: str) -> UpstreamResponse:
    body = json.dumps({"choices": [{"message": {"content": text}}]}).encode()
    return UpstreamResponse(content_type="application/json", body=body)


def sse_data(body: str) -> list[str]:
    payloads: list[str] = []
    for block in body.replace("\r\n", "\n").split("\n\n"):
        lines = [line[len("data: "):] for line in block.split("\n") if line.startswith("data: ")]
        if lines:
            payloads.append("\n".join(lines))
    return payloads


def test_stream_chat_relays_canonical_deltas() -> None:
    gateway = DummyGateway(document("Paris is the capital of France."))
    client = make_router_client(gateway)

    response = client.post(
        "/api/chat", json={"messages": [{"role": "user", "content": "Capital of France?"}]}
    )

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    payloads = sse_data(response.text)
    assert payloads[-1] == "[DONE]"
    assert [json.loads(p)["choices"][0]["delta"]["content"] for p in payloads[:-1]] == [
        "Paris is the capital of France."
    ]


def test_stream_chat_reframes_upstream_event_stream() -> None:
    async def upstream_chunks() -> AsyncIterator[bytes]:
        yield b'data: {"choices":[{"delta":{"content":"Hel"}}]}\n\ndata: {"choi'
        yield b'ces":[{"delta":{"content":"lo"}}]}\n\ndata: [DONE]\n\n'

    upstream = UpstreamResponse(content_type="text/event-stream", stream=upstream_chunks())
    client = make_router_client(DummyGateway(upstream))

    response = client.post("/api/chat", json={"messages": [{"role": "user", "content": "hi"}]})

    payloads = sse_data(response.text)
    assert payloads == [
        json.dumps({"choices": [{"delta": {"content": "Hel"}}]}),
        json.dumps({"choices": [{"delta": {"content": "lo"}}]}),
        "[DONE]",
    ]


@pytest.mark.parametrize(
    ("upstream_status", "expected_status", "expected_message"),
    [
        (429, 429, RATE_LIMIT_MESSAGE),
        (402, 402, PAYMENT_REQUIRED_MESSAGE),
        (503, 500, "AI gateway error: 503"),
        (400, 500, "AI gateway error: 400"),
    ],
)
def test_upstream_errors_map_to_json_bodies(
    upstream_status: int, expected_status: int, expected_message: str
) -> None:
    gateway = DummyGateway(error=UpstreamHTTPError(upstream_status, "upstream detail"))
    client = make_router_client(gateway)

    response = client.post("/api/chat", json={"messages": [{"role": "user", "content": "hi"}]})

    assert response.status_code == expected_status
    assert response.headers["content-type"].startswith("application/json")
    assert response.json() == {"error": expected_message}


def test_unreachable_gateway_returns_502() -> None:
    gateway = DummyGateway(error=TransportError("connection refused"))
    client = make_router_client(gateway)

    response = client.post("/api/chat", json={"messages": [{"role": "user", "content": "hi"}]})

    assert response.status_code == 502
    assert response.json() == {"error": "AI gateway unreachable: connection refused"}


def test_missing_api_key_returns_500() -> None:
    gateway = DummyGateway(error=ConfigurationError("GATEWAY_API_KEY is not configured"))
    client = make_router_client(gateway)

    response = client.post("/api/chat", json={"messages": [{"role": "user", "content": "hi"}]})

    assert response.status_code == 500
    assert response.json() == {"error": "GATEWAY_API_KEY is not configured"}


def test_image_is_stored_and_attached_to_last_user_message() -> None:
    gateway = DummyGateway(document("A cat."))
    images = DummyImageStore()
    client = make_router_client(gateway, images)

    response = client.post(
        "/api/chat",
        json={
            "messages": [{"role": "user", "content": "What is this?"}],
            "imageData": "data:image/png;base64,aGVsbG8=",
        },
    )

    assert response.status_code == 200
    assert images.calls == ["data:image/png;base64,aGVsbG8="]
    assert gateway.messages == [
        {
            "role": "user",
            "content": [
                {"type": "text", "text": "What is this?"},
                {
                    "type": "image_url",
                    "image_url": {"url": "https://storage.example/chat-images/1.png"},
                },
            ],
        }
    ]


def test_prepare_messages_inserts_csv_context_first() -> None:
    payload = ChatRequest.model_validate(
        {
            "messages": [
                {"role": "user", "content": "Summarize"},
            ],
            "csvData": "a,b\n1,2",
        }
    )

    messages = prepare_messages(payload)

    assert messages[0] == {"role": "assistant", "content": build_csv_context("a,b\n1,2")}
    assert "```csv\na,b\n1,2\n```" in messages[0]["content"]
    assert messages[1] == {"role": "user", "content": "Summarize"}


def test_prepare_messages_leaves_assistant_tail_untouched() -> None:
    payload = ChatRequest(
        messages=[
            {"role": "user", "content": "hi"},
            {"role": "assistant", "content": "hello"},
        ]
    )

    messages = prepare_messages(payload, "https://storage.example/x.png")

    assert messages[-1] == {"role": "assistant", "content": "hello"}


@pytest.fixture
def app_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Path:
    log_dir = tmp_path / "conversations"
    monkeypatch.setenv("CONVERSATION_LOG_DIR", str(log_dir))
    monkeypatch.setenv("LOGGING_SETTINGS_PATH", str(tmp_path / "logging_settings.conf"))
    return log_dir


def test_invalid_request_body_returns_400(app_env: Path) -> None:
    client = make_client(create_app(), DummyGateway(document("unused")), DummyImageStore())

    response = client.post("/api/chat", json={"messages": [{"role": "system", "content": "x"}]})

    assert response.status_code == 400
    assert response.json()["error"].startswith("Invalid chat request: ")


def test_missing_messages_returns_400(app_env: Path) -> None:
    client = make_client(create_app(), DummyGateway(document("unused")), DummyImageStore())

    response = client.post("/api/chat", json={"imageData": "data:image/png;base64,aGVsbG8="})

    assert response.status_code == 400


def test_health_reports_model(app_env: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("GATEWAY_MODEL", "test/model")
    client = TestClient(create_app())

    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "model": "test/model"}


def test_completed_turn_is_written_to_conversation_log(app_env: Path) -> None:
    client = make_client(create_app(), DummyGateway(document("Logged reply")), DummyImageStore())

    response = client.post("/api/chat", json={"messages": [{"role": "user", "content": "log me"}]})

    assert response.status_code == 200
    log_files = list(app_env.glob("*/turn_*.log"))
    assert len(log_files) == 1
    content = log_files[0].read_text(encoding="utf-8")
    assert '"response": "Logged reply"' in content
    assert '"last_user_message": "log me"' in content
