"""Tests for the HTTP and WebSocket surface."""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, AsyncIterator, Sequence

import httpx
import pytest
from fastapi.testclient import TestClient

from homellm.app import create_app
from homellm.chat.types import AssistantTurn
from homellm.completions import ChatCompletionsClient
from homellm.config import Settings
from homellm.tools.devices import ON_OFF, StaticDirectory


class EchoBackend:
    """Answer every request with the text of the last user message."""

    def __init__(self) -> None:
        self.requests: list[dict[str, Any]] = []

    async def stream_chat(
        self,
        messages: Sequence[dict[str, Any]],
        tools: Sequence[dict[str, Any]] | None = None,
        model: str | None = None,
    ) -> AsyncIterator[Any]:
        self.requests.append({"messages": list(messages), "tools": tools, "model": model})
        text = f"You said {messages[-1]['content']}"
        yield {"choices": [{"index": 0, "delta": {"content": text}}]}
        yield AssistantTurn(content=text)


@dataclass
class Switch:
    id: str
    name: str
    type: str = "Switch"
    interfaces: frozenset[str] = frozenset({ON_OFF})

    async def turn_on(self) -> None:
        pass

    async def turn_off(self) -> None:
        pass


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        chat_model="test-model",
        system_prompt="You are a test.",
        mcp_servers_path=tmp_path / "mcp_servers.json",
    )


def test_health(settings: Settings) -> None:
    app = create_app(settings=settings, backend=EchoBackend())

    with TestClient(app) as client:
        response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "model": "test-model", "llama_url": None}


def test_tools_endpoint_lists_wire_names(settings: Settings) -> None:
    app = create_app(settings=settings, backend=EchoBackend())

    with TestClient(app) as client:
        response = client.get("/api/tools")

    assert response.status_code == 200
    names = {tool["function"]["name"] for tool in response.json()}
    assert names == {"get_time", "read_chat_url", "search_web", "get_web_page_content"}


def test_directory_enables_device_tools(settings: Settings) -> None:
    app = create_app(
        settings=settings,
        backend=EchoBackend(),
        directory=StaticDirectory([Switch(id="1", name="Hall")]),
    )

    with TestClient(app) as client:
        names = {tool["function"]["name"] for tool in client.get("/api/tools").json()}

    assert {"turn_light_on", "turn_light_off", "set_light_brightness"} <= names


def test_default_backend_is_completions_client(settings: Settings) -> None:
    app = create_app(settings=settings)

    with TestClient(app):
        assert isinstance(app.state.chat_backend, ChatCompletionsClient)
        assert app.state.llama_server is None


def test_session_websocket_round_trip_ignores_text_frames(settings: Settings) -> None:
    backend = EchoBackend()
    app = create_app(settings=settings, backend=backend)

    with TestClient(app) as client:
        with client.websocket_connect("/api/session") as websocket:
            assert websocket.receive_bytes() == b"> "
            websocket.send_text(json.dumps({"type": "resize", "cols": 80, "rows": 24}))
            websocket.send_bytes(b"hello\r")
            received = b""
            while not received.endswith(b"> "):
                received += websocket.receive_bytes()

    assert received == b"hello\r\n\n\nAssistant:\n\nYou said hello\n\n> "
    request = backend.requests[0]
    assert request["model"] == "test-model"
    assert request["messages"][0] == {"role": "system", "content": "You are a test."}
    assert {tool["function"]["name"] for tool in request["tools"]} >= {"get_time"}


def _completions_backend(requests: list[dict]) -> ChatCompletionsClient:
    def handler(request: httpx.Request) -> httpx.Response:
        payload = json.loads(request.content)
        requests.append(payload)
        if not payload["stream"]:
            return httpx.Response(
                200,
                json={
                    "id": "cmpl-1",
                    "object": "chat.completion",
                    "model": payload["model"],
                    "choices": [
                        {
                            "index": 0,
                            "message": {"role": "assistant", "content": "Hi there"},
                            "finish_reason": "stop",
                        }
                    ],
                },
            )
        chunks = [
            {"choices": [{"index": 0, "delta": {"content": "Hi"}}]},
            {"choices": [{"index": 0, "delta": {"content": " there"}}]},
        ]
        body = "".join(f"data: {json.dumps(chunk)}\n\n" for chunk in chunks)
        return httpx.Response(
            200,
            content=(body + "data: [DONE]\n\n").encode("utf-8"),
            headers={"content-type": "text/event-stream"},
        )

    return ChatCompletionsClient(
        "http://llm.local/v1",
        default_model="test-model",
        transport=httpx.MockTransport(handler),
    )


def _sse_data(text: str) -> list[str]:
    return [
        line[len("data: ") :]
        for line in text.splitlines()
        if line.startswith("data: ")
    ]


def test_chat_completion_returns_backend_body(settings: Settings) -> None:
    requests: list[dict] = []
    app = create_app(settings=settings, backend=_completions_backend(requests))

    with TestClient(app) as client:
        response = client.post(
            "/api/chat/completions",
            json={"messages": [{"role": "user", "content": "hi"}], "temperature": 0.2},
        )

    assert response.status_code == 200
    assert response.json()["choices"][0]["message"]["content"] == "Hi there"
    assert requests == [
        {
            "messages": [{"role": "user", "content": "hi"}],
            "temperature": 0.2,
            "stream": False,
            "model": "test-model",
        }
    ]


def test_chat_completion_streams_chunks_as_events(settings: Settings) -> None:
    requests: list[dict] = []
    app = create_app(settings=settings, backend=_completions_backend(requests))

    with TestClient(app) as client:
        response = client.post(
            "/api/chat/completions",
            json={
                "model": "other-model",
                "stream": True,
                "messages": [{"role": "user", "content": "hi"}],
            },
        )

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    data = _sse_data(response.text)
    assert data[-1] == "[DONE]"
    contents = [
        json.loads(item)["choices"][0]["delta"]["content"] for item in data[:-1]
    ]
    assert contents == ["Hi", " there"]
    assert requests[0]["model"] == "other-model"
    assert requests[0]["stream"] is True


def test_chat_completion_maps_backend_errors(settings: Settings) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, json={"error": {"message": "model not found"}})

    backend = ChatCompletionsClient(
        "http://llm.local/v1", transport=httpx.MockTransport(handler)
    )
    app = create_app(settings=settings, backend=backend)

    with TestClient(app) as client:
        plain = client.post("/api/chat/completions", json={"messages": []})
        streamed = client.post(
            "/api/chat/completions", json={"messages": [], "stream": True}
        )

    assert plain.status_code == 404
    assert plain.json() == {"detail": {"message": "model not found"}}
    data = _sse_data(streamed.text)
    assert json.loads(data[0]) == {
        "error": {"message": '{"message": "model not found"}', "code": 404}
    }
    assert data[-1] == "[DONE]"


def test_chat_completion_requires_completions_backend(settings: Settings) -> None:
    app = create_app(settings=settings, backend=EchoBackend())

    with TestClient(app) as client:
        response = client.post("/api/chat/completions", json={"messages": []})

    assert response.status_code == 501
