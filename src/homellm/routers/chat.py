"""Chat completion, chat session and tool listing endpoints."""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator, Sequence

from fastapi import (
    APIRouter,
    Body,
    HTTPException,
    Request,
    WebSocket,
    WebSocketDisconnect,
)
from sse_starlette.sse import EventSourceResponse
from starlette.websockets import WebSocketState

from ..chat.driver import ConversationDriver
from ..chat.registry import ToolRegistry
from ..chat.session import ChatSession
from ..chat.types import Capabilities, ChatBackend, ToolProvider
from ..completions import ChatCompletionsClient, CompletionError
from ..config import Settings

router = APIRouter(prefix="/api", tags=["chat"])
logger = logging.getLogger(__name__)


def _providers(state: Any) -> Sequence[ToolProvider]:
    providers = getattr(state, "tool_providers", None)
    if providers is None:  # pragma: no cover - lifespan not run
        raise RuntimeError("Tool providers are not configured")
    return providers


def build_driver(
    settings: Settings, backend: ChatBackend, registry: ToolRegistry
) -> ConversationDriver:
    return ConversationDriver(
        backend,
        registry,
        model=settings.chat_model,
        capabilities=Capabilities(
            image=settings.image_input, audio=settings.audio_input
        ),
        legacy_function_calls=settings.legacy_function_calls,
        max_tool_rounds=settings.max_tool_rounds,
        system_prompt=settings.system_prompt,
    )


@router.get("/tools")
async def list_tools(request: Request) -> list[dict[str, Any]]:
    """Return the tools offered to the model, as sent on the wire."""

    registry = await ToolRegistry.aggregate(_providers(request.app.state))
    return registry.openai_tools()


def _completions_client(state: Any) -> ChatCompletionsClient:
    backend = getattr(state, "chat_backend", None)
    if backend is None:
        raise HTTPException(status_code=503, detail="Chat backend not initialized")
    if not isinstance(backend, ChatCompletionsClient):
        raise HTTPException(
            status_code=501,
            detail="Chat backend does not accept completion requests",
        )
    return backend


@router.post("/chat/completions", response_model=None, status_code=200)
async def chat_completions(
    request: Request,
    body: dict[str, Any] = Body(...),
) -> dict[str, Any] | EventSourceResponse:
    """Forward an OpenAI-style completion request to the configured model."""

    client = _completions_client(request.app.state)

    if not body.get("stream"):
        try:
            return await client.create_chat_completion(body)
        except CompletionError as exc:
            raise HTTPException(status_code=exc.status_code, detail=exc.detail) from exc

    async def event_publisher():
        try:
            async for chunk in client.stream_chat_completion(body):
                yield {"event": "message", "data": json.dumps(chunk)}
        except CompletionError as exc:
            detail = (
                exc.detail if isinstance(exc.detail, str) else json.dumps(exc.detail)
            )
            logger.warning("Streamed completion failed: %s", detail)
            error_chunk = {"error": {"message": detail, "code": exc.status_code}}
            yield {"event": "message", "data": json.dumps(error_chunk)}
        yield {"event": "message", "data": "[DONE]"}

    return EventSourceResponse(event_publisher())


async def _inbound(websocket: WebSocket) -> AsyncIterator[bytes]:
    while True:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            return
        # text frames carry terminal control messages, not keystrokes
        data = message.get("bytes")
        if data:
            yield data


@router.websocket("/session")
async def chat_session(websocket: WebSocket) -> None:
    """Run an interactive chat over a raw byte stream."""

    state = websocket.app.state
    backend = getattr(state, "chat_backend", None)
    if backend is None:
        logger.error("Chat backend not initialized")
        await websocket.close(code=1011, reason="Server not ready")
        return

    await websocket.accept()
    settings: Settings = state.settings
    registry = await ToolRegistry.aggregate(_providers(state))
    session = ChatSession(
        build_driver(settings, backend, registry), name=settings.assistant_name
    )

    try:
        async for chunk in session.connect(_inbound(websocket)):
            await websocket.send_bytes(chunk)
    except WebSocketDisconnect:
        logger.info("Chat session client disconnected")
        return

    if websocket.application_state == WebSocketState.CONNECTED and (
        websocket.client_state == WebSocketState.CONNECTED
    ):
        await websocket.close()


__all__ = ["build_driver", "router"]
