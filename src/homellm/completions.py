"""Streaming client for OpenAI-compatible chat completion servers."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, AsyncGenerator, Iterable, Mapping, Optional, Sequence

import httpx
from fastapi import status

from .chat.tooling import merge_tool_calls
from .chat.types import AssistantTurn
from .config import Settings

logger = logging.getLogger(__name__)


class CompletionError(Exception):
    """Wrap transport or API failures when talking to the chat backend."""

    def __init__(self, status_code: int, detail: Any):
        super().__init__(str(detail))
        self.status_code = status_code
        self.detail = detail


@dataclass
class ServerSentEvent:
    """Represents a parsed Server-Sent Event."""

    data: str
    event: str = "message"
    event_id: Optional[str] = None


class ChatCompletionsClient:
    """Stream chat completions and aggregate them into one assistant turn."""

    def __init__(
        self,
        base_url: str,
        *,
        api_key: str | None = None,
        default_model: str | None = None,
        timeout: float = 120.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = str(base_url).rstrip("/")
        self._api_key = api_key
        self._default_model = default_model
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._client_lock = asyncio.Lock()

    @classmethod
    def from_settings(
        cls, settings: Settings, *, base_url: str | None = None
    ) -> ChatCompletionsClient:
        api_key = (
            settings.chat_api_key.get_secret_value()
            if settings.chat_api_key is not None
            else None
        )
        return cls(
            base_url or str(settings.chat_base_url),
            api_key=api_key,
            default_model=settings.chat_model,
            timeout=settings.request_timeout,
        )

    @property
    def base_url(self) -> str:
        return self._base_url

    async def _get_http_client(self) -> httpx.AsyncClient:
        if self._client is not None:
            return self._client
        async with self._client_lock:
            if self._client is None:
                self._client = httpx.AsyncClient(
                    timeout=httpx.Timeout(self._timeout, connect=10.0),
                    transport=self._transport,
                )
        return self._client

    @property
    def _headers(self) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "text/event-stream",
        }
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    def build_payload(
        self,
        messages: Sequence[dict[str, Any]],
        tools: Sequence[dict[str, Any]] | None = None,
        model: str | None = None,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "messages": list(messages),
            "stream": True,
        }
        resolved_model = model or self._default_model
        if resolved_model:
            payload["model"] = resolved_model
        if tools:
            payload["tools"] = list(tools)
            payload["tool_choice"] = "auto"
        return payload

    def _prepare_body(self, body: Mapping[str, Any], *, stream: bool) -> dict[str, Any]:
        payload = dict(body)
        payload["stream"] = stream
        if not payload.get("model") and self._default_model:
            payload["model"] = self._default_model
        return payload

    @property
    def _completions_url(self) -> str:
        return f"{self._base_url}/chat/completions"

    async def create_chat_completion(self, body: Mapping[str, Any]) -> dict[str, Any]:
        """Forward ``body`` as a non-streaming request and return the completion."""

        payload = self._prepare_body(body, stream=False)
        headers = {**self._headers, "Accept": "application/json"}

        client = await self._get_http_client()
        try:
            response = await client.post(
                self._completions_url, headers=headers, json=payload
            )
        except httpx.HTTPError as exc:
            raise CompletionError(status.HTTP_502_BAD_GATEWAY, str(exc)) from exc

        if response.status_code >= 400:
            raise CompletionError(
                response.status_code, self._extract_error_detail(response.content)
            )
        try:
            completion = response.json()
        except json.JSONDecodeError as exc:
            raise CompletionError(
                status.HTTP_502_BAD_GATEWAY, "Chat backend returned invalid JSON."
            ) from exc
        if not isinstance(completion, dict):
            raise CompletionError(
                status.HTTP_502_BAD_GATEWAY, "Chat backend returned an unexpected body."
            )
        if completion.get("error"):
            raise CompletionError(status.HTTP_502_BAD_GATEWAY, completion["error"])
        return completion

    async def stream_chat_completion(
        self, body: Mapping[str, Any]
    ) -> AsyncGenerator[dict[str, Any], None]:
        """Forward ``body`` as a streaming request and yield the raw chunks."""

        async for chunk in self._stream_chunks(self._prepare_body(body, stream=True)):
            yield chunk

    async def _stream_chunks(
        self, payload: dict[str, Any]
    ) -> AsyncGenerator[dict[str, Any], None]:
        client = await self._get_http_client()
        try:
            async with client.stream(
                "POST",
                self._completions_url,
                headers=self._headers,
                json=payload,
            ) as response:
                if response.status_code >= 400:
                    body = await response.aread()
                    raise CompletionError(
                        response.status_code, self._extract_error_detail(body)
                    )

                async for event in self._iter_events(response):
                    if not event.data:
                        continue
                    if event.data == "[DONE]":
                        break
                    try:
                        chunk = json.loads(event.data)
                    except json.JSONDecodeError:
                        logger.debug("Skipping non-JSON SSE payload: %s", event.data)
                        continue
                    if not isinstance(chunk, dict):
                        continue
                    if chunk.get("error"):
                        raise CompletionError(
                            status.HTTP_502_BAD_GATEWAY, chunk["error"]
                        )
                    yield chunk
        except httpx.HTTPError as exc:
            raise CompletionError(status.HTTP_502_BAD_GATEWAY, str(exc)) from exc

    async def stream_chat(
        self,
        messages: Sequence[dict[str, Any]],
        tools: Sequence[dict[str, Any]] | None = None,
        model: str | None = None,
    ) -> AsyncGenerator[dict[str, Any] | AssistantTurn, None]:
        """Yield each completion chunk, then the aggregated assistant turn."""

        content_parts: list[str] = []
        tool_calls: list[dict[str, Any]] = []
        finish_reason: str | None = None
        model_name: str | None = None
        usage: dict[str, Any] | None = None

        async for chunk in self._stream_chunks(
            self.build_payload(messages, tools, model)
        ):
            for choice in chunk.get("choices") or []:
                delta = choice.get("delta") or {}
                content = delta.get("content")
                if isinstance(content, str):
                    content_parts.append(content)
                merge_tool_calls(tool_calls, delta.get("tool_calls"))
                if choice.get("finish_reason"):
                    finish_reason = choice["finish_reason"]
            model_name = chunk.get("model") or model_name
            if isinstance(chunk.get("usage"), dict):
                usage = chunk["usage"]
            yield chunk

        yield AssistantTurn(
            content="".join(content_parts) or None,
            tool_calls=tool_calls,
            finish_reason=finish_reason,
            model=model_name,
            usage=usage,
        )

    async def aclose(self) -> None:
        async with self._client_lock:
            client, self._client = self._client, None
        if client is not None:
            await client.aclose()

    async def _iter_events(
        self, response: httpx.Response
    ) -> AsyncGenerator[ServerSentEvent, None]:
        buffer: list[str] = []
        async for line in response.aiter_lines():
            if not line:
                if buffer:
                    yield self._parse_event(buffer)
                    buffer.clear()
                continue
            if line.startswith(":"):
                continue
            buffer.append(line)
        if buffer:
            yield self._parse_event(buffer)

    @staticmethod
    def _parse_event(lines: Iterable[str]) -> ServerSentEvent:
        event_name: Optional[str] = None
        event_id: Optional[str] = None
        data_lines: list[str] = []

        for line in lines:
            field, _, value = line.partition(":")
            value = value.lstrip(" ")
            if field == "event":
                event_name = value or None
            elif field == "data":
                data_lines.append(value)
            elif field == "id":
                event_id = value or None

        return ServerSentEvent(
            data="\n".join(data_lines),
            event=event_name or "message",
            event_id=event_id,
        )

    @staticmethod
    def _extract_error_detail(raw: bytes) -> Any:
        if not raw:
            return "Chat backend returned an empty error response."
        text = raw.decode("utf-8", errors="ignore")
        try:
            payload = json.loads(text)
        except json.JSONDecodeError:
            return text
        if isinstance(payload, dict):
            return payload.get("error") or payload
        return payload


__all__ = ["ChatCompletionsClient", "CompletionError", "ServerSentEvent"]
