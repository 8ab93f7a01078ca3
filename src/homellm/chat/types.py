"""Type definitions shared by the chat orchestration layer."""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable, Protocol, Sequence

from mcp.types import CallToolResult


EMPTY_PARAMETERS: dict[str, Any] = {
    "type": "object",
    "properties": {},
    "required": [],
    "additionalProperties": False,
}


@dataclass
class ToolDescriptor:
    name: str
    description: str = ""
    parameters: dict[str, Any] | None = None

    def with_default_parameters(self) -> ToolDescriptor:
        if self.parameters:
            return self
        return ToolDescriptor(
            name=self.name,
            description=self.description,
            parameters=copy.deepcopy(EMPTY_PARAMETERS),
        )

    def to_openai_tool(self, name: str | None = None) -> dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": name or self.name,
                "description": self.description,
                "parameters": self.parameters or copy.deepcopy(EMPTY_PARAMETERS),
            },
        }


class ToolProvider(Protocol):
    async def list_tools(self) -> list[ToolDescriptor]:
        ...

    async def call_llm_tool(
        self, tool_call_id: str, name: str, arguments: dict[str, Any]
    ) -> CallToolResult:
        ...


@dataclass(frozen=True)
class Capabilities:
    """Content types the consuming client accepts inline in a user message."""

    image: bool = False
    audio: bool = False


@dataclass
class AssistantTurn:
    """Aggregated assistant message produced at the end of a streamed request."""

    content: str | None
    tool_calls: list[dict[str, Any]] = field(default_factory=list)
    finish_reason: str | None = None
    model: str | None = None
    usage: dict[str, Any] | None = None

    def to_message_dict(self) -> dict[str, Any]:
        message: dict[str, Any] = {
            "role": "assistant",
            "content": self.content,
        }
        if self.tool_calls:
            message["tool_calls"] = copy.deepcopy(self.tool_calls)
        return message


class ChatBackend(Protocol):
    def stream_chat(
        self,
        messages: Sequence[dict[str, Any]],
        tools: Sequence[dict[str, Any]] | None = None,
        model: str | None = None,
    ) -> AsyncIterator[dict[str, Any] | AssistantTurn]:
        ...


class TurnState(str, Enum):
    AWAITING_USER_OR_TOOL = "awaiting_user_or_tool"
    STREAMING = "streaming"
    TOOL_DISPATCH = "tool_dispatch"
    DONE = "done"


@dataclass
class TurnEvent:
    """Something the conversation driver reports while running a turn.

    ``kind`` is one of ``delta``, ``tool_call``, ``tool_result``,
    ``cancelled``, ``notice`` or ``done``.
    """

    kind: str
    content: str | None = None
    tool_call: dict[str, Any] | None = None
    result: CallToolResult | None = None


# Returning True from the callback stops consuming the current stream.
ChunkCallback = Callable[[str], bool | None]
# Resolves to the next batch of user messages, or None once input has ended.
UserMessageSource = Callable[[], Awaitable[list[dict[str, Any]] | None]]


__all__ = [
    "AssistantTurn",
    "Capabilities",
    "ChatBackend",
    "ChunkCallback",
    "EMPTY_PARAMETERS",
    "ToolDescriptor",
    "ToolProvider",
    "TurnEvent",
    "TurnState",
    "UserMessageSource",
]
