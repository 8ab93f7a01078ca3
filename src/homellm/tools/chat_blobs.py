"""Let the model read resources stored behind `chat://` tokens."""

from __future__ import annotations

import json
from typing import Any

from mcp.types import CallToolResult

from ..chat.adapter import READ_CHAT_URL_TOOL
from ..chat.blobs import parse_chat_url
from ..chat.results import error_result, text_result, unknown_tool_result
from ..chat.types import ToolDescriptor

MAX_TEXT_LENGTH = 10_000


def render_value(value: Any) -> str:
    if isinstance(value, str):
        text = value
    else:
        text = json.dumps(value, indent=2, ensure_ascii=False, default=repr)
    if len(text) > MAX_TEXT_LENGTH:
        omitted = len(text) - MAX_TEXT_LENGTH
        text = f"{text[:MAX_TEXT_LENGTH]}\n... ({omitted} more characters truncated)"
    return text


class ChatBlobTools:
    """Return the contents of a chat resource.

    The dispatcher resolves the ``chat://`` url before the call arrives, so
    the tool only sees the stored value. A value that still looks like a
    chat url was never resolved.
    """

    provider_id = "chat-blobs"

    async def list_tools(self) -> list[ToolDescriptor]:
        return [
            ToolDescriptor(
                name=READ_CHAT_URL_TOOL,
                description=(
                    "Read data that a previous tool call stored behind a "
                    "chat:// URL. JSON data is returned pretty printed and long "
                    "content is truncated."
                ),
                parameters={
                    "type": "object",
                    "properties": {
                        "url": {
                            "type": "string",
                            "format": "uri",
                            "description": "The chat:// URL returned by a previous tool call.",
                        },
                    },
                    "required": ["url"],
                    "additionalProperties": False,
                },
            )
        ]

    async def call_llm_tool(
        self, tool_call_id: str, name: str, arguments: dict[str, Any]
    ) -> CallToolResult:
        if name != READ_CHAT_URL_TOOL:
            return unknown_tool_result(name)
        if "url" not in arguments or arguments["url"] in (None, ""):
            return text_result(f'"url" parameter is required for {READ_CHAT_URL_TOOL} tool.')
        value = arguments["url"]
        if parse_chat_url(value) is not None:
            return error_result(f"No chat data was found for {value}.")
        return text_result(render_value(value))


__all__ = ["ChatBlobTools", "MAX_TEXT_LENGTH", "render_value"]
