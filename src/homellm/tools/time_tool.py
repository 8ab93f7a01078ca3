"""The `get-time` tool shared by several providers."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from mcp.types import CallToolResult

from ..chat.results import text_result, unknown_tool_result
from ..chat.types import ToolDescriptor

TIME_TOOL_NAME = "get-time"


def _now() -> datetime:
    return datetime.now().astimezone()


def current_time_text() -> str:
    now = _now()
    return f"{now.strftime('%x, %X')} {now.tzname()}"


def time_tool_descriptor() -> ToolDescriptor:
    now = _now()
    return ToolDescriptor(
        name=TIME_TOOL_NAME,
        description=(
            "Gets the current time.\n"
            f"Today's date is: {now.strftime('%x')}.\n"
            f"Time Zone: {now.tzname()}"
        ),
    )


class TimeTools:
    provider_id = "time"

    async def list_tools(self) -> list[ToolDescriptor]:
        return [time_tool_descriptor()]

    async def call_llm_tool(
        self, tool_call_id: str, name: str, arguments: dict[str, Any]
    ) -> CallToolResult:
        if name == TIME_TOOL_NAME:
            return text_result(current_time_text())
        return unknown_tool_result(name)


__all__ = [
    "TIME_TOOL_NAME",
    "TimeTools",
    "current_time_text",
    "time_tool_descriptor",
]
