"""Helpers for building tool results."""

from __future__ import annotations

import base64

from mcp.types import CallToolResult, ImageContent, TextContent


def text_result(text: str) -> CallToolResult:
    return CallToolResult(content=[TextContent(type="text", text=text)])


def error_result(text: str) -> CallToolResult:
    return CallToolResult(
        content=[TextContent(type="text", text=text)],
        isError=True,
    )


def unknown_tool_result(name: str) -> CallToolResult:
    return error_result(f"Unknown tool: {name}")


def image_result(data: bytes | str, mime_type: str = "image/jpeg") -> CallToolResult:
    if isinstance(data, bytes):
        data = base64.b64encode(data).decode("ascii")
    return CallToolResult(
        content=[ImageContent(type="image", data=data, mimeType=mime_type)]
    )


def result_text(result: CallToolResult) -> str:
    """Join the text parts of a result, ignoring everything else."""

    return "\n".join(
        part.text for part in result.content if isinstance(part, TextContent)
    )


__all__ = [
    "error_result",
    "image_result",
    "result_text",
    "text_result",
    "unknown_tool_result",
]
