"""Utilities for assembling and normalizing assistant tool calls."""

from __future__ import annotations

import logging
from typing import Any

from .errors import UnsupportedToolCallError

logger = logging.getLogger(__name__)


def merge_tool_calls(
    accumulator: list[dict[str, Any]],
    deltas: Any,
) -> None:
    """Fold streamed ``delta.tool_calls`` fragments into ``accumulator``."""

    for delta in deltas or []:
        if not isinstance(delta, dict):
            continue

        index = delta.get("index")
        delta_id = delta.get("id")
        if not isinstance(index, int) or index < 0:
            index = None
            if isinstance(delta_id, str):
                for existing_index, existing in enumerate(accumulator):
                    if existing.get("id") == delta_id:
                        index = existing_index
                        break
            if index is None:
                index = len(accumulator)

        while len(accumulator) <= index:
            accumulator.append(
                {
                    "id": None,
                    "type": "function",
                    "function": {"name": None, "arguments": ""},
                }
            )

        entry = accumulator[index]

        if delta_id:
            entry["id"] = delta_id
        if delta_type := delta.get("type"):
            entry["type"] = delta_type

        function_delta = delta.get("function") or {}
        if function_name := function_delta.get("name"):
            entry.setdefault("function", {"name": None, "arguments": ""})
            entry["function"]["name"] = function_name
        if arguments_fragment := function_delta.get("arguments"):
            entry.setdefault("function", {"name": None, "arguments": ""})
            entry["function"]["arguments"] += arguments_fragment


def finalize_tool_calls(
    tool_calls: list[dict[str, Any]] | None,
) -> list[dict[str, Any]]:
    """Return the tool calls of a finished assistant message, normalized.

    Empty argument strings become ``"{}"``, missing ids get a positional
    default and calls without a function name are dropped. Raises
    UnsupportedToolCallError for anything that is not a function call.
    """

    finalized: list[dict[str, Any]] = []
    for index, call in enumerate(tool_calls or []):
        if not isinstance(call, dict):
            continue

        call_type = call.get("type") or "function"
        if call_type != "function":
            raise UnsupportedToolCallError(call_type)

        function = call.get("function") or {}
        if not isinstance(function, dict):
            function = {}

        name = function.get("name")
        if not (isinstance(name, str) and name.strip()):
            logger.warning("Dropping tool call %s without a function name", index)
            continue

        arguments = function.get("arguments")
        if not (isinstance(arguments, str) and arguments.strip()):
            arguments = "{}"

        entry = dict(call)
        entry["type"] = "function"
        entry["function"] = {**function, "name": name, "arguments": arguments}
        if not entry.get("id"):
            entry["id"] = f"call_{index}"
        finalized.append(entry)

    return finalized


def apply_function_call_mode(
    message: dict[str, Any],
    tool_calls: list[dict[str, Any]],
    *,
    legacy: bool,
) -> None:
    """Shape an assistant message for the configured function-call mode.

    Legacy backends only understand the single ``function_call`` field, so the
    first tool call is mirrored there and ``tool_calls`` is removed. Otherwise
    ``function_call`` is dropped.
    """

    if legacy and tool_calls:
        first = tool_calls[0]["function"]
        message["function_call"] = {
            "name": first["name"],
            "arguments": first["arguments"],
        }
        message.pop("tool_calls", None)
        return

    message.pop("function_call", None)
    if tool_calls:
        message["tool_calls"] = tool_calls


def chunk_text(chunk: Any) -> str:
    """Return the text content carried by a streamed completion chunk."""

    if not isinstance(chunk, dict):
        return ""
    parts: list[str] = []
    for choice in chunk.get("choices") or []:
        delta = choice.get("delta") or {}
        content = delta.get("content")
        if isinstance(content, str):
            parts.append(content)
    return "".join(parts)


__all__ = [
    "apply_function_call_mode",
    "chunk_text",
    "finalize_tool_calls",
    "merge_tool_calls",
]
