"""Invoke a single tool call on behalf of the assistant."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Mapping, Sequence

import jiter
from mcp.types import CallToolResult

from .blobs import find_chat_blob, parse_chat_url
from .errors import MimeTypeMismatchError
from .registry import ToolRegistry
from .results import error_result, unknown_tool_result
from .types import ToolDescriptor

logger = logging.getLogger(__name__)


@dataclass
class DispatchResult:
    result: CallToolResult
    arguments: dict[str, Any] = field(default_factory=dict)
    # parameter name -> chat blob token that was substituted into it
    substitutions: dict[str, str] = field(default_factory=dict)
    descriptor: ToolDescriptor | None = None


def parse_arguments(raw: Any) -> dict[str, Any]:
    """Parse tool call arguments that may be incomplete JSON.

    Whatever prefix parses is kept. Anything that is not an object, or that
    cannot be parsed at all, becomes an empty dict.
    """

    if isinstance(raw, Mapping):
        return dict(raw)
    if not isinstance(raw, str) or not raw.strip():
        return {}
    try:
        parsed = jiter.from_json(raw.encode("utf-8"), partial_mode="trailing-strings")
    except ValueError as exc:
        logger.warning("Discarding unparseable tool arguments %r: %s", raw, exc)
        return {}
    if not isinstance(parsed, dict):
        logger.warning("Discarding non-object tool arguments %r", raw)
        return {}
    return parsed


def resolve_blob_arguments(
    arguments: dict[str, Any],
    parameters: Mapping[str, Any] | None,
    history: Sequence[CallToolResult],
) -> dict[str, str]:
    """Replace ``chat://`` values of uri parameters in place.

    Returns the substituted parameters mapped to their tokens. Raises
    MimeTypeMismatchError when a parameter declares a ``mimeType`` that the
    referenced blob does not have; nothing is substituted in that case.
    """

    properties = (parameters or {}).get("properties")
    if not isinstance(properties, Mapping):
        return {}

    resolved: dict[str, Any] = {}
    substitutions: dict[str, str] = {}
    for param, schema in properties.items():
        if not isinstance(schema, Mapping):
            continue
        if schema.get("type") != "string" or schema.get("format") != "uri":
            continue
        token = parse_chat_url(arguments.get(param))
        if token is None:
            continue
        value = find_chat_blob(token, history, schema.get("mimeType"))
        if value is None:
            logger.debug("No chat blob found for token %s", token)
            continue
        resolved[param] = value
        substitutions[param] = token

    arguments.update(resolved)
    return substitutions


class ToolDispatcher:
    """Route tool calls to the provider that declared the tool."""

    def __init__(self, registry: ToolRegistry):
        self._registry = registry

    @property
    def registry(self) -> ToolRegistry:
        return self._registry

    async def invoke(
        self,
        tool_call: Mapping[str, Any],
        history: Sequence[CallToolResult],
    ) -> DispatchResult:
        function = tool_call.get("function") or {}
        name = function.get("name") or ""
        call_id = tool_call.get("id") or ""

        descriptor = self._registry.get(name)
        provider = self._registry.provider_for(name)
        if descriptor is None or provider is None:
            logger.warning("Assistant requested unknown tool '%s'", name)
            return DispatchResult(result=unknown_tool_result(name))

        # Parsed fresh for every call so substitutions never reach the
        # stored assistant message.
        arguments = parse_arguments(function.get("arguments"))
        try:
            substitutions = resolve_blob_arguments(
                arguments, descriptor.parameters, history
            )
        except MimeTypeMismatchError as exc:
            logger.warning("Tool '%s' rejected a chat blob: %s", descriptor.name, exc)
            return DispatchResult(
                result=error_result(str(exc)),
                arguments=arguments,
                descriptor=descriptor,
            )

        logger.info("Calling tool '%s' (call id %s)", descriptor.name, call_id)
        try:
            result = await provider.call_llm_tool(call_id, descriptor.name, arguments)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Tool '%s' raised an exception", descriptor.name)
            result = error_result(f"Tool error: {exc}")

        return DispatchResult(
            result=result,
            arguments=arguments,
            substitutions=substitutions,
            descriptor=descriptor,
        )


__all__ = [
    "DispatchResult",
    "ToolDispatcher",
    "parse_arguments",
    "resolve_blob_arguments",
]
