"""Convert tool results into chat messages the backend accepts.

Tool messages can only carry text. When the client can take images or audio
inline, the attachment is smuggled through a synthetic exchange: the tool
message announces it, a fake assistant message acknowledges, and a user
message carries the media. Otherwise the media is stored behind a
``chat://`` token and described in text.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping

from mcp.types import (
    AudioContent,
    BlobResourceContents,
    CallToolResult,
    EmbeddedResource,
    ImageContent,
    TextContent,
    TextResourceContents,
)

from .blobs import attach_blob, chat_metadata, chat_url, mint_token
from .errors import UnsupportedContentTypeError
from .types import Capabilities

logger = logging.getLogger(__name__)

READ_CHAT_URL_TOOL = "read-chat-url"

_AUDIO_FORMATS = {
    "audio/mpeg": "mp3",
    "audio/mp3": "mp3",
    "audio/wav": "wav",
    "audio/x-wav": "wav",
    "audio/wave": "wav",
}


@dataclass
class AdaptedToolResult:
    messages: list[dict[str, Any]]
    result: CallToolResult


def data_url(mime_type: str, data: str) -> str:
    return f"data:{mime_type};base64,{data}"


def audio_format(mime_type: str) -> str:
    normalized = (mime_type or "").split(";")[0].strip().lower()
    if normalized in _AUDIO_FORMATS:
        return _AUDIO_FORMATS[normalized]
    return normalized.rsplit("/", 1)[-1] or "wav"


def _mutable_token(
    part: EmbeddedResource,
    result: CallToolResult,
    parameters: Mapping[str, Any] | None,
    substitutions: Mapping[str, str],
) -> str | None:
    """Reuse the token of a resource the tool was asked to modify."""

    mutable = chat_metadata(part.meta).get("mutable") or chat_metadata(
        result.meta
    ).get("mutable")
    if not isinstance(mutable, str):
        return None
    properties = (parameters or {}).get("properties") or {}
    if mutable not in properties:
        return None
    return substitutions.get(mutable)


def _resource_payload(part: EmbeddedResource) -> tuple[str, str | None]:
    resource = part.resource
    if isinstance(resource, TextResourceContents):
        return resource.text, resource.mimeType
    if isinstance(resource, BlobResourceContents):
        mime_type = resource.mimeType or "application/octet-stream"
        return data_url(mime_type, resource.blob), resource.mimeType
    raise UnsupportedContentTypeError(type(resource).__name__)


def adapt_tool_result(
    tool_call: Mapping[str, Any],
    result: CallToolResult,
    capabilities: Capabilities,
    *,
    parameters: Mapping[str, Any] | None = None,
    substitutions: Mapping[str, str] | None = None,
) -> AdaptedToolResult:
    """Build the provider messages for one tool call result.

    Returns the messages in the order they must be appended (the tool
    message first) and a copy of the result carrying any minted blob tokens
    in its metadata. Raises UnsupportedContentTypeError for content parts
    that have no message representation.
    """

    enriched = result.model_copy(deep=True)
    substitutions = substitutions or {}
    call_id = tool_call.get("id")

    tool_message: dict[str, Any] = {
        "role": "tool",
        "tool_call_id": call_id,
        "content": "",
    }
    messages: list[dict[str, Any]] = [tool_message]
    lines: list[str] = []

    for part in enriched.content:
        if isinstance(part, TextContent):
            lines.append(part.text)

        elif isinstance(part, ImageContent):
            url = data_url(part.mimeType, part.data)
            if capabilities.image:
                lines.append("The next user message will include the image.")
                messages.append({"role": "assistant", "content": "Ok."})
                messages.append(
                    {
                        "role": "user",
                        "content": [
                            {
                                "type": "text",
                                "text": f"Image file from tool call id {call_id}:",
                            },
                            {"type": "image_url", "image_url": {"url": url}},
                        ],
                    }
                )
            else:
                token = mint_token()
                lines.append(
                    "The image was presented to the user. The image can be used "
                    f"in other tools using the following URL: `{chat_url(token)}`."
                )
                attach_blob(
                    enriched,
                    "images",
                    {
                        "token": token,
                        "src": url,
                        "mimeType": part.mimeType,
                        "width": "100%",
                        "height": "auto",
                    },
                )

        elif isinstance(part, AudioContent):
            if capabilities.audio:
                lines.append("The next user message will include the audio.")
                messages.append({"role": "assistant", "content": "Ok."})
                messages.append(
                    {
                        "role": "user",
                        "content": [
                            {
                                "type": "text",
                                "text": f"Audio file from tool call id {call_id}:",
                            },
                            {
                                "type": "input_audio",
                                "input_audio": {
                                    "data": part.data,
                                    "format": audio_format(part.mimeType),
                                },
                            },
                        ],
                    }
                )
            else:
                token = mint_token()
                lines.append(
                    "The audio was presented to the user. The audio can be used "
                    f"in other tools using the following URL: `{chat_url(token)}`."
                )
                attach_blob(
                    enriched,
                    "audio",
                    {
                        "token": token,
                        "src": data_url(part.mimeType, part.data),
                        "mimeType": part.mimeType,
                    },
                )

        elif isinstance(part, EmbeddedResource):
            text, mime_type = _resource_payload(part)
            token = _mutable_token(part, result, parameters, substitutions)
            if token is None:
                token = mint_token()
            else:
                logger.debug("Keeping chat token %s for mutated resource", token)
            lines.append(
                "The tool resource was returned. You MUST use the "
                f"{READ_CHAT_URL_TOOL} tool to query this data using the "
                f"following URL: `{chat_url(token)}`."
            )
            attach_blob(
                enriched,
                "resources",
                {"token": token, "text": text, "mimeType": mime_type},
            )

        else:
            raise UnsupportedContentTypeError(getattr(part, "type", type(part).__name__))

    tool_message["content"] = "\n".join(dict.fromkeys(lines))
    return AdaptedToolResult(messages=messages, result=enriched)


__all__ = [
    "AdaptedToolResult",
    "READ_CHAT_URL_TOOL",
    "adapt_tool_result",
    "audio_format",
    "data_url",
]
