"""Exceptions raised by the chat orchestration layer."""

from __future__ import annotations


class ChatError(Exception):
    """Base class for structural failures that abort a conversation turn."""


class MimeTypeMismatchError(ChatError):
    """A resolved chat blob does not carry the mime type a tool declared."""

    def __init__(self, expected: str, actual: str | None):
        super().__init__(
            "Tool call failed. The tool expected url with mime type "
            f"{expected}, but got {actual}"
        )
        self.expected = expected
        self.actual = actual


class UnsupportedContentTypeError(ChatError):
    """A tool returned a content part that cannot be turned into messages."""

    def __init__(self, content_type: str):
        super().__init__(
            f"Unsupported content type {content_type} in tool call response."
        )
        self.content_type = content_type


class ProtocolViolationError(ChatError):
    """The conversation cannot continue without a user or tool message."""


class UnsupportedToolCallError(ChatError):
    """The assistant emitted a tool call that is not a function call."""

    def __init__(self, call_type: str | None):
        super().__init__(f"Unsupported tool call type: {call_type}")
        self.call_type = call_type


__all__ = [
    "ChatError",
    "MimeTypeMismatchError",
    "ProtocolViolationError",
    "UnsupportedContentTypeError",
    "UnsupportedToolCallError",
]
