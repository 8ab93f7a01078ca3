"""Tool-calling conversation core."""

from .adapter import AdaptedToolResult, adapt_tool_result
from .blobs import find_chat_blob, mint_token, parse_chat_url
from .dispatch import DispatchResult, ToolDispatcher
from .driver import ConversationDriver
from .errors import (
    ChatError,
    MimeTypeMismatchError,
    ProtocolViolationError,
    UnsupportedContentTypeError,
    UnsupportedToolCallError,
)
from .registry import ToolRegistry
from .session import ChatSession
from .types import (
    AssistantTurn,
    Capabilities,
    ChatBackend,
    ToolDescriptor,
    ToolProvider,
    TurnEvent,
    TurnState,
)

__all__ = [
    "AdaptedToolResult",
    "AssistantTurn",
    "Capabilities",
    "ChatBackend",
    "ChatError",
    "ChatSession",
    "ConversationDriver",
    "DispatchResult",
    "MimeTypeMismatchError",
    "ProtocolViolationError",
    "ToolDescriptor",
    "ToolDispatcher",
    "ToolProvider",
    "ToolRegistry",
    "TurnEvent",
    "TurnState",
    "UnsupportedContentTypeError",
    "UnsupportedToolCallError",
    "adapt_tool_result",
    "find_chat_blob",
    "mint_token",
    "parse_chat_url",
]
