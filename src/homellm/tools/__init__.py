"""Tool providers available to the assistant."""

from .chat_blobs import ChatBlobTools
from .devices import DeviceHandle, DeviceTools, Directory, StaticDirectory
from .mcp_provider import (
    MCPServerConfig,
    MCPToolProvider,
    build_mcp_providers,
    load_server_configs,
)
from .time_tool import TimeTools
from .web_search import WebSearchTools

__all__ = [
    "ChatBlobTools",
    "DeviceHandle",
    "DeviceTools",
    "Directory",
    "MCPServerConfig",
    "MCPToolProvider",
    "StaticDirectory",
    "TimeTools",
    "WebSearchTools",
    "build_mcp_providers",
    "load_server_configs",
]
