"""Tests for the remote MCP tool provider and its configuration file."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest
from mcp.types import CallToolResult, TextContent, Tool
from pydantic import SecretStr

from homellm.tools.mcp_provider import (
    HTTP_MAX_RECONNECT_ATTEMPTS,
    MCPServerConfig,
    MCPToolProvider,
    build_mcp_providers,
    load_server_configs,
)

pytestmark = pytest.mark.anyio


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def mock_tool() -> Tool:
    return Tool(
        name="lookup-item",
        description="Find an item",
        inputSchema={"type": "object", "properties": {"id": {"type": "string"}}},
    )


@pytest.fixture
def mock_session(mock_tool: Tool) -> MagicMock:
    session = MagicMock()
    session.initialize = AsyncMock()
    session.list_tools = AsyncMock(
        return_value=MagicMock(tools=[mock_tool], nextCursor=None)
    )
    session.call_tool = AsyncMock(
        return_value=CallToolResult(
            content=[TextContent(type="text", text="found")], isError=False
        )
    )
    return session


def _transport_context() -> AsyncMock:
    context = AsyncMock()
    context.__aenter__ = AsyncMock(return_value=(MagicMock(), MagicMock(), MagicMock()))
    context.__aexit__ = AsyncMock(return_value=None)
    return context


def test_load_server_configs_accepts_list_and_wrapped_forms(tmp_path: Path) -> None:
    listed = tmp_path / "list.json"
    listed.write_text(json.dumps([{"id": "a", "url": "http://a/mcp"}]))
    wrapped = tmp_path / "wrapped.json"
    wrapped.write_text(
        json.dumps(
            {
                "servers": [
                    {"id": "b", "url": "http://b/mcp", "token": "t"},
                    {"id": "c", "url": "http://c/mcp", "enabled": False},
                ]
            }
        )
    )

    assert [config.id for config in load_server_configs(listed)] == ["a"]
    configs = load_server_configs(wrapped)
    assert [config.id for config in configs] == ["b", "c"]
    assert configs[0].token.get_secret_value() == "t"
    assert [provider.provider_id for provider in build_mcp_providers(configs)] == ["b"]


def test_load_server_configs_missing_file(tmp_path: Path) -> None:
    assert load_server_configs(tmp_path / "absent.json") == []


def test_load_server_configs_rejects_unknown_fields(tmp_path: Path) -> None:
    path = tmp_path / "servers.json"
    path.write_text(json.dumps([{"id": "a", "url": "http://a/mcp", "command": "x"}]))

    with pytest.raises(ValueError):
        load_server_configs(path)


async def test_connect_lists_tools_with_bearer_token(mock_session: MagicMock) -> None:
    provider = MCPToolProvider(
        MCPServerConfig(id="remote", url="http://example.com/mcp", token=SecretStr("abc"))
    )

    with (
        patch(
            "homellm.tools.mcp_provider.streamablehttp_client",
            return_value=_transport_context(),
        ) as mock_http_client,
        patch("homellm.tools.mcp_provider.ClientSession", return_value=mock_session),
    ):
        descriptors = await provider.list_tools()

        mock_http_client.assert_called_once_with(
            "http://example.com/mcp", headers={"Authorization": "Bearer abc"}
        )

    assert provider.is_connected
    assert [descriptor.name for descriptor in descriptors] == ["lookup-item"]
    assert descriptors[0].parameters["properties"] == {"id": {"type": "string"}}
    mock_session.initialize.assert_awaited_once()

    await provider.close()
    assert not provider.is_connected


async def test_tool_listing_follows_pagination(mock_session: MagicMock, mock_tool: Tool) -> None:
    second = Tool(name="second", inputSchema={"type": "object"})
    mock_session.list_tools = AsyncMock(
        side_effect=[
            MagicMock(tools=[mock_tool], nextCursor="page-2"),
            MagicMock(tools=[second], nextCursor=None),
        ]
    )
    provider = MCPToolProvider(MCPServerConfig(id="remote", url="http://example.com/mcp"))

    with (
        patch(
            "homellm.tools.mcp_provider.streamablehttp_client",
            return_value=_transport_context(),
        ) as mock_http_client,
        patch("homellm.tools.mcp_provider.ClientSession", return_value=mock_session),
    ):
        descriptors = await provider.list_tools()

        mock_http_client.assert_called_once_with("http://example.com/mcp", headers=None)

    assert [descriptor.name for descriptor in descriptors] == ["lookup-item", "second"]
    assert mock_session.list_tools.await_args_list[1].kwargs == {"cursor": "page-2"}
    await provider.close()


async def test_call_tool_returns_mcp_result(mock_session: MagicMock) -> None:
    provider = MCPToolProvider(MCPServerConfig(id="remote", url="http://example.com/mcp"))

    with (
        patch(
            "homellm.tools.mcp_provider.streamablehttp_client",
            return_value=_transport_context(),
        ),
        patch("homellm.tools.mcp_provider.ClientSession", return_value=mock_session),
    ):
        result = await provider.call_llm_tool("c1", "lookup-item", {"id": "7"})

    assert result.content[0].text == "found"
    mock_session.call_tool.assert_awaited_once_with("lookup-item", {"id": "7"})
    await provider.close()


async def test_connection_timeout_raises_connection_error() -> None:
    provider = MCPToolProvider(MCPServerConfig(id="remote", url="http://example.com/mcp"))
    context = AsyncMock()
    context.__aenter__ = AsyncMock(side_effect=asyncio.TimeoutError("timed out"))

    with patch(
        "homellm.tools.mcp_provider.streamablehttp_client", return_value=context
    ):
        with pytest.raises(ConnectionError) as exc_info:
            await provider.connect()

    assert "remote" in str(exc_info.value)
    assert not provider.is_connected


async def test_http_status_error_raises_connection_error() -> None:
    provider = MCPToolProvider(MCPServerConfig(id="remote", url="http://example.com/mcp"))
    response = MagicMock()
    response.status_code = 401
    response.reason_phrase = "Unauthorized"
    context = AsyncMock()
    context.__aenter__ = AsyncMock(
        side_effect=httpx.HTTPStatusError(
            "Unauthorized", request=MagicMock(), response=response
        )
    )

    with patch(
        "homellm.tools.mcp_provider.streamablehttp_client", return_value=context
    ):
        with pytest.raises(ConnectionError):
            await provider.connect()


async def test_call_tool_reconnects_once_after_transport_failure(
    mock_session: MagicMock,
) -> None:
    provider = MCPToolProvider(MCPServerConfig(id="remote", url="http://example.com/mcp"))
    mock_session.call_tool = AsyncMock(
        side_effect=[
            httpx.ReadError("connection reset"),
            CallToolResult(content=[TextContent(type="text", text="again")]),
        ]
    )

    with (
        patch(
            "homellm.tools.mcp_provider.streamablehttp_client",
            side_effect=lambda *args, **kwargs: _transport_context(),
        ) as mock_http_client,
        patch("homellm.tools.mcp_provider.ClientSession", return_value=mock_session),
        patch("homellm.tools.mcp_provider.HTTP_RECONNECT_DELAY", 0),
    ):
        result = await provider.call_llm_tool("c1", "lookup-item", {})

        assert mock_http_client.call_count == 2

    assert result.content[0].text == "again"
    await provider.close()


async def test_reconnect_gives_up_after_max_attempts() -> None:
    provider = MCPToolProvider(MCPServerConfig(id="remote", url="http://example.com/mcp"))
    provider._reconnect_attempts = HTTP_MAX_RECONNECT_ATTEMPTS

    assert await provider.reconnect() is False
