"""Expose the tools of remote MCP servers over streamable HTTP."""

from __future__ import annotations

import asyncio
import json
import logging
from contextlib import AsyncExitStack
from pathlib import Path
from typing import Annotated, Any, Sequence

import httpx
from mcp.client.session import ClientSession
from mcp.client.streamable_http import streamablehttp_client
from mcp.types import CallToolResult, ListToolsResult, Tool
from pydantic import BaseModel, ConfigDict, Field, SecretStr, ValidationError

from ..chat.types import ToolDescriptor

logger = logging.getLogger(__name__)

# Connection timeout for HTTP MCP servers (seconds)
HTTP_CONNECTION_TIMEOUT = 30.0
# Maximum number of reconnection attempts before giving up
HTTP_MAX_RECONNECT_ATTEMPTS = 3
# Delay between reconnection attempts (seconds)
HTTP_RECONNECT_DELAY = 2.0


class MCPServerConfig(BaseModel):
    """Declarative description of a remote MCP server."""

    model_config = ConfigDict(extra="forbid")

    id: Annotated[
        str,
        Field(..., min_length=1, description="Stable identifier for the server"),
    ]
    url: Annotated[
        str,
        Field(..., min_length=1, description="Streamable HTTP endpoint of the server"),
    ]
    token: SecretStr | None = Field(
        default=None,
        description="Bearer token sent with every request",
    )
    enabled: bool = Field(
        default=True, description="Whether tools from the server are exposed"
    )


def load_server_configs(path: Path) -> list[MCPServerConfig]:
    """Load MCP server definitions from a JSON list or ``{"servers": [...]}``."""

    if not path.exists():
        return []

    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid JSON in MCP server config {path}: {exc}") from exc

    if isinstance(payload, dict):
        items = payload.get("servers")
        if items is None:
            raise ValueError(f"Expected 'servers' key in MCP server config file {path}")
    else:
        items = payload

    if not isinstance(items, list):
        raise ValueError(f"Invalid MCP server config in {path}: 'servers' must be a list")

    configs: dict[str, MCPServerConfig] = {}
    errors: list[str] = []
    for raw in items:
        try:
            config = MCPServerConfig.model_validate(raw)
        except ValidationError as exc:
            errors.append(str(exc))
            continue
        if config.id in configs:
            logger.warning("Duplicate MCP server id '%s'; keeping the last one", config.id)
        configs[config.id] = config

    if errors:
        raise ValueError(
            f"Invalid MCP server definitions in {path}:\n" + "\n".join(errors)
        )
    return list(configs.values())


class MCPToolProvider:
    """Maintain a long-lived MCP session and expose its tools.

    The session is opened lazily on first use. A lifecycle task owns the
    transport so that it is entered and exited from the same task.
    """

    def __init__(self, config: MCPServerConfig):
        self._config = config
        self._session: ClientSession | None = None
        self._tools: list[Tool] = []
        self._lock = asyncio.Lock()
        self._reconnect_attempts = 0
        self._last_connection_error: BaseException | None = None
        self._lifecycle_task: asyncio.Task | None = None
        self._close_event: asyncio.Event | None = None
        self._ready_event: asyncio.Event | None = None

    @property
    def provider_id(self) -> str:
        return self._config.id

    @property
    def is_connected(self) -> bool:
        return self._session is not None

    @property
    def tools(self) -> list[Tool]:
        return list(self._tools)

    def _headers(self) -> dict[str, str] | None:
        if self._config.token is None:
            return None
        return {"Authorization": f"Bearer {self._config.token.get_secret_value()}"}

    async def _run_lifecycle(self) -> None:
        exit_stack = AsyncExitStack()
        try:
            logger.info(
                "Connecting to HTTP MCP server at %s (id=%s)",
                self._config.url,
                self._config.id,
            )
            async with asyncio.timeout(HTTP_CONNECTION_TIMEOUT):
                read_stream, write_stream, _ = await exit_stack.enter_async_context(
                    streamablehttp_client(self._config.url, headers=self._headers())
                )
                session = ClientSession(read_stream, write_stream)
                await exit_stack.enter_async_context(session)
                await session.initialize()

            async with self._lock:
                self._session = session
                self._reconnect_attempts = 0
                self._last_connection_error = None

            await self.refresh_tools()

            if self._ready_event is not None:
                self._ready_event.set()
            if self._close_event is not None:
                await self._close_event.wait()
        except asyncio.TimeoutError as exc:
            self._last_connection_error = exc
            logger.error(
                "Timeout connecting to HTTP MCP server '%s' after %ss",
                self._config.url,
                HTTP_CONNECTION_TIMEOUT,
            )
        except httpx.HTTPStatusError as exc:
            self._last_connection_error = exc
            status_code = exc.response.status_code
            if status_code == 401:
                logger.error("Authentication required for HTTP MCP server '%s'", self._config.url)
            elif status_code == 403:
                logger.error("Access forbidden to HTTP MCP server '%s'", self._config.url)
            else:
                logger.error(
                    "HTTP error from MCP server '%s': %s %s",
                    self._config.url,
                    status_code,
                    exc.response.reason_phrase,
                )
        except Exception as exc:  # noqa: BLE001
            self._last_connection_error = exc
            logger.error(
                "Unexpected error connecting to MCP server '%s': %s",
                self._config.url,
                exc,
            )
        finally:
            if self._ready_event is not None and not self._ready_event.is_set():
                self._ready_event.set()
            try:
                await asyncio.wait_for(exit_stack.aclose(), timeout=2.0)
            except asyncio.TimeoutError:
                logger.warning(
                    "MCP session close timed out after 2s for server '%s'",
                    self._config.id,
                )
            except Exception as exc:  # noqa: BLE001
                logger.warning(
                    "Error closing MCP session for server '%s': %s",
                    self._config.id,
                    exc,
                )
            async with self._lock:
                self._session = None
                self._tools = []
                self._close_event = None
                self._ready_event = None
                self._lifecycle_task = None

    async def connect(self) -> None:
        """Open the MCP session if it is not open yet."""

        async with self._lock:
            if self._session is not None:
                return
            lifecycle = self._lifecycle_task
            ready_event = self._ready_event
            if lifecycle is None or lifecycle.done() or ready_event is None:
                self._close_event = asyncio.Event()
                self._ready_event = ready_event = asyncio.Event()
                self._last_connection_error = None
                self._lifecycle_task = lifecycle = asyncio.create_task(
                    self._run_lifecycle()
                )

        await ready_event.wait()

        if self._session is not None:
            return
        error = self._last_connection_error
        if error is not None:
            raise ConnectionError(
                f"Failed to connect to MCP server '{self._config.id}': {error}"
            ) from error
        raise ConnectionError(f"Failed to connect to MCP server '{self._config.id}'")

    async def close(self) -> None:
        """Tear down the MCP session."""

        async with self._lock:
            lifecycle = self._lifecycle_task
            close_event = self._close_event

        if lifecycle is None:
            return

        logger.info("Closing MCP session for server '%s'", self._config.id)
        if close_event is not None:
            close_event.set()
        try:
            await asyncio.wait_for(lifecycle, timeout=2.5)
        except asyncio.TimeoutError:
            logger.warning(
                "MCP session close timed out after 2.5s for server '%s'",
                self._config.id,
            )

    async def reconnect(self) -> bool:
        """Drop the current session and connect again.

        Returns True if reconnection was successful, False otherwise.
        """

        if self._reconnect_attempts >= HTTP_MAX_RECONNECT_ATTEMPTS:
            logger.error(
                "Maximum reconnection attempts (%d) reached for MCP server '%s'",
                HTTP_MAX_RECONNECT_ATTEMPTS,
                self._config.id,
            )
            return False

        self._reconnect_attempts += 1
        logger.info(
            "Attempting to reconnect to MCP server '%s' (attempt %d/%d)",
            self._config.id,
            self._reconnect_attempts,
            HTTP_MAX_RECONNECT_ATTEMPTS,
        )
        await self.close()
        await asyncio.sleep(HTTP_RECONNECT_DELAY)
        try:
            await self.connect()
        except ConnectionError as exc:
            logger.warning("Failed to reconnect to MCP server '%s': %s", self._config.id, exc)
            return False
        return True

    async def refresh_tools(self) -> None:
        """Fetch and cache the available tools from the MCP server."""

        if self._session is None:
            raise RuntimeError("MCP session has not been initialized")

        tools: list[Tool] = []
        cursor: str | None = None
        while True:
            result: ListToolsResult = await self._session.list_tools(cursor=cursor)
            tools.extend(result.tools)
            cursor = result.nextCursor
            if not cursor:
                break
        self._tools = tools

    async def list_tools(self) -> list[ToolDescriptor]:
        await self.connect()
        return [
            ToolDescriptor(
                name=tool.name,
                description=tool.description or tool.title or "",
                parameters=tool.inputSchema or None,
            )
            for tool in self._tools
        ]

    async def call_llm_tool(
        self, tool_call_id: str, name: str, arguments: dict[str, Any]
    ) -> CallToolResult:
        await self.connect()
        session = self._session
        if session is None:
            raise RuntimeError("MCP session has not been initialized")
        logger.debug("Sending tool '%s' to MCP server '%s'", name, self._config.id)
        try:
            return await session.call_tool(name, arguments or {})
        except (httpx.TransportError, ConnectionError, BrokenPipeError) as exc:
            logger.warning(
                "MCP server '%s' failed during tool '%s': %s; reconnecting",
                self._config.id,
                name,
                exc,
            )
            if not await self.reconnect():
                raise
            assert self._session is not None
            return await self._session.call_tool(name, arguments or {})


def build_mcp_providers(configs: Sequence[MCPServerConfig]) -> list[MCPToolProvider]:
    return [MCPToolProvider(config) for config in configs if config.enabled]


__all__ = [
    "MCPServerConfig",
    "MCPToolProvider",
    "build_mcp_providers",
    "load_server_configs",
]
