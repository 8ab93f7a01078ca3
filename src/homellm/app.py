"""Application factory for the FastAPI service."""

from __future__ import annotations

import asyncio
import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from . import __version__
from .chat.types import ChatBackend, ToolProvider
from .completions import ChatCompletionsClient
from .config import PROJECT_ROOT, Settings, get_settings
from .llama_server import LlamaServer
from .routers.chat import router as chat_router
from .tools import (
    ChatBlobTools,
    DeviceTools,
    Directory,
    MCPToolProvider,
    TimeTools,
    WebSearchTools,
    build_mcp_providers,
    load_server_configs,
)

logger = logging.getLogger(__name__)


def _configure_logging() -> None:
    """Configure logging based on LOG_LEVEL environment variable."""
    load_dotenv()

    log_level_str = os.getenv("LOG_LEVEL", "INFO").upper()
    log_level = getattr(logging, log_level_str, logging.INFO)
    formatter = logging.Formatter(
        "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    handlers: list[logging.Handler] = []
    log_file = os.getenv("LOG_FILE")
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    handlers.append(console_handler)

    logging.basicConfig(level=log_level, handlers=handlers, force=True)

    logging.getLogger("homellm").setLevel(log_level)
    logging.getLogger("uvicorn").setLevel(log_level)
    logging.getLogger("uvicorn.access").setLevel(log_level)
    logging.getLogger("uvicorn.error").setLevel(log_level)

    # Quiet noisy transport logs unless debugging
    if log_level > logging.DEBUG:
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)


def _resolve_path(path: Path) -> Path:
    if path.is_absolute():
        return path
    return (PROJECT_ROOT / path).resolve()


def _build_llama_server(settings: Settings) -> LlamaServer | None:
    if not settings.llama_model:
        return None
    api_key = (
        settings.llama_api_key.get_secret_value()
        if settings.llama_api_key is not None
        else None
    )
    return LlamaServer(
        settings.llama_model,
        binary=settings.llama_binary,
        port=settings.llama_port,
        api_key=api_key,
        cache_dir=settings.llama_cache_dir,
    )


def create_app(
    *,
    settings: Settings | None = None,
    directory: Directory | None = None,
    backend: ChatBackend | None = None,
    extra_providers: list[ToolProvider] | None = None,
) -> FastAPI:
    """Build the service.

    ``directory`` enables the device tools. ``backend`` replaces the chat
    completion client, which is otherwise created from settings (or from a
    local llama.cpp server when a model is configured).
    """

    _configure_logging()
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        llama: LlamaServer | None = None
        client: ChatCompletionsClient | None = None
        chat_backend = backend

        if chat_backend is None:
            base_url: str | None = None
            llama = _build_llama_server(settings)
            if llama is not None:
                base_url = await llama.start()
            client = ChatCompletionsClient.from_settings(settings, base_url=base_url)
            chat_backend = client

        providers: list[Any] = [
            TimeTools(),
            ChatBlobTools(),
            WebSearchTools(
                str(settings.searxng_url) if settings.searxng_url else None
            ),
        ]
        if directory is not None:
            providers.append(DeviceTools(directory))
        mcp_providers: list[MCPToolProvider] = build_mcp_providers(
            load_server_configs(_resolve_path(settings.mcp_servers_path))
        )
        providers.extend(mcp_providers)
        providers.extend(extra_providers or [])

        app.state.settings = settings
        app.state.chat_backend = chat_backend
        app.state.tool_providers = providers
        app.state.llama_server = llama
        logger.info(
            "Service ready with %d tool providers (%d MCP servers)",
            len(providers),
            len(mcp_providers),
        )
        try:
            yield
        finally:
            for provider in mcp_providers:
                try:
                    await asyncio.wait_for(provider.close(), timeout=5.0)
                except asyncio.TimeoutError:
                    logger.warning(
                        "MCP provider '%s' shutdown timed out", provider.provider_id
                    )
                except Exception as exc:  # noqa: BLE001
                    logger.warning(
                        "Error closing MCP provider '%s': %s", provider.provider_id, exc
                    )
            if client is not None:
                await client.aclose()
            if llama is not None:
                await llama.stop()

    app = FastAPI(
        title="Home LLM Assistant",
        version=__version__,
        description="Tool-calling chat assistant for a local LLM server.",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(chat_router)

    @app.get("/health", tags=["health"])
    async def healthcheck() -> dict[str, str | None]:
        llama = getattr(app.state, "llama_server", None)
        return {
            "status": "ok",
            "model": settings.chat_model,
            "llama_url": llama.base_url if llama is not None else None,
        }

    return app


__all__ = ["create_app"]
