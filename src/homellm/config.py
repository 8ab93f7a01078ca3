"""Application configuration using environment variables."""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import AliasChoices, AnyHttpUrl, Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

# Resolve the project root once so that `.env` is discovered regardless of CWD
PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent


class Settings(BaseSettings):
    """Load configuration from environment variables and `.env`."""

    model_config = SettingsConfigDict(
        env_file=str(PROJECT_ROOT / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    host: str = Field(
        default="0.0.0.0",
        validation_alias=AliasChoices("HOMELLM_HOST", "host"),
    )
    port: int = Field(
        default=8000,
        ge=1,
        le=65535,
        validation_alias=AliasChoices("HOMELLM_PORT", "port"),
    )

    # OpenAI-compatible chat completion endpoint
    chat_base_url: AnyHttpUrl = Field(
        default_factory=lambda: AnyHttpUrl("http://127.0.0.1:8080/v1"),
        validation_alias=AliasChoices("CHAT_BASE_URL", "chat_base_url"),
    )
    chat_api_key: Optional[SecretStr] = Field(
        default=None,
        validation_alias=AliasChoices("CHAT_API_KEY", "chat_api_key"),
    )
    chat_model: str = Field(
        default="default",
        validation_alias=AliasChoices("CHAT_MODEL", "chat_model"),
    )
    request_timeout: float = Field(
        default=120.0,
        ge=1,
        validation_alias=AliasChoices("CHAT_TIMEOUT", "request_timeout"),
    )
    system_prompt: Optional[str] = Field(
        default=(
            "You are a helpful home assistant. Call tools when they help "
            "answer the user, and tell the user when a tool fails."
        ),
        validation_alias=AliasChoices("CHAT_SYSTEM_PROMPT", "system_prompt"),
    )
    assistant_name: str = Field(
        default="Assistant",
        validation_alias=AliasChoices("ASSISTANT_NAME", "assistant_name"),
    )
    legacy_function_calls: bool = Field(
        default=False,
        validation_alias=AliasChoices(
            "CHAT_LEGACY_FUNCTION_CALLS", "legacy_function_calls"
        ),
    )
    max_tool_rounds: int = Field(
        default=25,
        ge=1,
        validation_alias=AliasChoices("CHAT_MAX_TOOL_ROUNDS", "max_tool_rounds"),
    )
    image_input: bool = Field(
        default=False,
        validation_alias=AliasChoices("CHAT_IMAGE_INPUT", "image_input"),
    )
    audio_input: bool = Field(
        default=False,
        validation_alias=AliasChoices("CHAT_AUDIO_INPUT", "audio_input"),
    )

    # Tools
    searxng_url: Optional[AnyHttpUrl] = Field(
        default=None,
        validation_alias=AliasChoices("SEARXNG_URL", "searxng_url"),
    )
    mcp_servers_path: Path = Field(
        default_factory=lambda: Path("data/mcp_servers.json"),
        validation_alias=AliasChoices("MCP_SERVERS_PATH", "mcp_servers_path"),
    )

    # Local llama.cpp server, started when a model is configured
    llama_model: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("LLAMA_MODEL", "llama_model"),
    )
    llama_binary: str = Field(
        default="llama-server",
        validation_alias=AliasChoices("LLAMA_BINARY", "llama_binary"),
    )
    llama_port: int = Field(
        default=0,
        ge=0,
        le=65535,
        validation_alias=AliasChoices("LLAMA_PORT", "llama_port"),
    )
    llama_api_key: Optional[SecretStr] = Field(
        default=None,
        validation_alias=AliasChoices("LLAMA_API_KEY", "llama_api_key"),
    )
    llama_cache_dir: Optional[Path] = Field(
        default=None,
        validation_alias=AliasChoices("LLAMA_CACHE", "llama_cache_dir"),
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached `Settings` instance."""

    return Settings()  # pyright: ignore[reportCallIssue]


__all__ = ["Settings", "get_settings"]
