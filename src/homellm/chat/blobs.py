"""Opaque `chat://` references to binary data returned by earlier tool calls.

Tools cannot hand images, audio or large resources back to the model
directly, so the adapter stores them in the result metadata under a short
random token. A later tool call may pass ``chat://<token>`` in any string
parameter declared with ``format: uri`` and the dispatcher swaps in the
stored value before calling the tool.

Metadata layout, under ``result.meta["homellm/chat"]``::

    {
        "images": [{"token", "src", "mimeType", "width", "height"}],
        "audio": [{"token", "src", "mimeType"}],
        "resources": [{"token", "text", "mimeType"}],
    }
"""

from __future__ import annotations

import json
import logging
from typing import Any, Sequence
from urllib.parse import urlsplit

from coolname import generate_slug
from mcp.types import CallToolResult

from .errors import MimeTypeMismatchError

logger = logging.getLogger(__name__)

CHAT_URL_SCHEME = "chat"
CHAT_URL_PREFIX = f"{CHAT_URL_SCHEME}://"
CHAT_META_KEY = "homellm/chat"
BLOB_CATEGORIES = ("images", "audio", "resources")


def mint_token() -> str:
    return generate_slug(4)


def chat_url(token: str) -> str:
    return f"{CHAT_URL_PREFIX}{token}"


def parse_chat_url(value: Any) -> str | None:
    """Return the token from a ``chat://<token>`` string, else None."""

    if not isinstance(value, str) or not value.startswith(CHAT_URL_PREFIX):
        return None
    try:
        token = urlsplit(value).hostname
    except ValueError:
        return None
    return token or None


def chat_metadata(meta: dict[str, Any] | None) -> dict[str, Any]:
    if not isinstance(meta, dict):
        return {}
    entries = meta.get(CHAT_META_KEY)
    return entries if isinstance(entries, dict) else {}


def attach_blob(result: CallToolResult, category: str, entry: dict[str, Any]) -> None:
    if category not in BLOB_CATEGORIES:
        raise ValueError(f"Unknown blob category: {category}")
    meta = dict(result.meta or {})
    entries = dict(chat_metadata(meta))
    entries[category] = [*entries.get(category, []), entry]
    meta[CHAT_META_KEY] = entries
    result.meta = meta


def _check_mime_type(entry: dict[str, Any], required_mime_type: str | None) -> None:
    if required_mime_type and entry.get("mimeType") != required_mime_type:
        raise MimeTypeMismatchError(required_mime_type, entry.get("mimeType"))


def find_chat_blob(
    token: str,
    history: Sequence[CallToolResult],
    required_mime_type: str | None = None,
) -> Any:
    """Resolve ``token`` against the tool history.

    The whole history is scanned in order and the last matching entry wins.
    Images and audio resolve to their data URL. JSON resources resolve to the
    parsed value when it parses, other resources to their raw text. Returns
    None when nothing matches.
    """

    value: Any = None
    for result in history:
        entries = chat_metadata(result.meta)
        if not entries:
            continue

        for category in ("images", "audio"):
            for entry in entries.get(category) or []:
                if entry.get("token") != token:
                    continue
                _check_mime_type(entry, required_mime_type)
                value = entry.get("src")

        for entry in entries.get("resources") or []:
            if entry.get("token") != token:
                continue
            _check_mime_type(entry, required_mime_type)
            text = entry.get("text")
            if entry.get("mimeType") == "application/json":
                try:
                    value = json.loads(text)
                    continue
                except (TypeError, ValueError):
                    logger.debug("Chat resource %s is not valid JSON", token)
            value = text

    return value


__all__ = [
    "BLOB_CATEGORIES",
    "CHAT_META_KEY",
    "CHAT_URL_PREFIX",
    "attach_blob",
    "chat_metadata",
    "chat_url",
    "find_chat_blob",
    "mint_token",
    "parse_chat_url",
]
