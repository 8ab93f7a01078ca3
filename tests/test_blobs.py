"""Tests for chat:// token minting and resolution."""

from __future__ import annotations

import re

import pytest
from mcp.types import CallToolResult, TextContent

from homellm.chat.blobs import (
    CHAT_META_KEY,
    attach_blob,
    chat_metadata,
    chat_url,
    find_chat_blob,
    mint_token,
    parse_chat_url,
)
from homellm.chat.errors import MimeTypeMismatchError


def _result_with(category: str, entry: dict) -> CallToolResult:
    result = CallToolResult(content=[TextContent(type="text", text="ok")])
    attach_blob(result, category, entry)
    return result


def test_minted_tokens_round_trip_through_chat_urls() -> None:
    token = mint_token()

    assert re.fullmatch(r"[a-z0-9]+(-[a-z0-9]+){3,}", token)
    assert chat_url(token) == f"chat://{token}"
    assert parse_chat_url(chat_url(token)) == token
    assert mint_token() != token


@pytest.mark.parametrize(
    "value",
    [None, 42, "", "https://example.com/a", "chat://", "chat:/missing-slash"],
)
def test_parse_chat_url_rejects_other_values(value) -> None:
    assert parse_chat_url(value) is None


def test_attach_blob_keeps_existing_metadata() -> None:
    result = CallToolResult(
        content=[TextContent(type="text", text="ok")],
        **{"_meta": {"other": 1}},
    )

    attach_blob(result, "images", {"token": "a", "src": "data:x", "mimeType": "image/png"})
    attach_blob(result, "images", {"token": "b", "src": "data:y", "mimeType": "image/png"})

    assert result.meta["other"] == 1
    assert [entry["token"] for entry in result.meta[CHAT_META_KEY]["images"]] == ["a", "b"]


def test_attach_blob_rejects_unknown_category() -> None:
    result = CallToolResult(content=[])

    with pytest.raises(ValueError):
        attach_blob(result, "videos", {"token": "a"})


def test_chat_metadata_ignores_malformed_meta() -> None:
    assert chat_metadata(None) == {}
    assert chat_metadata({CHAT_META_KEY: "nope"}) == {}


def test_image_token_resolves_to_data_url() -> None:
    history = [
        _result_with(
            "images",
            {"token": "red-fox", "src": "data:image/jpeg;base64,AAA", "mimeType": "image/jpeg"},
        )
    ]

    assert find_chat_blob("red-fox", history) == "data:image/jpeg;base64,AAA"
    assert find_chat_blob("red-fox", history, "image/jpeg") == "data:image/jpeg;base64,AAA"


def test_json_resource_resolves_to_parsed_value() -> None:
    history = [
        _result_with(
            "resources",
            {"token": "tok", "text": '{"a": [1, 2]}', "mimeType": "application/json"},
        )
    ]

    assert find_chat_blob("tok", history) == {"a": [1, 2]}


def test_invalid_json_resource_resolves_to_raw_text() -> None:
    history = [
        _result_with(
            "resources", {"token": "tok", "text": "{oops", "mimeType": "application/json"}
        )
    ]

    assert find_chat_blob("tok", history) == "{oops"


def test_last_match_in_history_wins() -> None:
    history = [
        _result_with("resources", {"token": "tok", "text": "old", "mimeType": "text/plain"}),
        _result_with("resources", {"token": "tok", "text": "new", "mimeType": "text/plain"}),
    ]

    assert find_chat_blob("tok", history) == "new"


def test_mime_type_mismatch_raises() -> None:
    history = [
        _result_with(
            "images", {"token": "tok", "src": "data:image/png;base64,AA", "mimeType": "image/png"}
        )
    ]

    with pytest.raises(MimeTypeMismatchError) as exc_info:
        find_chat_blob("tok", history, "image/jpeg")

    assert str(exc_info.value) == (
        "Tool call failed. The tool expected url with mime type image/jpeg, "
        "but got image/png"
    )


def test_unknown_token_resolves_to_none() -> None:
    history = [CallToolResult(content=[TextContent(type="text", text="plain")])]

    assert find_chat_blob("missing", history) is None
    assert find_chat_blob("missing", []) is None
