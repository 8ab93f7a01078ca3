"""Tests for the device tools exposed over an injected directory."""

from __future__ import annotations

import base64
from dataclasses import dataclass, field

import pytest
from mcp.types import ImageContent

from homellm.chat.results import result_text
from homellm.tools.devices import (
    BRIGHTNESS,
    CAMERA,
    NOTIFIER,
    ON_OFF,
    DeviceTools,
    StaticDirectory,
)

pytestmark = pytest.mark.anyio


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@dataclass
class FakeDevice:
    id: str
    name: str
    type: str
    interfaces: frozenset[str]
    actions: list[tuple] = field(default_factory=list)

    async def take_picture(self) -> bytes:
        self.actions.append(("picture",))
        return b"\xff\xd8jpeg"

    async def turn_on(self) -> None:
        self.actions.append(("on",))

    async def turn_off(self) -> None:
        self.actions.append(("off",))

    async def set_brightness(self, brightness: float) -> None:
        self.actions.append(("brightness", brightness))

    async def send_notification(self, message: str) -> None:
        self.actions.append(("notify", message))


@pytest.fixture
def devices() -> dict[str, FakeDevice]:
    return {
        "porch": FakeDevice("cam-1", "Porch", "Camera", frozenset({CAMERA})),
        "lamp": FakeDevice(
            "light-1", "Lamp", "Light", frozenset({ON_OFF, BRIGHTNESS})
        ),
        "fan": FakeDevice("fan-1", "Ceiling Fan", "Fan", frozenset({ON_OFF})),
        "phone": FakeDevice("42", "Alex Phone", "Notifier", frozenset({NOTIFIER})),
    }


@pytest.fixture
def tools(devices: dict[str, FakeDevice]) -> DeviceTools:
    return DeviceTools(StaticDirectory(devices.values()))


async def test_tool_list_follows_available_devices(tools: DeviceTools) -> None:
    names = [tool.name for tool in await tools.list_tools()]

    assert names == [
        "take-picture",
        "turn-light-on",
        "turn-light-off",
        "set-light-brightness",
        "turn-fan-on",
        "turn-fan-off",
        "list-notifiers",
        "send-notification",
        "get-time",
    ]


async def test_empty_directory_only_offers_time() -> None:
    tools = DeviceTools(StaticDirectory())

    assert [tool.name for tool in await tools.list_tools()] == ["get-time"]


async def test_take_picture_returns_jpeg(tools: DeviceTools, devices) -> None:
    result = await tools.call_llm_tool("c", "take-picture", {"camera": "Porch"})

    part = result.content[0]
    assert isinstance(part, ImageContent)
    assert part.mimeType == "image/jpeg"
    assert base64.b64decode(part.data) == b"\xff\xd8jpeg"
    assert devices["porch"].actions == [("picture",)]


async def test_take_picture_requires_camera(tools: DeviceTools) -> None:
    result = await tools.call_llm_tool("c", "take-picture", {})

    assert result_text(result) == (
        '"camera" parameter is required for take-picture tool. '
        "Valid camera names are: Porch"
    )


async def test_invalid_camera_lists_valid_names(tools: DeviceTools) -> None:
    result = await tools.call_llm_tool("c", "take-picture", {"camera": "Garage"})

    assert result_text(result) == (
        "Garage is not a valid camera. Valid camera names are: Porch"
    )


async def test_lights_and_fans_switch(tools: DeviceTools, devices) -> None:
    on = await tools.call_llm_tool("c", "turn-light-on", {"light": "Lamp"})
    off = await tools.call_llm_tool("c", "turn-fan-off", {"fan": "Ceiling Fan"})

    assert result_text(on) == "Lamp turned on."
    assert result_text(off) == "Ceiling Fan turned off."
    assert devices["lamp"].actions == [("on",)]
    assert devices["fan"].actions == [("off",)]


async def test_set_brightness(tools: DeviceTools, devices) -> None:
    result = await tools.call_llm_tool(
        "c", "set-light-brightness", {"light": "Lamp", "brightness": 40}
    )

    assert result_text(result) == "Lamp brightness set to 40."
    assert devices["lamp"].actions == [("brightness", 40)]


async def test_brightness_unsupported(tools: DeviceTools) -> None:
    result = await tools.call_llm_tool(
        "c", "set-light-brightness", {"light": "Ceiling Fan", "brightness": 10}
    )

    assert result_text(result) == "Ceiling Fan does not support brightness control."


async def test_notifications_accept_prefixed_ids(tools: DeviceTools, devices) -> None:
    listing = await tools.call_llm_tool("c", "list-notifiers", {})
    sent = await tools.call_llm_tool(
        "c", "send-notification", {"notifier": "Alex Phone-42", "message": "hi"}
    )

    assert "42\n  - Alex Phone" in result_text(listing)
    assert result_text(sent) == "Notification sent to 42: Alex Phone."
    assert devices["phone"].actions == [("notify", "hi")]


async def test_unknown_tool(tools: DeviceTools) -> None:
    result = await tools.call_llm_tool("c", "open-garage", {})

    assert result.isError is True
    assert result_text(result) == "Unknown tool: open-garage"
