"""Camera, light, fan and notifier tools backed by the host device directory."""

from __future__ import annotations

import logging
from typing import Any, Callable, Iterable, Protocol, Sequence

from mcp.types import CallToolResult

from ..chat.results import image_result, text_result, unknown_tool_result
from ..chat.types import ToolDescriptor
from .time_tool import TIME_TOOL_NAME, current_time_text, time_tool_descriptor

logger = logging.getLogger(__name__)

# Device interfaces
ON_OFF = "OnOff"
BRIGHTNESS = "Brightness"
CAMERA = "Camera"
NOTIFIER = "Notifier"

# Device types
LIGHT_TYPES = frozenset({"Light", "Switch"})
CAMERA_TYPES = frozenset({"Camera", "Doorbell"})
FAN_TYPES = frozenset({"Fan"})


class DeviceHandle(Protocol):
    id: str
    name: str
    type: str
    interfaces: frozenset[str]

    async def take_picture(self) -> bytes:
        """Return a JPEG snapshot."""
        ...

    async def turn_on(self) -> None:
        ...

    async def turn_off(self) -> None:
        ...

    async def set_brightness(self, brightness: float) -> None:
        ...

    async def send_notification(self, message: str) -> None:
        ...


DevicePredicate = Callable[[DeviceHandle], bool]


class Directory(Protocol):
    """Read-only view of the devices known to the host platform."""

    def list_devices(self, predicate: DevicePredicate) -> Sequence[DeviceHandle]:
        ...


class StaticDirectory:
    """Directory over a fixed set of device handles."""

    def __init__(self, devices: Iterable[DeviceHandle] = ()):
        self._devices = list(devices)

    def list_devices(self, predicate: DevicePredicate) -> list[DeviceHandle]:
        return [device for device in self._devices if predicate(device)]


def is_camera(device: DeviceHandle) -> bool:
    return CAMERA in device.interfaces and device.type in CAMERA_TYPES


def is_light(device: DeviceHandle) -> bool:
    return ON_OFF in device.interfaces and device.type in LIGHT_TYPES


def is_fan(device: DeviceHandle) -> bool:
    return ON_OFF in device.interfaces and device.type in FAN_TYPES


def is_notifier(device: DeviceHandle) -> bool:
    return NOTIFIER in device.interfaces


def _object_schema(properties: dict[str, Any], required: list[str]) -> dict[str, Any]:
    return {
        "type": "object",
        "properties": properties,
        "required": required,
        "additionalProperties": False,
    }


def _string_param(description: str) -> dict[str, Any]:
    return {"type": "string", "description": description}


class DeviceTools:
    """Expose the host's devices as tools.

    A category of tools is only listed when the directory holds at least one
    matching device.
    """

    provider_id = "devices"

    def __init__(self, directory: Directory):
        self._directory = directory

    def list_cameras(self) -> str:
        return "\n".join(d.name for d in self._directory.list_devices(is_camera))

    def list_lights(self) -> str:
        names = []
        for device in self._directory.list_devices(is_light):
            if BRIGHTNESS in device.interfaces:
                names.append(f"{device.name}\n  - brightness control available")
            else:
                names.append(device.name)
        return "\n".join(names)

    def list_fans(self) -> str:
        return "\n".join(d.name for d in self._directory.list_devices(is_fan))

    def list_notifiers(self) -> str:
        return "\n".join(
            f"{d.id}\n  - {d.name}" for d in self._directory.list_devices(is_notifier)
        )

    def _by_name(self, name: str) -> DeviceHandle | None:
        matches = self._directory.list_devices(lambda device: device.name == name)
        return matches[0] if matches else None

    def _by_id(self, device_id: str) -> DeviceHandle | None:
        matches = self._directory.list_devices(lambda device: device.id == device_id)
        return matches[0] if matches else None

    async def list_tools(self) -> list[ToolDescriptor]:
        tools: list[ToolDescriptor] = []

        cameras = self.list_cameras()
        if cameras:
            tools.append(
                ToolDescriptor(
                    name="take-picture",
                    description=(
                        "Get an image from the requested camera to present it to "
                        "a user or use it to answer a user query. The picture "
                        "will be returned as a JPEG image. The camera list is:\n"
                        f"{cameras}"
                    ),
                    parameters=_object_schema(
                        {"camera": _string_param("The name of the camera to take a picture from.")},
                        ["camera"],
                    ),
                )
            )

        lights = self.list_lights()
        if lights:
            tools.extend(
                [
                    ToolDescriptor(
                        name="turn-light-on",
                        description=f"Turn on the requested light. The light list is:\n{lights}",
                        parameters=_object_schema(
                            {"light": _string_param("The name of the light to turn on.")},
                            ["light"],
                        ),
                    ),
                    ToolDescriptor(
                        name="turn-light-off",
                        description="Turn off the requested light.",
                        parameters=_object_schema(
                            {"light": _string_param("The name of the light to turn off.")},
                            ["light"],
                        ),
                    ),
                    ToolDescriptor(
                        name="set-light-brightness",
                        description="Set the brightness of the requested light.",
                        parameters=_object_schema(
                            {
                                "light": _string_param(
                                    "The name of the light to set the brightness for."
                                ),
                                "brightness": {
                                    "type": "number",
                                    "description": "The brightness level to set (0-100).",
                                },
                            },
                            ["light", "brightness"],
                        ),
                    ),
                ]
            )

        fans = self.list_fans()
        if fans:
            tools.extend(
                [
                    ToolDescriptor(
                        name="turn-fan-on",
                        description=f"Turn on the requested fan. The fan list is:\n{fans}",
                        parameters=_object_schema(
                            {"fan": _string_param("The name of the fan to turn on.")},
                            ["fan"],
                        ),
                    ),
                    ToolDescriptor(
                        name="turn-fan-off",
                        description="Turn off the requested fan.",
                        parameters=_object_schema(
                            {"fan": _string_param("The name of the fan to turn off.")},
                            ["fan"],
                        ),
                    ),
                ]
            )

        if self.list_notifiers():
            tools.extend(
                [
                    ToolDescriptor(
                        name="list-notifiers",
                        description=(
                            "List available notifiers. Notifiers can be used to "
                            "send notifications to users."
                        ),
                    ),
                    ToolDescriptor(
                        name="send-notification",
                        description=(
                            "Send a notification using the requested notifier. If "
                            "the user does not specify which device should receive "
                            "a notification, send it to their phone. If there is "
                            "any ambiguity you MUST ask the user where to send it."
                        ),
                        parameters=_object_schema(
                            {
                                "notifier": _string_param(
                                    "The id of the notifier to send a notification with."
                                ),
                                "message": _string_param(
                                    "The message to send in the notification."
                                ),
                            },
                            ["notifier", "message"],
                        ),
                    ),
                ]
            )

        tools.append(time_tool_descriptor())
        return tools

    async def call_llm_tool(
        self, tool_call_id: str, name: str, arguments: dict[str, Any]
    ) -> CallToolResult:
        if name == "take-picture":
            return await self._take_picture(arguments.get("camera"))
        if name in {"turn-light-on", "turn-light-off"}:
            return await self._switch(
                name, "light", arguments.get("light"), self.list_lights
            )
        if name in {"turn-fan-on", "turn-fan-off"}:
            return await self._switch(name, "fan", arguments.get("fan"), self.list_fans)
        if name == "set-light-brightness":
            return await self._set_brightness(
                name, arguments.get("light"), arguments.get("brightness")
            )
        if name == "list-notifiers":
            return text_result(
                "The ids of the available notifiers and their friendly names:\n"
                f"{self.list_notifiers()}"
            )
        if name == "send-notification":
            return await self._send_notification(
                arguments.get("notifier"), arguments.get("message")
            )
        if name == TIME_TOOL_NAME:
            return text_result(current_time_text())
        return unknown_tool_result(name)

    async def _take_picture(self, camera_name: Any) -> CallToolResult:
        if not camera_name:
            return text_result(
                '"camera" parameter is required for take-picture tool. '
                f"Valid camera names are: {self.list_cameras()}"
            )
        camera = self._by_name(camera_name)
        if camera is None or CAMERA not in camera.interfaces:
            return text_result(
                f"{camera_name} is not a valid camera. "
                f"Valid camera names are: {self.list_cameras()}"
            )
        logger.info("Taking picture from camera '%s'", camera_name)
        picture = await camera.take_picture()
        return image_result(picture, "image/jpeg")

    async def _switch(
        self,
        tool_name: str,
        kind: str,
        device_name: Any,
        valid_names: Callable[[], str],
    ) -> CallToolResult:
        if not device_name:
            return text_result(
                f'"{kind}" parameter is required for {tool_name} tool. '
                f"Valid {kind} names are: {valid_names()}"
            )
        device = self._by_name(device_name)
        if device is None:
            return text_result(
                f"{device_name} is not a valid {kind}. "
                f"Valid {kind} names are: {valid_names()}"
            )
        if ON_OFF not in device.interfaces:
            return text_result(f"{device_name} does not support on/off control.")
        if tool_name.endswith("-on"):
            await device.turn_on()
            return text_result(f"{device_name} turned on.")
        await device.turn_off()
        return text_result(f"{device_name} turned off.")

    async def _set_brightness(
        self, tool_name: str, light_name: Any, brightness: Any
    ) -> CallToolResult:
        if not light_name or brightness is None:
            return text_result(
                f'"light" and "brightness" parameters are required for {tool_name} '
                f"tool. Valid light names are: {self.list_lights()}"
            )
        light = self._by_name(light_name)
        if light is None:
            return text_result(
                f"{light_name} is not a valid light. "
                f"Valid light names are: {self.list_lights()}"
            )
        if BRIGHTNESS not in light.interfaces:
            return text_result(f"{light_name} does not support brightness control.")
        await light.set_brightness(brightness)
        return text_result(f"{light_name} brightness set to {brightness}.")

    async def _send_notification(self, notifier_name: Any, message: Any) -> CallToolResult:
        if not notifier_name or not message:
            return text_result(
                '"notifier" and "message" parameters are required for '
                "send-notification tool. Valid notifier names and their ids are: "
                f"{self.list_notifiers()}"
            )
        # Models sometimes prefix the id with the notifier name.
        notifier = (
            self._by_id(notifier_name)
            or self._by_name(notifier_name)
            or self._by_id(str(notifier_name).rsplit("-", 1)[-1])
        )
        if notifier is None or NOTIFIER not in notifier.interfaces:
            return text_result(
                f"{notifier_name} is not a valid notifier. "
                f"Valid notifiers are: {self.list_notifiers()}"
            )
        await notifier.send_notification(message)
        return text_result(f"Notification sent to {notifier.id}: {notifier.name}.")


__all__ = [
    "DeviceHandle",
    "DeviceTools",
    "Directory",
    "StaticDirectory",
    "is_camera",
    "is_fan",
    "is_light",
    "is_notifier",
]
