"""Topics and payloads of the homebridge-mqtt namespace.

homebridge-mqtt listens on ``{prefix}/to/...`` and publishes user actions
on ``{prefix}/from/...``. Accessories are addressed by ``name``, which the
bridge sets to the device id.
"""

from __future__ import annotations

import json

from yoswit_bridge.const import HUB_SERVICE_LIGHTBULB
from yoswit_bridge.structs import Characteristic, CharacteristicUpdate, Device, DeviceType

HUB_QOS = 1


def add_topic(prefix: str) -> str:
    return f"{prefix}/to/add"


def set_topic(prefix: str) -> str:
    return f"{prefix}/to/set"


def command_topic(prefix: str) -> str:
    return f"{prefix}/from/set"


def subscribe_all_topic(prefix: str) -> str:
    """The subscription homebridge-mqtt makes on startup; it triggers discovery and replay."""
    return f"{prefix}/to/#"


def discovery_payload(device: Device) -> bytes:
    payload: dict[str, str] = {
        "name": device.id,
        "service_name": device.service_name,
        "service": HUB_SERVICE_LIGHTBULB,
    }
    if device.type is DeviceType.DIMMING:
        payload[str(Characteristic.BRIGHTNESS)] = "default"
    return json.dumps(payload).encode()


def status_payload(update: CharacteristicUpdate) -> bytes:
    return json.dumps(
        {
            "name": update.device.id,
            "service_name": update.device.service_name,
            "characteristic": str(update.characteristic),
            "value": update.value,
        },
    ).encode()
