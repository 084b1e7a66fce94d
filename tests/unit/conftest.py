"""
Shared fixtures for unit tests.

Provides a representative cloud snapshot, the registry built from it and
mock collaborators for the bridge.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from yoswit_bridge.bridge import BridgeBroker
from yoswit_bridge.devices import DeviceRegistry
from yoswit_bridge.structs import Device, DeviceType

SWITCH_MAC = "aa:bb:cc:dd:ee:01"
DIMMER_MAC = "aa:bb:cc:dd:ee:02"


@pytest.fixture
def sample_snapshot():
    """
    afterLogin response with a two-gang switch module (M1), a dimmer (M2)
    and a few records that must be skipped.
    """
    return {
        "profile": {
            "profile_device": [
                {"device": "M1", "gateway": "G1"},
                {"device": "M2", "gateway": "G1"},
                {"device": "M3", "gateway": "G2"},
                {"device": "M4"},
            ],
            "profile_subdevice": [
                {
                    "device": "M1",
                    "device_button_group": "ONOFF GANG1",
                    "title": "Ceiling",
                    "room_name": "[en]Kitchen[/en]",
                },
                {
                    "device": "M1",
                    "device_button_group": "ONOFF GANG2",
                    "title": "Counter",
                    "room_name": "[en]Kitchen[/en]",
                },
                {"device": "M1", "device_button_group": "ONOFF GANG3", "title": "V1 relay"},
                {"device": "M2", "device_button_group": "DIMMING", "title": "Lamp", "room_name": "Living"},
                {"device": "M3", "device_button_group": "ONOFF GANG1", "title": "No MAC"},
                {"device": "M1", "device_button_group": "SCENE", "title": "Movie"},
            ],
        },
        "device": {
            "M1": {"name": "M1", "mac_address": "AA:BB:CC:DD:EE:01"},
            "M2": {"name": "M2", "mac_address": DIMMER_MAC},
            "M3": {"name": "M3"},
        },
    }


@pytest.fixture
def registry(sample_snapshot):
    return DeviceRegistry.from_snapshot(sample_snapshot)


@pytest.fixture
def switch_device():
    return Device(
        id="M1-1",
        guid="M1",
        type=DeviceType.SWITCH,
        index=1,
        mac_address=SWITCH_MAC,
        gateway_id="G1",
        name="Ceiling",
        room_name="Kitchen",
    )


@pytest.fixture
def dimmer_device():
    return Device(
        id="M2-0",
        guid="M2",
        type=DeviceType.DIMMING,
        index=0,
        mac_address=DIMMER_MAC,
        gateway_id="G1",
        name="Lamp",
        room_name="Living",
    )


@pytest.fixture
def mock_hub():
    """Stands in for the embedded broker's publish side."""
    hub = MagicMock()
    hub.publish = AsyncMock()
    return hub


@pytest.fixture
def mock_cloud():
    """Stands in for the cloud MQTT client."""
    cloud = MagicMock()
    cloud.publish_command = AsyncMock()
    return cloud


@pytest.fixture
def bridge(registry, mock_cloud, mock_hub):
    return BridgeBroker(
        registry,
        mock_cloud,
        mock_hub,
        events=asyncio.Queue(),
        topic_prefix="homebridge",
        ble_topic="yoswit/ble/devices",
        cloud_publish_timeout=0.5,
    )
