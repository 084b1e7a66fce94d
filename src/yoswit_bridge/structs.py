"""Core data structures shared across the bridge."""

from __future__ import annotations

import os
from dataclasses import dataclass
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field

from yoswit_bridge.const import (
    UNNAMED_DEVICE,
    YOSWIT_API_TIMEOUT,
    YOSWIT_APP_ID,
    YOSWIT_BASE_URL,
    YOSWIT_BLE_TOPIC,
    YOSWIT_BROKER_HOST,
    YOSWIT_BROKER_PORT,
    YOSWIT_CLOUD_MQTT_CONN_DELAY,
    YOSWIT_CLOUD_PUBLISH_TIMEOUT,
    YOSWIT_HOMEBRIDGE_TOPIC_PREFIX,
    YOSWIT_PASSWORD,
    YOSWIT_USERNAME,
)


class DeviceType(StrEnum):
    SWITCH = "Switch"
    DIMMING = "Dimming"


class Characteristic(StrEnum):
    """Homebridge characteristics the bridge reads and writes."""

    ON = "On"
    BRIGHTNESS = "Brightness"


@dataclass(frozen=True, slots=True)
class Device:
    """One logical endpoint (a switch gang or a dimmer) of a BLE module."""

    id: str
    guid: str
    type: DeviceType
    index: int
    mac_address: str
    gateway_id: str
    name: str | None = None
    room_name: str | None = None

    @property
    def service_name(self) -> str:
        """Label shown in the hub, e.g. ``"Ceiling (Kitchen)"``."""
        label = self.name or UNNAMED_DEVICE
        if self.room_name:
            return f"{label} ({self.room_name})"
        return label


@dataclass(frozen=True, slots=True)
class CharacteristicUpdate:
    device: Device
    characteristic: Characteristic
    value: bool | int


# Events produced by the embedded broker and consumed by the bridge dispatcher


@dataclass(frozen=True, slots=True)
class ClientConnected:
    client_id: str


@dataclass(frozen=True, slots=True)
class ClientSubscribed:
    client_id: str
    topic: str
    qos: int = 0


@dataclass(frozen=True, slots=True)
class MessagePublished:
    client_id: str
    topic: str
    payload: bytes


type BrokerEvent = ClientConnected | ClientSubscribed | MessagePublished


class HubSetCommand(BaseModel):
    """Payload of ``{prefix}/from/set`` sent by homebridge-mqtt."""

    model_config = ConfigDict(extra="ignore")

    name: str
    characteristic: str
    value: bool | int | float


class BridgeEnv(BaseModel):
    """Runtime settings, read from the environment after any ``.env`` file is loaded."""

    base_url: str | None = None
    username: str | None = None
    password: str | None = None
    app_id: str | None = None
    api_timeout: int = 8
    broker_host: str = "0.0.0.0"
    broker_port: int = Field(default=1883, ge=1, le=65535)
    topic_prefix: str = "homebridge"
    ble_topic: str = "yoswit/ble/devices"
    cloud_publish_timeout: float = 10.0
    cloud_mqtt_conn_delay: int = 10

    @classmethod
    def from_environ(cls) -> BridgeEnv:
        """Re-read the environment, falling back to the import-time constants."""
        env = os.environ
        return cls(
            base_url=env.get("YOSWIT_BASE_URL") or YOSWIT_BASE_URL,
            username=env.get("YOSWIT_USERNAME") or YOSWIT_USERNAME,
            password=env.get("YOSWIT_PASSWORD") or YOSWIT_PASSWORD,
            app_id=env.get("YOSWIT_APP_ID") or YOSWIT_APP_ID,
            api_timeout=env.get("YOSWIT_API_TIMEOUT") or YOSWIT_API_TIMEOUT,
            broker_host=env.get("YOSWIT_BROKER_HOST") or YOSWIT_BROKER_HOST,
            broker_port=env.get("YOSWIT_BROKER_PORT") or YOSWIT_BROKER_PORT,
            topic_prefix=env.get("YOSWIT_HOMEBRIDGE_TOPIC_PREFIX") or YOSWIT_HOMEBRIDGE_TOPIC_PREFIX,
            ble_topic=env.get("YOSWIT_BLE_TOPIC") or YOSWIT_BLE_TOPIC,
            cloud_publish_timeout=env.get("YOSWIT_CLOUD_PUBLISH_TIMEOUT") or YOSWIT_CLOUD_PUBLISH_TIMEOUT,
            cloud_mqtt_conn_delay=env.get("YOSWIT_CLOUD_MQTT_CONN_DELAY") or YOSWIT_CLOUD_MQTT_CONN_DELAY,
        )

    @property
    def missing_credentials(self) -> list[str]:
        required = {
            "YOSWIT_BASE_URL": self.base_url,
            "YOSWIT_USERNAME": self.username,
            "YOSWIT_PASSWORD": self.password,
            "YOSWIT_APP_ID": self.app_id,
        }
        return [name for name, value in required.items() if not value]


class CloudMqttSettings(BaseModel):
    """Cloud MQTT connection details from ``appv6.getAppSetting``."""

    model_config = ConfigDict(extra="ignore")

    host: str = Field(alias="mqtt_server")
    port: int = Field(default=1883, alias="mqtt_port")
    keepalive: int = Field(default=60, alias="mqtt_keepalive")
    username: str | None = Field(default=None, alias="mqtt_username")
    password: str | None = Field(default=None, alias="mqtt_password")
