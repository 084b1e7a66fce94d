import os
import zoneinfo

import tzlocal

from yoswit_bridge import __version__

__all__ = [
    "BLE_CHAR_ID",
    "BLE_SERVICE_ID",
    "CLOUD_CMD_TOPIC_PREFIX",
    "DIMMING_DATA_FIELD",
    "DIMMING_OPCODE",
    "DIMMING_TRAILER",
    "HUB_SERVICE_LIGHTBULB",
    "LOCAL_TZ",
    "RELAY_MAC_LENGTH",
    "SUPPORTED_TYPE_CODES",
    "SWITCH_DATA_FIELD",
    "SWITCH_OPCODE",
    "SWITCH_TRAILER",
    "UNNAMED_DEVICE",
    "YES_ANSWER",
    "YOSWIT_API_TIMEOUT",
    "YOSWIT_APP_ID",
    "YOSWIT_BASE_URL",
    "YOSWIT_BLE_TOPIC",
    "YOSWIT_BROKER_HOST",
    "YOSWIT_BROKER_PORT",
    "YOSWIT_CLOUD_MQTT_CONN_DELAY",
    "YOSWIT_CLOUD_PUBLISH_TIMEOUT",
    "YOSWIT_DEBUG",
    "YOSWIT_HOMEBRIDGE_TOPIC_PREFIX",
    "YOSWIT_LOG_FORMAT",
    "YOSWIT_LOG_HUMAN_OUTPUT",
    "YOSWIT_LOG_JSON_FILE",
    "YOSWIT_PASSWORD",
    "YOSWIT_USERNAME",
    "YOSWIT_VERSION",
]

YES_ANSWER = ("true", "1", "yes", "y", "t", 1, "on", "o")
LOCAL_TZ = zoneinfo.ZoneInfo(str(tzlocal.get_localzone()))
YOSWIT_VERSION: str = __version__


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


# Cloud account
YOSWIT_BASE_URL: str | None = os.environ.get("YOSWIT_BASE_URL") or None
YOSWIT_USERNAME: str | None = os.environ.get("YOSWIT_USERNAME") or None
YOSWIT_PASSWORD: str | None = os.environ.get("YOSWIT_PASSWORD") or None
YOSWIT_APP_ID: str | None = os.environ.get("YOSWIT_APP_ID") or None
YOSWIT_API_TIMEOUT: int = _env_int("YOSWIT_API_TIMEOUT", 8)

# Embedded broker and topic namespaces
YOSWIT_BROKER_HOST: str = os.environ.get("YOSWIT_BROKER_HOST", "0.0.0.0")
YOSWIT_BROKER_PORT: int = _env_int("YOSWIT_BROKER_PORT", 1883)
YOSWIT_HOMEBRIDGE_TOPIC_PREFIX: str = os.environ.get("YOSWIT_HOMEBRIDGE_TOPIC_PREFIX", "homebridge")
YOSWIT_BLE_TOPIC: str = os.environ.get("YOSWIT_BLE_TOPIC", "yoswit/ble/devices")

# Cloud MQTT
YOSWIT_CLOUD_PUBLISH_TIMEOUT: float = _env_float("YOSWIT_CLOUD_PUBLISH_TIMEOUT", 10.0)
YOSWIT_CLOUD_MQTT_CONN_DELAY: int = _env_int("YOSWIT_CLOUD_MQTT_CONN_DELAY", 10)

# Logging
YOSWIT_DEBUG: bool = os.environ.get("YOSWIT_DEBUG", "0").casefold() in YES_ANSWER
YOSWIT_LOG_FORMAT: str = os.environ.get("YOSWIT_LOG_FORMAT", "human")  # "json", "human", or "both"
YOSWIT_LOG_JSON_FILE: str | None = os.environ.get("YOSWIT_LOG_JSON_FILE") or None
YOSWIT_LOG_HUMAN_OUTPUT: str = os.environ.get("YOSWIT_LOG_HUMAN_OUTPUT", "stdout")  # "stdout", "stderr", or file path

# BLE relay frames: 17 char MAC followed by a hex tail
RELAY_MAC_LENGTH = 17
# 3 char type code that precedes the status nibble
SUPPORTED_TYPE_CODES: frozenset[str] = frozenset({"400"})

# GATT write target used by the cloud bleHelper
BLE_SERVICE_ID = "ff80"
BLE_CHAR_ID = "ff81"
CLOUD_CMD_TOPIC_PREFIX = "cmd"

SWITCH_OPCODE = "02"
SWITCH_DATA_FIELD = "8000"
SWITCH_TRAILER = "00"
DIMMING_OPCODE = "03"
DIMMING_DATA_FIELD = "8100"
DIMMING_TRAILER = "00"

HUB_SERVICE_LIGHTBULB = "Lightbulb"
UNNAMED_DEVICE = "Unnamed Device"
