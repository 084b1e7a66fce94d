"""Yoswit BLE wire formats: relay status frames in, GATT write commands out."""

from .ble_status import decode_status, split_relay_payload
from .commands import CloudCommand, command_topic, encode_dimming, encode_switch

__all__ = [
    "CloudCommand",
    "command_topic",
    "decode_status",
    "encode_dimming",
    "encode_switch",
    "split_relay_payload",
]
