"""Encoder for ``bleHelper.perform`` write commands sent through the cloud.

The cloud relays the hex ``value`` to the module as a GATT write on
service ``ff80`` / characteristic ``ff81``. Layout of the value::

    switch:  02 <mac reversed> 8000 <data> 00
    dimming: 03 <mac reversed> 8100 <level> 00

For switches the data byte is a channel-select nibble followed by an on/off
nibble, MSB first: gang 1 on is ``0b0001_0001`` (``11``), gang 1 off is
``0b0001_0000`` (``10``).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TypedDict

from yoswit_bridge.const import (
    BLE_CHAR_ID,
    BLE_SERVICE_ID,
    CLOUD_CMD_TOPIC_PREFIX,
    DIMMING_DATA_FIELD,
    DIMMING_OPCODE,
    DIMMING_TRAILER,
    SWITCH_DATA_FIELD,
    SWITCH_OPCODE,
    SWITCH_TRAILER,
)
from yoswit_bridge.exceptions import CommandEncodeError, DeviceTypeMismatchError
from yoswit_bridge.structs import Device, DeviceType
from yoswit_bridge.utils import double_md5, reverse_mac

MAX_SWITCH_GANG = 4
BYTE_WIDTH = 8


class WriteParams(TypedDict):
    action: str
    guid: str
    mac_address: str
    service_id: str
    char_id: str
    value: str


class ControlCommand(TypedDict):
    command: str
    function: str
    params: list[WriteParams]
    callback: str
    raw: str


@dataclass(frozen=True, slots=True)
class CloudCommand:
    """A write command and the cloud topic it is published to."""

    topic: str
    data: ControlCommand


def command_topic(gateway_id: str) -> str:
    """``cmd/<md5(md5(gateway_id))>``"""
    return f"{CLOUD_CMD_TOPIC_PREFIX}/{double_md5(gateway_id)}"


def switch_data_byte(index: int, on: bool) -> int:
    """Data byte for gang ``index``: bit ``4-index`` selects, bit ``8-index`` is the state (MSB first)."""
    if not 1 <= index <= MAX_SWITCH_GANG:
        msg = f"Switch gang index {index} out of range 1-{MAX_SWITCH_GANG}"
        raise CommandEncodeError(msg)
    bits = ["0"] * BYTE_WIDTH
    bits[4 - index] = "1"
    if on:
        bits[8 - index] = "1"
    return int("".join(bits), 2)


def dimming_data_byte(brightness: int) -> int:
    """Scale a 0-100 brightness to the 0-255 range the dimmer expects."""
    if not 0 <= brightness <= 100:
        msg = f"Brightness {brightness} out of range 0-100"
        raise CommandEncodeError(msg)
    return round((brightness / 100) * 255)


def _write_command(device: Device, value: str) -> CloudCommand:
    return CloudCommand(
        topic=command_topic(device.gateway_id),
        data={
            "command": "Control",
            "function": "bleHelper.perform",
            "params": [
                {
                    "action": "write",
                    "guid": device.guid,
                    "mac_address": device.mac_address,
                    "service_id": BLE_SERVICE_ID,
                    "char_id": BLE_CHAR_ID,
                    "value": value,
                },
            ],
            "callback": "",
            "raw": "",
        },
    )


def encode_switch(device: Device, on: bool) -> CloudCommand:
    """Build the write command turning one switch gang on or off.

    Raises:
        DeviceTypeMismatchError: device is not a switch
        CommandEncodeError: gang index cannot be encoded

    """
    if device.type is not DeviceType.SWITCH:
        msg = f"Device with id {device.id} is not a switch"
        raise DeviceTypeMismatchError(msg)
    data = switch_data_byte(device.index, on)
    value = f"{SWITCH_OPCODE}{reverse_mac(device.mac_address)}{SWITCH_DATA_FIELD}{data:02X}{SWITCH_TRAILER}"
    return _write_command(device, value)


def encode_dimming(device: Device, brightness: int) -> CloudCommand:
    """Build the write command setting a dimmer's level (0-100).

    Raises:
        DeviceTypeMismatchError: device is not a dimmer
        CommandEncodeError: brightness out of range

    """
    if device.type is not DeviceType.DIMMING:
        msg = f"Device with id {device.id} is not a dimmer"
        raise DeviceTypeMismatchError(msg)
    level = dimming_data_byte(brightness)
    value = f"{DIMMING_OPCODE}{reverse_mac(device.mac_address)}{DIMMING_DATA_FIELD}{level:02X}{DIMMING_TRAILER}"
    return _write_command(device, value)
