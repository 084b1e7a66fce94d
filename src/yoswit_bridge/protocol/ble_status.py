"""Decoder for status frames forwarded by the BLE relay.

A relay frame is the module's MAC address (17 chars, ``aa:bb:cc:dd:ee:ff``)
followed by the hex-encoded advertisement tail::

    aa:bb:cc:dd:ee:ff 0201 7F ... 400 5
                      ^    ^^     ^^^ ^
                      |    |      |   status nibble (switch gangs)
                      |    |      type code
                      |    brightness byte (dimmers, tail[4:6])
                      tail[0]

All functions here are pure; they never touch the registry or the cache.
"""

from __future__ import annotations

from typing import assert_never

from yoswit_bridge.const import RELAY_MAC_LENGTH, SUPPORTED_TYPE_CODES
from yoswit_bridge.exceptions import PayloadDecodeError
from yoswit_bridge.logging_abstraction import get_logger
from yoswit_bridge.structs import Characteristic, CharacteristicUpdate, Device, DeviceType
from yoswit_bridge.utils import normalize_mac

logger = get_logger(__name__)

DIMMING_BYTE_START = 4
DIMMING_BYTE_END = 6


def split_relay_payload(payload: str) -> tuple[str, str]:
    """Split a relay frame into ``(mac_address, tail)``.

    Raises:
        PayloadDecodeError: frame is shorter than a MAC address

    """
    if len(payload) < RELAY_MAC_LENGTH:
        reason = "too_short"
        raise PayloadDecodeError(reason, payload)
    return normalize_mac(payload[:RELAY_MAC_LENGTH]), payload[RELAY_MAC_LENGTH:].strip()


def type_code(tail: str) -> str:
    """The 3-char device family code preceding the status nibble."""
    return tail[-4:-1]


def switch_states(tail: str) -> list[bool]:
    """Per-gang on/off states, index 0 is gang 1.

    Example:
        >>> switch_states("4001")  # nibble 0001 -> drop MSB -> 001 -> reversed
        [True, False, False]

    """
    nibble = tail[-1:]
    try:
        status = int(nibble, 16)
    except ValueError as exc:
        reason = "invalid_status_nibble"
        raise PayloadDecodeError(reason, tail) from exc
    bits = f"{status:04b}"[1:]
    return [bit == "1" for bit in reversed(bits)]


def dimming_level(tail: str) -> int:
    """Brightness byte scaled to 0-100.

    Raises:
        PayloadDecodeError: tail too short or brightness byte not hex

    """
    if len(tail) < DIMMING_BYTE_END:
        reason = "tail_too_short"
        raise PayloadDecodeError(reason, tail)
    raw = tail[DIMMING_BYTE_START:DIMMING_BYTE_END]
    try:
        value = int(raw, 16)
    except ValueError as exc:
        reason = "invalid_brightness_byte"
        raise PayloadDecodeError(reason, tail) from exc
    return round((value / 255) * 100)


def decode_switch(device: Device, tail: str) -> list[CharacteristicUpdate]:
    states = switch_states(tail)
    position = device.index - 1
    if not 0 <= position < len(states):
        logger.warning(
            "ble_status: No status found for device index %s (MAC: %s)",
            device.index,
            device.mac_address,
        )
        return []
    return [CharacteristicUpdate(device, Characteristic.ON, states[position])]


def decode_dimming(device: Device, tail: str) -> list[CharacteristicUpdate]:
    brightness = dimming_level(tail)
    return [
        CharacteristicUpdate(device, Characteristic.BRIGHTNESS, brightness),
        CharacteristicUpdate(device, Characteristic.ON, brightness > 0),
    ]


def decode_status(device: Device, tail: str) -> list[CharacteristicUpdate]:
    """Characteristic updates for one device from its module's status tail.

    Frames from unsupported device families decode to no updates.

    Raises:
        PayloadDecodeError: the tail is malformed for this device type

    """
    code = type_code(tail)
    if code not in SUPPORTED_TYPE_CODES:
        logger.debug("ble_status: Unsupported device type %r, ignoring", code)
        return []

    match device.type:
        case DeviceType.SWITCH:
            return decode_switch(device, tail)
        case DeviceType.DIMMING:
            return decode_dimming(device, tail)
        case _:
            assert_never(device.type)
