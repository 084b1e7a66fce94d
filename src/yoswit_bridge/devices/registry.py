"""Device registry built from the cloud ``afterLogin`` snapshot.

The snapshot describes modules (one BLE MAC each) in three places:

* ``profile.profile_device[]`` maps a module to the gateway it reports through
* ``device`` maps a module to its BLE MAC address
* ``profile.profile_subdevice[]`` lists the logical channels (gangs, dimmers)

Records that are incomplete are skipped one at a time with a warning; only a
snapshot whose overall shape is wrong raises.
"""

from __future__ import annotations

import re
from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from typing import Any, cast

from yoswit_bridge.exceptions import SnapshotFormatError, UnknownDeviceError
from yoswit_bridge.logging_abstraction import get_logger
from yoswit_bridge.structs import Device, DeviceType
from yoswit_bridge.utils import normalize_mac, strip_locale_markup

logger = get_logger(__name__)

SWITCH_GROUP_PREFIX = "ONOFF GANG"
DIMMING_GROUP_PREFIX = "DIMMING"
# Titles of a dimmer's internal relay channels
INTERNAL_RELAY_MARKERS = ("V1", "V2")

_GANG_INDEX_RE = re.compile(r"(\d+)\s*$")


@dataclass
class ModuleInfo:
    gateway_id: str | None = None
    mac_address: str | None = None


def _as_list(value: object, section: str) -> list[Any]:
    if value is None:
        return []
    if isinstance(value, list):
        return cast("list[Any]", value)
    msg = f"Snapshot section '{section}' must be a list, got {type(value).__name__}"
    raise SnapshotFormatError(msg)


def _device_records(value: object) -> list[Any]:
    # The cloud returns ``device`` as an object keyed by module id; accept a list too
    if value is None:
        return []
    if isinstance(value, Mapping):
        return list(cast("Mapping[str, Any]", value).values())
    if isinstance(value, list):
        return cast("list[Any]", value)
    msg = f"Snapshot section 'device' must be a mapping or list, got {type(value).__name__}"
    raise SnapshotFormatError(msg)


def build_module_info(profile_devices: list[Any], device_records: list[Any]) -> dict[str, ModuleInfo]:
    """Join gateway associations and MAC records by module id."""
    lp = "registry:module_info:"
    modules: dict[str, ModuleInfo] = {}

    for record in profile_devices:
        if not isinstance(record, Mapping) or not record.get("device") or not record.get("gateway"):
            logger.warning("%s Invalid profile device data: %s", lp, record)
            continue
        modules[str(record["device"])] = ModuleInfo(gateway_id=str(record["gateway"]))

    for record in device_records:
        if not isinstance(record, Mapping) or not record.get("name") or not record.get("mac_address"):
            logger.warning("%s Invalid device data: %s", lp, record)
            continue
        module_id = str(record["name"])
        info = modules.get(module_id)
        if info is None or not info.gateway_id:
            logger.warning("%s No gateway info for device %s", lp, module_id)
            continue
        info.mac_address = normalize_mac(str(record["mac_address"]))

    return modules


def classify_subdevice(record: Mapping[str, Any]) -> tuple[DeviceType, int] | None:
    """Return ``(type, index)`` for a subdevice, or None when it is not exposed."""
    lp = "registry:classify:"
    group = record.get("device_button_group")
    if not isinstance(group, str) or not group:
        logger.warning("%s Unsupported device button group: %s", lp, group)
        return None

    if group.startswith(SWITCH_GROUP_PREFIX):
        match = _GANG_INDEX_RE.search(group[len(SWITCH_GROUP_PREFIX) :])
        if match is None:
            logger.warning("%s Invalid device button group format: %s", lp, group)
            return None
        index = int(match.group(1))
        if index < 1:
            logger.warning("%s Invalid gang index in device button group: %s", lp, group)
            return None
        title = record.get("title")
        # Matches on the title only, so a real switch titled e.g. "V1 lamp" is excluded too
        if isinstance(title, str) and any(marker in title for marker in INTERNAL_RELAY_MARKERS):
            logger.debug("%s Skipping internal relay channel '%s' (%s)", lp, title, group)
            return None
        return DeviceType.SWITCH, index

    if group.startswith(DIMMING_GROUP_PREFIX):
        return DeviceType.DIMMING, 0

    logger.warning("%s Unsupported device button group: %s", lp, group)
    return None


class DeviceRegistry:
    """Read-only table of devices, indexed by id and by MAC address."""

    lp: str = "registry:"

    def __init__(self, devices: list[Device] | None = None) -> None:
        self._devices: dict[str, Device] = {}
        self._by_mac: dict[str, list[Device]] = {}
        for device in devices or []:
            self._add(device)

    def _add(self, device: Device) -> bool:
        if device.id in self._devices:
            logger.warning("%s Duplicate device id: %s", self.lp, device.id)
            return False
        self._devices[device.id] = device
        self._by_mac.setdefault(device.mac_address, []).append(device)
        return True

    @classmethod
    def from_snapshot(cls, snapshot: object) -> DeviceRegistry:
        """Build the registry from the cloud ``afterLogin`` response.

        Raises:
            SnapshotFormatError: the snapshot is not shaped like an afterLogin response

        """
        lp = f"{cls.lp}from_snapshot:"
        if not isinstance(snapshot, Mapping):
            msg = f"Snapshot must be a mapping, got {type(snapshot).__name__}"
            raise SnapshotFormatError(msg)
        profile = snapshot.get("profile")
        if not isinstance(profile, Mapping):
            msg = "Snapshot has no 'profile' object"
            raise SnapshotFormatError(msg)

        modules = build_module_info(
            _as_list(profile.get("profile_device"), "profile.profile_device"),
            _device_records(snapshot.get("device")),
        )
        registry = cls()

        for record in _as_list(profile.get("profile_subdevice"), "profile.profile_subdevice"):
            if not isinstance(record, Mapping):
                logger.warning("%s Invalid profile subdevice data: %s", lp, record)
                continue
            classified = classify_subdevice(record)
            if classified is None:
                continue
            device_type, index = classified

            guid = record.get("device")
            if not guid:
                logger.warning("%s Invalid profile subdevice data: %s", lp, record)
                continue
            guid = str(guid)

            info = modules.get(guid)
            if info is None or not info.mac_address or not info.gateway_id:
                logger.warning("%s Missing device info for %s: %s", lp, guid, info)
                continue

            room_name = record.get("room_name")
            if isinstance(room_name, str):
                room_name = strip_locale_markup(room_name) or None
            else:
                room_name = None
            title = record.get("title")

            _ = registry._add(
                Device(
                    id=f"{guid}-{index}",
                    guid=guid,
                    type=device_type,
                    index=index,
                    mac_address=info.mac_address,
                    gateway_id=info.gateway_id,
                    name=str(title) if title else None,
                    room_name=room_name,
                ),
            )

        logger.info("%s Loaded %d devices", lp, len(registry))
        return registry

    def get(self, device_id: str) -> Device | None:
        return self._devices.get(device_id)

    def require(self, device_id: str) -> Device:
        """Return the device or raise :class:`UnknownDeviceError`."""
        device = self._devices.get(device_id)
        if device is None:
            raise UnknownDeviceError(device_id)
        return device

    def get_by_mac_address(self, mac_address: str) -> list[Device]:
        """All devices on the module with this MAC (one per gang)."""
        return list(self._by_mac.get(normalize_mac(mac_address), ()))

    @property
    def mac_addresses(self) -> list[str]:
        return list(self._by_mac)

    def __iter__(self) -> Iterator[Device]:
        return iter(self._devices.values())

    def __len__(self) -> int:
        return len(self._devices)

    def __contains__(self, device_id: object) -> bool:
        return device_id in self._devices
