"""Exception hierarchy for the bridge.

Per-record and per-message failures raise one of these and are caught at
the event handler that triggered them, so a single bad frame or command
never stops the bridge.
"""

from __future__ import annotations


class BridgeError(Exception):
    """Base exception for all bridge errors."""


class SnapshotFormatError(BridgeError):
    """The cloud snapshot does not have the expected overall shape."""


class PayloadDecodeError(BridgeError):
    """A BLE relay payload cannot be decoded.

    Attributes:
        reason: Short failure reason (e.g. "tail_too_short", "invalid_hex")
        payload: The offending payload fragment

    """

    def __init__(self, reason: str, payload: str = ""):
        self.reason = reason
        self.payload = payload
        super().__init__(f"BLE payload decode failed: {reason} ({payload!r})")


class CommandEncodeError(BridgeError):
    """A hub command cannot be turned into a cloud write command."""


class UnknownDeviceError(CommandEncodeError):
    """No device with the requested id exists in the registry."""

    def __init__(self, device_id: str):
        self.device_id = device_id
        super().__init__(f"Device with id {device_id} not found")


class DeviceTypeMismatchError(CommandEncodeError):
    """The command does not apply to the device's type."""


class CloudAPIError(BridgeError):
    """The cloud HTTP API returned an error or an unexpected response."""


class CloudAuthenticationError(CloudAPIError):
    """Login failed or the session cookie is missing."""


class CloudPublishError(BridgeError):
    """Publishing a command to the cloud MQTT broker failed."""
