"""Translation between the homebridge-mqtt namespace and the Yoswit BLE/cloud side.

Broker events arrive on one queue and are handled by a single dispatcher
coroutine, so the replay cache is only ever touched from one task. Hub
publishes go through an ordered outbound queue drained by one sender task;
hub commands run as their own tasks so a slow cloud publish never holds up
status traffic.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Mapping
from typing import Protocol, assert_never

from pydantic import ValidationError

from yoswit_bridge.cache import ReplayCache
from yoswit_bridge.const import YOSWIT_CLOUD_PUBLISH_TIMEOUT
from yoswit_bridge.correlation import correlation_context
from yoswit_bridge.devices import DeviceRegistry
from yoswit_bridge.exceptions import (
    CloudPublishError,
    CommandEncodeError,
    DeviceTypeMismatchError,
    PayloadDecodeError,
)
from yoswit_bridge.logging_abstraction import get_logger
from yoswit_bridge.mqtt import hub
from yoswit_bridge.protocol.ble_status import decode_status, dimming_level, split_relay_payload
from yoswit_bridge.protocol.commands import CloudCommand, encode_dimming, encode_switch
from yoswit_bridge.structs import (
    BrokerEvent,
    Characteristic,
    ClientConnected,
    ClientSubscribed,
    Device,
    DeviceType,
    HubSetCommand,
    MessagePublished,
)

logger = get_logger(__name__)

DEFAULT_ON_BRIGHTNESS = 100
DRAIN_TIMEOUT = 5.0


class HubPublisher(Protocol):
    async def publish(self, topic: str, payload: bytes, qos: int = 1) -> None: ...


class CommandPublisher(Protocol):
    async def publish_command(self, topic: str, command: Mapping[str, object]) -> None: ...


class BridgeBroker:
    """Routes broker events to the decoder, encoder and replay cache."""

    lp: str = "bridge:"

    def __init__(
        self,
        registry: DeviceRegistry,
        cloud: CommandPublisher,
        hub_publisher: HubPublisher,
        *,
        events: asyncio.Queue[BrokerEvent],
        topic_prefix: str,
        ble_topic: str,
        cache: ReplayCache | None = None,
        cloud_publish_timeout: float = YOSWIT_CLOUD_PUBLISH_TIMEOUT,
    ) -> None:
        self.registry: DeviceRegistry = registry
        self.cloud: CommandPublisher = cloud
        self.hub: HubPublisher = hub_publisher
        self.events: asyncio.Queue[BrokerEvent] = events
        self.topic_prefix: str = topic_prefix
        self.ble_topic: str = ble_topic
        self.cache: ReplayCache = cache if cache is not None else ReplayCache()
        self.cloud_publish_timeout: float = cloud_publish_timeout

        self._outbound: asyncio.Queue[tuple[str, bytes]] = asyncio.Queue()
        self._command_tasks: set[asyncio.Task[None]] = set()
        self._dispatcher_task: asyncio.Task[None] | None = None
        self._sender_task: asyncio.Task[None] | None = None

    async def start(self) -> None:
        """Start the outbound sender and the event dispatcher."""
        self._sender_task = asyncio.create_task(self._send_outbound(), name="bridge-sender")
        self._dispatcher_task = asyncio.create_task(self.run(), name="bridge-dispatcher")

    async def run(self) -> None:
        """Consume broker events forever, one at a time."""
        lp = f"{self.lp}run:"
        logger.debug("%s Waiting for broker events...", lp)
        while True:
            event = await self.events.get()
            try:
                await self.handle_event(event)
            except Exception:
                logger.exception("%s Unhandled error while processing %s", lp, event)
            finally:
                self.events.task_done()

    async def handle_event(self, event: BrokerEvent) -> None:
        with correlation_context():
            match event:
                case ClientConnected():
                    self.on_client_connected(event)
                case ClientSubscribed():
                    self.on_client_subscribed(event)
                case MessagePublished():
                    self.on_message(event)
                case _:
                    assert_never(event)

    def on_client_connected(self, event: ClientConnected) -> None:
        logger.info("%s Client Connected: %s", self.lp, event.client_id)

    def on_client_subscribed(self, event: ClientSubscribed) -> None:
        """Announce every device and replay cached status when the hub subscribes to its namespace."""
        lp = f"{self.lp}subscribe:"
        logger.info("%s Client %s subscribed to topic: %s", lp, event.client_id, event.topic)
        if event.topic != hub.subscribe_all_topic(self.topic_prefix):
            return

        add_topic = hub.add_topic(self.topic_prefix)
        for device in self.registry:
            self._enqueue(add_topic, hub.discovery_payload(device))
        logger.info("%s Queued discovery for %d devices", lp, len(self.registry))

        logger.info("%s Replaying cached BLE device data for client %s", lp, event.client_id)
        for mac_address, tail in self.cache.items():
            self.publish_status(mac_address, tail)

    def on_message(self, event: MessagePublished) -> None:
        lp = f"{self.lp}message:"
        logger.debug(
            "%s Message from client %s: Topic=%s Payload=%r",
            lp,
            event.client_id,
            event.topic,
            event.payload,
        )
        if event.topic == hub.command_topic(self.topic_prefix):
            self._spawn_command(event.payload)
        elif event.topic == self.ble_topic:
            self.handle_ble_payload(event.payload)

    def handle_ble_payload(self, payload: bytes | str) -> None:
        """Cache a relay frame, then publish the status it carries."""
        lp = f"{self.lp}ble:"
        try:
            text = payload.decode() if isinstance(payload, bytes) else payload
            mac_address, tail = split_relay_payload(text)
        except (UnicodeDecodeError, PayloadDecodeError) as exc:
            logger.warning("%s Ignoring malformed relay frame: %s", lp, exc)
            return

        self.cache.update(mac_address, tail)
        logger.debug("%s Cached BLE device data: MAC=%s, Data=%s", lp, mac_address, tail)
        self.publish_status(mac_address, tail)

    def publish_status(self, mac_address: str, tail: str) -> None:
        """Decode ``tail`` for every device on the module and queue one hub update per characteristic."""
        lp = f"{self.lp}status:"
        devices = self.registry.get_by_mac_address(mac_address)
        if not devices:
            logger.warning("%s No known devices for MAC %s", lp, mac_address)
            return

        set_topic = hub.set_topic(self.topic_prefix)
        for device in devices:
            try:
                updates = decode_status(device, tail)
            except PayloadDecodeError as exc:
                logger.warning("%s Cannot decode status for device %s: %s", lp, device.id, exc)
                continue
            for update in updates:
                self._enqueue(set_topic, hub.status_payload(update))
                logger.debug(
                    "%s Queued status update",
                    lp,
                    extra={"device": device.id, "characteristic": update.characteristic, "value": update.value},
                )

    def _enqueue(self, topic: str, payload: bytes) -> None:
        self._outbound.put_nowait((topic, payload))

    async def _send_outbound(self) -> None:
        lp = f"{self.lp}sender:"
        while True:
            topic, payload = await self._outbound.get()
            try:
                await self.hub.publish(topic, payload, qos=hub.HUB_QOS)
            except asyncio.CancelledError:
                raise
            except Exception as exc:  # noqa: BLE001
                logger.error("%s Failed to publish to %s: %s", lp, topic, exc)
            else:
                logger.debug("%s Published to %s", lp, topic)
            finally:
                self._outbound.task_done()

    def _spawn_command(self, payload: bytes) -> None:
        task = asyncio.create_task(self.handle_hub_command(payload))
        self._command_tasks.add(task)
        task.add_done_callback(self._command_tasks.discard)

    async def handle_hub_command(self, payload: bytes | str) -> None:
        """Turn a homebridge ``set`` into a cloud write command; failures are logged, never raised."""
        lp = f"{self.lp}command:"
        try:
            command = HubSetCommand.model_validate_json(payload)
        except ValidationError as exc:
            logger.warning("%s Invalid hub command %r: %s", lp, payload, exc.errors(include_url=False))
            return

        logger.info(
            "%s Setting device %s %s to value: %s",
            lp,
            command.name,
            command.characteristic,
            command.value,
        )
        try:
            cloud_command = self.encode_hub_command(command)
            async with asyncio.timeout(self.cloud_publish_timeout):
                await self.cloud.publish_command(cloud_command.topic, cloud_command.data)
        except CommandEncodeError as exc:
            logger.warning("%s Failed to switch device %s: %s", lp, command.name, exc)
        except CloudPublishError as exc:
            logger.error("%s Failed to switch device %s: %s", lp, command.name, exc)
        except TimeoutError:
            logger.error(
                "%s Cloud publish for device %s timed out after %ss",
                lp,
                command.name,
                self.cloud_publish_timeout,
            )
        else:
            logger.info("%s Sent command for device %s to %s", lp, command.name, cloud_command.topic)

    def encode_hub_command(self, command: HubSetCommand) -> CloudCommand:
        """Resolve the target device and encode the write for the requested characteristic.

        Raises:
            UnknownDeviceError: no device with that id
            DeviceTypeMismatchError: characteristic not supported by the device type
            CommandEncodeError: unknown characteristic or value out of range

        """
        device = self.registry.require(command.name)
        match command.characteristic:
            case Characteristic.ON:
                return self._encode_on(device, bool(command.value))
            case Characteristic.BRIGHTNESS:
                if device.type is not DeviceType.DIMMING:
                    msg = f"Device with id {device.id} does not support {Characteristic.BRIGHTNESS}"
                    raise DeviceTypeMismatchError(msg)
                return encode_dimming(device, round(command.value))
            case _:
                msg = f"Unknown characteristic: {command.characteristic}"
                raise CommandEncodeError(msg)

    def _encode_on(self, device: Device, on: bool) -> CloudCommand:
        match device.type:
            case DeviceType.SWITCH:
                return encode_switch(device, on)
            case DeviceType.DIMMING:
                return encode_dimming(device, self._dimmer_on_level(device) if on else 0)
            case _:
                assert_never(device.type)

    def _dimmer_on_level(self, device: Device) -> int:
        """Last reported brightness for the dimmer, or full brightness when unknown or off."""
        tail = self.cache.get(device.mac_address)
        if tail is None:
            return DEFAULT_ON_BRIGHTNESS
        try:
            level = dimming_level(tail)
        except PayloadDecodeError:
            return DEFAULT_ON_BRIGHTNESS
        return level or DEFAULT_ON_BRIGHTNESS

    async def drain(self) -> None:
        """Wait for in-flight hub commands and every queued hub publish."""
        if self._command_tasks:
            _ = await asyncio.gather(*list(self._command_tasks), return_exceptions=True)
        await self._outbound.join()

    async def stop(self) -> None:
        lp = f"{self.lp}stop:"
        if self._dispatcher_task is not None:
            _ = self._dispatcher_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._dispatcher_task
            self._dispatcher_task = None

        for task in list(self._command_tasks):
            _ = task.cancel()
        if self._command_tasks:
            _ = await asyncio.gather(*list(self._command_tasks), return_exceptions=True)

        if self._sender_task is not None:
            try:
                async with asyncio.timeout(DRAIN_TIMEOUT):
                    await self._outbound.join()
            except TimeoutError:
                logger.warning("%s Dropping %d unsent hub messages", lp, self._outbound.qsize())
            _ = self._sender_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._sender_task
            self._sender_task = None
        logger.info("%s Bridge stopped", lp)
