"""Publisher for write commands sent to the Yoswit cloud MQTT broker.

The cloud expects every command wrapped in a checksummed envelope::

    {"id": <21 char id>, "data": {...command, "user_id", "from", "date"}, "checksum": <md5>}

where ``checksum = md5(id + compact_json(data) + date + user_id + from)``.
"""

from __future__ import annotations

import asyncio
import datetime
import json
from collections.abc import Mapping

import aiomqtt

from yoswit_bridge.const import YOSWIT_CLOUD_MQTT_CONN_DELAY
from yoswit_bridge.exceptions import CloudPublishError
from yoswit_bridge.logging_abstraction import get_logger
from yoswit_bridge.structs import CloudMqttSettings
from yoswit_bridge.utils import local_timestamp, md5_hex, random_id

logger = get_logger(__name__)

CLIENT_ID_PREFIX = "mobmob-"
CLOUD_QOS = 0


def _compact_json(data: Mapping[str, object]) -> str:
    return json.dumps(data, separators=(",", ":"), ensure_ascii=False)


def build_envelope(
    command: Mapping[str, object],
    *,
    message_id: str | None = None,
    now: datetime.datetime | None = None,
) -> dict[str, object]:
    """Wrap ``command`` in the cloud's ``{id, data, checksum}`` envelope."""
    message_id = message_id or random_id()
    data: dict[str, object] = dict(command)
    user_id = str(data.get("user_id") or "")
    sender = str(data.get("from") or "")
    data["user_id"] = user_id
    data["from"] = sender
    date = local_timestamp(now)
    data["date"] = date
    checksum = md5_hex(message_id + _compact_json(data) + date + user_id + sender)
    return {"id": message_id, "data": data, "checksum": checksum}


class CloudMQTTClient:
    """Connection to the cloud broker, kept alive by :meth:`start`."""

    lp: str = "cloud_mqtt:"

    def __init__(self, settings: CloudMqttSettings, conn_delay: int = YOSWIT_CLOUD_MQTT_CONN_DELAY) -> None:
        self.settings: CloudMqttSettings = settings
        self.conn_delay: int = conn_delay
        self.client_id: str = f"{CLIENT_ID_PREFIX}{random_id()}"
        self.client: aiomqtt.Client | None = None
        self._connected: bool = False

    @property
    def is_connected(self) -> bool:
        return self._connected

    def _get_connection_delay(self, lp: str) -> int:
        if self.conn_delay <= 0:
            logger.debug("%s Connection delay is %s, using 5 seconds", lp, self.conn_delay)
            return 5
        return self.conn_delay

    async def connect(self) -> bool:
        lp = f"{self.lp}connect:"
        self._connected = False
        logger.info("%s Connecting to cloud MQTT broker at %s:%s", lp, self.settings.host, self.settings.port)
        logger.debug("%s Client ID: %s", lp, self.client_id)
        self.client = aiomqtt.Client(
            hostname=self.settings.host,
            port=self.settings.port,
            username=self.settings.username,
            password=self.settings.password,
            identifier=self.client_id,
            keepalive=self.settings.keepalive,
        )
        try:
            _ = await self.client.__aenter__()
        except aiomqtt.MqttError as exc:
            logger.error("%s Connection failed: %s", lp, exc)
            return False
        self._connected = True
        logger.info("%s Connected to cloud MQTT broker", lp)
        return True

    async def _watch_connection(self) -> None:
        """Block until the broker connection drops (raises MqttError)."""
        assert self.client is not None, "client must be initialized"
        # Nothing is subscribed; the iterator only returns by raising on disconnect
        async for _message in self.client.messages:
            pass

    async def start(self) -> None:
        """Connect and stay connected, reconnecting after a delay whenever the link drops."""
        lp = f"{self.lp}start:"
        itr = 0
        try:
            while True:
                itr += 1
                if itr > 1:
                    logger.info("%s Reconnecting to cloud MQTT broker...", lp)
                if await self.connect():
                    try:
                        await self._watch_connection()
                    except aiomqtt.MqttError as exc:
                        logger.warning("%s Cloud MQTT connection closed: %s", lp, exc)
                    self._connected = False
                delay = self._get_connection_delay(lp)
                logger.info("%s Sleeping %s seconds before re-connecting...", lp, delay)
                await asyncio.sleep(delay)
        except asyncio.CancelledError:
            self._connected = False
            raise

    async def publish_command(self, topic: str, command: Mapping[str, object]) -> None:
        """Publish one command to ``topic`` (QoS 0, not retained).

        Raises:
            CloudPublishError: not connected, or the broker rejected the publish

        """
        lp = f"{self.lp}publish_command:"
        if not self._connected or self.client is None:
            msg = f"Not connected to cloud MQTT broker, dropping command for {topic}"
            raise CloudPublishError(msg)
        envelope = build_envelope(command)
        logger.debug("%s Publishing to topic %s", lp, topic, extra={"message_id": envelope["id"]})
        try:
            await self.client.publish(topic, _compact_json(envelope).encode(), qos=CLOUD_QOS, retain=False)
        except aiomqtt.MqttError as exc:
            msg = f"Failed to publish to {topic}: {exc}"
            raise CloudPublishError(msg) from exc
        logger.debug("%s Successfully published to %s", lp, topic)

    async def stop(self) -> None:
        lp = f"{self.lp}stop:"
        if self.client is None or not self._connected:
            self._connected = False
            return
        try:
            logger.debug("%s Disconnecting from cloud broker...", lp)
            await self.client.__aexit__(None, None, None)
        except aiomqtt.MqttError as exc:
            logger.warning("%s Disconnect failed: %s", lp, exc)
        else:
            logger.info("%s Disconnected from cloud MQTT broker", lp)
        finally:
            self._connected = False
