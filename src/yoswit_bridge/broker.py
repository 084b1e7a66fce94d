"""Embedded MQTT broker (amqtt) that the relay and homebridge-mqtt connect to.

Broker hooks run inside amqtt's own tasks, so :class:`BridgeEventPlugin`
only converts them to :data:`BrokerEvent` values and enqueues them; all
handling happens in the bridge dispatcher.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any, cast

from amqtt.broker import Broker
from amqtt.plugins.base import BasePlugin

from yoswit_bridge.exceptions import BridgeError
from yoswit_bridge.logging_abstraction import get_logger
from yoswit_bridge.structs import BrokerEvent, ClientConnected, ClientSubscribed, MessagePublished

logger = get_logger(__name__)

ANONYMOUS_AUTH_PLUGIN = "amqtt.plugins.authentication.AnonymousAuthPlugin"
BRIDGE_EVENT_PLUGIN = f"{__name__}.BridgeEventPlugin"


def _plugin_option(config: object, name: str) -> Any:
    if config is None:
        return None
    if isinstance(config, Mapping):
        return cast("Mapping[str, Any]", config).get(name)
    return getattr(config, name, None)


class BridgeEventPlugin(BasePlugin):  # pyright: ignore[reportMissingTypeArgument]
    """Forwards client connects, subscriptions and publishes to the bridge."""

    @dataclass
    class Config:
        emit: Any = None
        attach: Any = None

    def __init__(self, context: Any) -> None:
        super().__init__(context)
        config = getattr(context, "config", None)
        self._emit: Callable[[BrokerEvent], None] | None = _plugin_option(config, "emit")
        attach = _plugin_option(config, "attach")
        if attach is not None:
            attach(self)

    def _put(self, event: BrokerEvent) -> None:
        if self._emit is None:
            logger.warning("broker:plugin: No event sink configured, dropping %s", event)
            return
        self._emit(event)

    async def on_broker_client_connected(self, *, client_id: str, **_kwargs: Any) -> None:
        self._put(ClientConnected(client_id=client_id))

    async def on_broker_client_subscribed(self, *, client_id: str, topic: str, qos: int = 0, **_kwargs: Any) -> None:
        self._put(ClientSubscribed(client_id=client_id, topic=topic, qos=qos or 0))

    async def on_broker_message_received(self, *, client_id: str, message: Any, **_kwargs: Any) -> None:
        data = message.data
        payload = bytes(data) if data is not None else b""
        self._put(MessagePublished(client_id=client_id, topic=message.topic, payload=payload))

    async def broadcast(self, topic: str, payload: bytes, qos: int) -> None:
        await self.context.broadcast_message(topic, payload, qos)


def broker_config(
    host: str,
    port: int,
    emit: Callable[[BrokerEvent], None],
    attach: Callable[[BridgeEventPlugin], None],
) -> dict[str, Any]:
    return {
        "listeners": {
            "default": {"type": "tcp", "bind": f"{host}:{port}"},
        },
        "plugins": {
            ANONYMOUS_AUTH_PLUGIN: {"allow_anonymous": True},
            BRIDGE_EVENT_PLUGIN: {"emit": emit, "attach": attach},
        },
    }


class EmbeddedBroker:
    """Owns the amqtt broker; satisfies the bridge's hub publisher interface."""

    lp: str = "broker:"

    def __init__(self, host: str, port: int, events: asyncio.Queue[BrokerEvent]) -> None:
        self.host: str = host
        self.port: int = port
        self.events: asyncio.Queue[BrokerEvent] = events
        self._plugin: BridgeEventPlugin | None = None
        self._broker: Broker | None = None

    async def start(self) -> None:
        lp = f"{self.lp}start:"
        # Plain closures survive amqtt copying the plugin config
        events = self.events

        def emit(event: BrokerEvent) -> None:
            events.put_nowait(event)

        def attach(plugin: BridgeEventPlugin) -> None:
            self._plugin = plugin

        try:
            self._broker = Broker(config=broker_config(self.host, self.port, emit, attach))
            await self._broker.start()
        except Exception as exc:
            msg = f"Failed to start MQTT broker on {self.host}:{self.port}: {exc}"
            raise BridgeError(msg) from exc
        logger.info("%s Server started and listening on %s:%s", lp, self.host, self.port)

    async def publish(self, topic: str, payload: bytes, qos: int = 1) -> None:
        """Deliver a message to subscribed clients without raising a broker event for it."""
        if self._plugin is None:
            msg = "Embedded broker is not running"
            raise BridgeError(msg)
        await self._plugin.broadcast(topic, payload, qos)

    async def shutdown(self) -> None:
        lp = f"{self.lp}shutdown:"
        if self._broker is None:
            return
        try:
            await self._broker.shutdown()
        except Exception as exc:  # noqa: BLE001
            logger.warning("%s Broker shutdown failed: %s", lp, exc)
        else:
            logger.info("%s Broker stopped", lp)
        finally:
            self._broker = None
            self._plugin = None
