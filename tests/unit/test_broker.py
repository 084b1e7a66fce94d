"""
Unit tests for the embedded broker wrapper and its event plugin.
"""

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from yoswit_bridge.broker import BRIDGE_EVENT_PLUGIN, BridgeEventPlugin, EmbeddedBroker, broker_config
from yoswit_bridge.exceptions import BridgeError
from yoswit_bridge.structs import ClientConnected, ClientSubscribed, MessagePublished


def _plugin(config):
    context = SimpleNamespace(config=config, broadcast_message=AsyncMock())
    return BridgeEventPlugin(context)


class TestBridgeEventPlugin:
    """Tests for converting broker hooks into bridge events"""

    @pytest.mark.asyncio
    async def test_hooks_emit_events(self):
        events = []
        plugin = _plugin({"emit": events.append})

        await plugin.on_broker_client_connected(client_id="hb", client_session=MagicMock())
        await plugin.on_broker_client_subscribed(client_id="hb", topic="homebridge/to/#", qos=1)
        message = SimpleNamespace(topic="yoswit/ble/devices", data=bytearray(b"aa:bb:cc:dd:ee:01abcd4001"))
        await plugin.on_broker_message_received(client_id="relay", message=message)

        assert events == [
            ClientConnected("hb"),
            ClientSubscribed("hb", "homebridge/to/#", 1),
            MessagePublished("relay", "yoswit/ble/devices", b"aa:bb:cc:dd:ee:01abcd4001"),
        ]

    @pytest.mark.asyncio
    async def test_dataclass_config(self):
        events = []
        plugin = _plugin(BridgeEventPlugin.Config(emit=events.append))

        await plugin.on_broker_client_subscribed(client_id="hb", topic="homebridge/to/#", qos=None)

        assert events == [ClientSubscribed("hb", "homebridge/to/#", 0)]

    @pytest.mark.asyncio
    async def test_without_sink_drops_events(self, caplog):
        plugin = _plugin({})

        await plugin.on_broker_client_connected(client_id="hb")

        assert "No event sink configured" in caplog.text

    def test_attach_callback_receives_plugin(self):
        attached = []
        plugin = _plugin({"attach": attached.append})

        assert attached == [plugin]

    @pytest.mark.asyncio
    async def test_broadcast_uses_broker_context(self):
        plugin = _plugin({})

        await plugin.broadcast("homebridge/to/set", b"{}", 1)

        plugin.context.broadcast_message.assert_awaited_once_with("homebridge/to/set", b"{}", 1)


class TestBrokerConfig:
    def test_listener_and_plugins(self):
        config = broker_config("127.0.0.1", 1884, MagicMock(), MagicMock())

        assert config["listeners"]["default"] == {"type": "tcp", "bind": "127.0.0.1:1884"}
        assert config["plugins"]["amqtt.plugins.authentication.AnonymousAuthPlugin"] == {"allow_anonymous": True}
        assert BRIDGE_EVENT_PLUGIN == "yoswit_bridge.broker.BridgeEventPlugin"
        assert set(config["plugins"][BRIDGE_EVENT_PLUGIN]) == {"emit", "attach"}


class TestEmbeddedBroker:
    """Tests for broker lifecycle and publishing"""

    @pytest.mark.asyncio
    async def test_start_wires_plugin_to_queue(self):
        events = asyncio.Queue()
        broker = EmbeddedBroker("127.0.0.1", 1884, events)

        with patch("yoswit_bridge.broker.Broker") as mock_broker_class:
            mock_broker_class.return_value.start = AsyncMock()
            await broker.start()

        config = mock_broker_class.call_args.kwargs["config"]
        plugin = _plugin(config["plugins"][BRIDGE_EVENT_PLUGIN])
        await plugin.on_broker_client_connected(client_id="hb")

        assert events.get_nowait() == ClientConnected("hb")

        await broker.publish("homebridge/to/add", b"{}", qos=1)
        plugin.context.broadcast_message.assert_awaited_once_with("homebridge/to/add", b"{}", 1)

    @pytest.mark.asyncio
    async def test_start_failure_raises_bridge_error(self):
        broker = EmbeddedBroker("127.0.0.1", 1884, asyncio.Queue())

        with patch("yoswit_bridge.broker.Broker") as mock_broker_class:
            mock_broker_class.return_value.start = AsyncMock(side_effect=OSError("address in use"))
            with pytest.raises(BridgeError, match="address in use"):
                await broker.start()

    @pytest.mark.asyncio
    async def test_publish_before_start(self):
        broker = EmbeddedBroker("127.0.0.1", 1884, asyncio.Queue())

        with pytest.raises(BridgeError, match="not running"):
            await broker.publish("homebridge/to/add", b"{}")

    @pytest.mark.asyncio
    async def test_shutdown(self):
        broker = EmbeddedBroker("127.0.0.1", 1884, asyncio.Queue())

        with patch("yoswit_bridge.broker.Broker") as mock_broker_class:
            amqtt_broker = mock_broker_class.return_value
            amqtt_broker.start = AsyncMock()
            amqtt_broker.shutdown = AsyncMock()
            await broker.start()
            await broker.shutdown()

        amqtt_broker.shutdown.assert_awaited_once()
        with pytest.raises(BridgeError):
            await broker.publish("homebridge/to/add", b"{}")
