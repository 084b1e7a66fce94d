from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from collections.abc import Sequence
from pathlib import Path

import dotenv
import uvloop
from pydantic import ValidationError

from yoswit_bridge.bridge import BridgeBroker
from yoswit_bridge.broker import EmbeddedBroker
from yoswit_bridge.cache import ReplayCache
from yoswit_bridge.cloud_api import YoswitCloudAPI, dump_snapshot
from yoswit_bridge.const import YOSWIT_DEBUG, YOSWIT_VERSION
from yoswit_bridge.correlation import correlation_context, ensure_correlation_id
from yoswit_bridge.devices import DeviceRegistry
from yoswit_bridge.exceptions import BridgeError
from yoswit_bridge.logging_abstraction import get_logger, set_debug
from yoswit_bridge.mqtt import CloudMQTTClient
from yoswit_bridge.structs import BridgeEnv, BrokerEvent

logger = get_logger(__name__)

CLOUD_MQTT_START_TASK_NAME = "cloud_mqtt_start"

# amqtt and its state machine library log every packet at INFO
for _noisy in ("amqtt", "transitions"):
    logging.getLogger(_noisy).setLevel(logging.WARNING)


class YoswitBridge:
    """Application wiring: cloud login, registry, cloud MQTT, embedded broker and bridge."""

    lp: str = "YoswitBridge:"

    def __init__(self, env: BridgeEnv, snapshot_dump_path: Path | None = None) -> None:
        self.env: BridgeEnv = env
        self.snapshot_dump_path: Path | None = snapshot_dump_path
        self.cloud_api: YoswitCloudAPI | None = None
        self.cloud_mqtt: CloudMQTTClient | None = None
        self.broker: EmbeddedBroker | None = None
        self.bridge: BridgeBroker | None = None
        self._cloud_mqtt_task: asyncio.Task[None] | None = None
        self._stop_event: asyncio.Event = asyncio.Event()

    def request_stop(self, signum: int | None = None) -> None:
        if signum is not None:
            logger.info("%s Intercepted signal: %s (%s)", self.lp, signal.Signals(signum).name, signum)
        self._stop_event.set()

    async def start(self) -> None:
        """Log in, build the registry and start every service.

        Raises:
            BridgeError: missing credentials, cloud login/API failure or unusable snapshot

        """
        lp = f"{self.lp}start:"
        env = self.env
        missing = env.missing_credentials
        if missing:
            msg = f"Missing environment variables: {', '.join(missing)}"
            raise BridgeError(msg)
        assert env.base_url and env.username and env.password and env.app_id

        logger.info("%s Starting application...", lp, extra={"base_url": env.base_url, "app_id": env.app_id})
        self.cloud_api = api = YoswitCloudAPI(
            env.base_url,
            env.username,
            env.password,
            env.app_id,
            api_timeout=env.api_timeout,
        )
        await api.login()
        mqtt_settings = await api.get_app_settings()
        snapshot = await api.after_login()
        if self.snapshot_dump_path is not None:
            _ = dump_snapshot(snapshot, self.snapshot_dump_path)
        registry = DeviceRegistry.from_snapshot(snapshot)

        self.cloud_mqtt = CloudMQTTClient(mqtt_settings, conn_delay=env.cloud_mqtt_conn_delay)
        self._cloud_mqtt_task = asyncio.create_task(self.cloud_mqtt.start(), name=CLOUD_MQTT_START_TASK_NAME)

        events: asyncio.Queue[BrokerEvent] = asyncio.Queue()
        self.broker = EmbeddedBroker(env.broker_host, env.broker_port, events)
        self.bridge = BridgeBroker(
            registry,
            self.cloud_mqtt,
            self.broker,
            events=events,
            topic_prefix=env.topic_prefix,
            ble_topic=env.ble_topic,
            cache=ReplayCache(),
            cloud_publish_timeout=env.cloud_publish_timeout,
        )
        await self.bridge.start()
        await self.broker.start()
        logger.info(
            "%s Application initialized successfully with %d devices",
            lp,
            len(registry),
            extra={"version": YOSWIT_VERSION},
        )

    async def stop(self) -> None:
        lp = f"{self.lp}stop:"
        logger.info("%s Shutting down...", lp)
        if self.bridge is not None:
            await self.bridge.stop()
        if self.broker is not None:
            await self.broker.shutdown()
        if self._cloud_mqtt_task is not None and not self._cloud_mqtt_task.done():
            _ = self._cloud_mqtt_task.cancel()
            try:
                await self._cloud_mqtt_task
            except asyncio.CancelledError:
                logger.debug("%s Cloud MQTT task cancelled", lp)
        if self.cloud_mqtt is not None:
            await self.cloud_mqtt.stop()
        if self.cloud_api is not None:
            await self.cloud_api.close()

    async def run(self) -> None:
        """Start, then wait for SIGINT/SIGTERM and shut down."""
        _ = ensure_correlation_id()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, self.request_stop, sig)
        logger.debug("%s Signal handlers configured for SIGINT & SIGTERM", self.lp)
        try:
            await self.start()
            _ = await self._stop_event.wait()
        finally:
            await self.stop()


def parse_cli(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Yoswit to homebridge-mqtt bridge")
    _ = parser.add_argument("-D", "--debug", action="store_true", help="Enable debug mode")
    _ = parser.add_argument("--env", help="Path to the environment file", default=None, type=Path)
    _ = parser.add_argument(
        "--dump-snapshot",
        help="Write the raw cloud device snapshot to this YAML file",
        default=None,
        type=Path,
        dest="dump_snapshot",
    )
    return parser.parse_args(argv)


def load_env_file(env_file: Path) -> bool:
    """Load ``env_file`` into the environment, overriding existing values."""
    env_path = env_file.expanduser().resolve()
    if not env_path.exists():
        logger.error("Environment file not found", extra={"path": str(env_path)})
        return False
    if not dotenv.load_dotenv(env_path, override=True):
        logger.warning("No environment variables loaded from file", extra={"path": str(env_path)})
        return False
    logger.info(" Environment variables loaded", extra={"source": str(env_path)})
    return True


def main(argv: Sequence[str] | None = None) -> None:
    """Main entry point for the bridge."""
    with correlation_context():
        logger.info("Starting Yoswit bridge", extra={"version": YOSWIT_VERSION})
        args = parse_cli(argv)

        if args.debug or YOSWIT_DEBUG:
            set_debug(True)
            logger.info("Debug mode enabled")
        if args.env:
            _ = load_env_file(args.env)

        try:
            env = BridgeEnv.from_environ()
        except ValidationError as e:
            logger.error(" Invalid configuration: %s", e)
            sys.exit(1)
        app = YoswitBridge(env, snapshot_dump_path=args.dump_snapshot)
        try:
            uvloop.run(app.run())
        except BridgeError as e:
            logger.error(" Startup failed: %s", e)
            sys.exit(1)
        except KeyboardInterrupt:
            logger.info("Keyboard interrupt received, shutting down...")
        else:
            logger.info(" Yoswit bridge stopped gracefully")


if __name__ == "__main__":
    main()
