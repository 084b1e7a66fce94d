"""
Unit tests for main module.

Tests CLI parsing, .env loading, application wiring and the exit codes of
the entry point.
"""

import os
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from yoswit_bridge.exceptions import BridgeError, CloudAuthenticationError
from yoswit_bridge.main import YoswitBridge, load_env_file, main, parse_cli
from yoswit_bridge.structs import BridgeEnv


@pytest.fixture
def env():
    return BridgeEnv(
        base_url="cloud.example.com",
        username="user@example.com",
        password="secret",
        app_id="app-1",
        broker_port=1884,
    )


def _close_coro_and_raise(exc):
    def fake_run(coro):
        coro.close()
        if exc is not None:
            raise exc

    return fake_run


class TestParseCli:
    def test_defaults(self):
        args = parse_cli([])

        assert args.debug is False
        assert args.env is None
        assert args.dump_snapshot is None

    def test_all_options(self):
        args = parse_cli(["-D", "--env", "/tmp/bridge.env", "--dump-snapshot", "/tmp/snapshot.yaml"])

        assert args.debug is True
        assert args.env == Path("/tmp/bridge.env")
        assert args.dump_snapshot == Path("/tmp/snapshot.yaml")


class TestLoadEnvFile:
    """Tests for .env loading"""

    def test_loads_and_overrides(self, tmp_path, monkeypatch):
        monkeypatch.setenv("YOSWIT_APP_ID", "old")
        env_file = tmp_path / "bridge.env"
        env_file.write_text("YOSWIT_APP_ID=new\n")

        assert load_env_file(env_file) is True
        assert os.environ["YOSWIT_APP_ID"] == "new"

    def test_missing_file(self, tmp_path):
        assert load_env_file(tmp_path / "nope.env") is False

    def test_empty_file(self, tmp_path):
        env_file = tmp_path / "empty.env"
        env_file.write_text("")

        assert load_env_file(env_file) is False


class TestYoswitBridgeStart:
    """Tests for application wiring"""

    @pytest.mark.asyncio
    async def test_missing_credentials(self):
        app = YoswitBridge(BridgeEnv())

        with pytest.raises(BridgeError, match="YOSWIT_BASE_URL"):
            await app.start()

    @pytest.mark.asyncio
    async def test_start_wires_services(self, env, sample_snapshot, tmp_path):
        dump_path = tmp_path / "snapshot.yaml"
        with (
            patch("yoswit_bridge.main.YoswitCloudAPI") as mock_api_class,
            patch("yoswit_bridge.main.CloudMQTTClient") as mock_cloud_class,
            patch("yoswit_bridge.main.EmbeddedBroker") as mock_broker_class,
            patch("yoswit_bridge.main.BridgeBroker") as mock_bridge_class,
        ):
            api = mock_api_class.return_value
            api.login = AsyncMock()
            api.get_app_settings = AsyncMock(return_value=MagicMock())
            api.after_login = AsyncMock(return_value=sample_snapshot)
            mock_cloud_class.return_value.start = AsyncMock()
            mock_broker_class.return_value.start = AsyncMock()
            mock_bridge_class.return_value.start = AsyncMock()

            app = YoswitBridge(env, snapshot_dump_path=dump_path)
            await app.start()
            await app._cloud_mqtt_task

        mock_broker_class.assert_called_once()
        assert mock_broker_class.call_args.args[:2] == ("0.0.0.0", 1884)
        args, kwargs = mock_bridge_class.call_args
        assert len(args[0]) == 3
        assert args[1] is mock_cloud_class.return_value
        assert args[2] is mock_broker_class.return_value
        assert kwargs["events"] is mock_broker_class.call_args.args[2]
        assert kwargs["topic_prefix"] == "homebridge"
        mock_bridge_class.return_value.start.assert_awaited_once()
        mock_broker_class.return_value.start.assert_awaited_once()
        assert dump_path.exists()

    @pytest.mark.asyncio
    async def test_login_failure_propagates(self, env):
        with patch("yoswit_bridge.main.YoswitCloudAPI") as mock_api_class:
            mock_api_class.return_value.login = AsyncMock(side_effect=CloudAuthenticationError("bad password"))

            app = YoswitBridge(env)
            with pytest.raises(BridgeError, match="bad password"):
                await app.start()

    @pytest.mark.asyncio
    async def test_stop_before_start(self, env):
        app = YoswitBridge(env)

        await app.stop()


class TestMain:
    """Tests for the entry point"""

    def test_startup_failure_exits_1(self, env):
        with (
            patch("yoswit_bridge.main.BridgeEnv.from_environ", return_value=env),
            patch("yoswit_bridge.main.uvloop.run", side_effect=_close_coro_and_raise(BridgeError("no login"))),
            pytest.raises(SystemExit) as exc_info,
        ):
            main([])

        assert exc_info.value.code == 1

    def test_invalid_config_exits_1(self, monkeypatch):
        monkeypatch.setenv("YOSWIT_BROKER_PORT", "0")

        with patch("yoswit_bridge.main.uvloop.run") as mock_run, pytest.raises(SystemExit) as exc_info:
            main([])

        assert exc_info.value.code == 1
        mock_run.assert_not_called()

    def test_graceful_run(self, env):
        with (
            patch("yoswit_bridge.main.BridgeEnv.from_environ", return_value=env),
            patch("yoswit_bridge.main.uvloop.run", side_effect=_close_coro_and_raise(None)) as mock_run,
        ):
            main([])

        mock_run.assert_called_once()

    def test_debug_flag(self, env):
        with (
            patch("yoswit_bridge.main.BridgeEnv.from_environ", return_value=env),
            patch("yoswit_bridge.main.uvloop.run", side_effect=_close_coro_and_raise(None)),
            patch("yoswit_bridge.main.set_debug") as mock_set_debug,
        ):
            main(["--debug"])

        mock_set_debug.assert_called_once_with(True)
