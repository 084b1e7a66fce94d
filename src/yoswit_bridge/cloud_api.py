"""Yoswit cloud HTTP API client.

Logs in with the account credentials, then fetches the cloud MQTT settings
(``appv6.getAppSetting``) and the device snapshot (``appv6.afterLogin``)
that the registry is built from.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, cast

import aiohttp
import yaml
from pydantic import ValidationError

from yoswit_bridge.const import YOSWIT_API_TIMEOUT
from yoswit_bridge.exceptions import CloudAPIError, CloudAuthenticationError
from yoswit_bridge.logging_abstraction import get_logger
from yoswit_bridge.structs import CloudMqttSettings

logger = get_logger(__name__)

LOGIN_PATH = "/api/method/login"
APP_SETTING_PATH = "/api/method/appv6.getAppSetting"
AFTER_LOGIN_PATH = "/api/method/appv6.afterLogin"


class YoswitCloudAPI:
    """Session-cookie authenticated client for the Yoswit cloud."""

    lp: str = "cloud_api:"

    def __init__(
        self,
        base_url: str,
        username: str,
        password: str,
        app_id: str,
        api_timeout: int = YOSWIT_API_TIMEOUT,
    ) -> None:
        self.base_url: str = base_url
        self.username: str = username
        self.password: str = password
        self.app_id: str = app_id
        self.api_timeout: int = api_timeout
        self.http_session: aiohttp.ClientSession | None = None
        self.session_cookie: str | None = None

    def _url(self, path: str) -> str:
        return f"https://{self.base_url}{path}"

    @property
    def _timeout(self) -> aiohttp.ClientTimeout:
        return aiohttp.ClientTimeout(total=self.api_timeout)

    async def _check_session(self) -> aiohttp.ClientSession:
        if not self.http_session or self.http_session.closed:
            logger.debug("%s_check_session: Creating new aiohttp ClientSession", self.lp)
            # The session cookie is sent explicitly, so the jar must not add a second copy
            self.http_session = aiohttp.ClientSession(cookie_jar=aiohttp.DummyCookieJar())
        return self.http_session

    def _auth_headers(self) -> dict[str, str]:
        if not self.session_cookie:
            msg = "Not logged in, call login() first"
            raise CloudAuthenticationError(msg)
        return {"Cookie": self.session_cookie, "Content-Type": "application/json"}

    async def close(self) -> None:
        lp = f"{self.lp}close:"
        if self.http_session and not self.http_session.closed:
            logger.debug("%s Closing aiohttp ClientSession", lp)
            await self.http_session.close()
        self.http_session = None

    async def _read_json(self, r: aiohttp.ClientResponse, what: str) -> dict[str, Any]:
        if not r.ok:
            body = await r.text()
            msg = f"{what} failed with HTTP {r.status}: {body}"
            raise CloudAPIError(msg)
        try:
            result: object = cast("object", await r.json(content_type=None))
        except (json.JSONDecodeError, aiohttp.ContentTypeError) as exc:
            msg = f"{what} returned invalid JSON"
            raise CloudAPIError(msg) from exc
        if not isinstance(result, dict):
            msg = f"{what} returned {type(result).__name__}, expected an object"
            raise CloudAPIError(msg)
        return cast("dict[str, Any]", result)

    async def login(self) -> None:
        """Authenticate and keep the session cookie for later requests.

        Raises:
            CloudAuthenticationError: rejected credentials or no session cookie
            CloudAPIError: the request itself failed

        """
        lp = f"{self.lp}login:"
        sesh = await self._check_session()
        logger.info("%s Attempting login...", lp)
        try:
            r = await sesh.post(
                self._url(LOGIN_PATH),
                json={"usr": self.username, "pwd": self.password},
                timeout=self._timeout,
            )
        except (aiohttp.ClientError, TimeoutError) as exc:
            msg = f"Login request failed: {exc}"
            raise CloudAPIError(msg) from exc

        if not r.ok:
            body = await r.text()
            msg = f"Login failed with HTTP {r.status}: {body}"
            raise CloudAuthenticationError(msg)

        morsel = next(iter(r.cookies.values()), None)
        if morsel is None:
            msg = "No session cookie received"
            raise CloudAuthenticationError(msg)
        self.session_cookie = f"{morsel.key}={morsel.value}"
        logger.info("%s Login successful", lp)

    async def get_app_settings(self) -> CloudMqttSettings:
        """Cloud MQTT connection details for this app."""
        lp = f"{self.lp}get_app_settings:"
        sesh = await self._check_session()
        headers = self._auth_headers()
        logger.info("%s Fetching app settings...", lp)
        try:
            r = await sesh.get(
                self._url(APP_SETTING_PATH),
                params={"appId": self.app_id},
                headers=headers,
                timeout=self._timeout,
            )
            body = await self._read_json(r, "getAppSetting")
        except (aiohttp.ClientError, TimeoutError) as exc:
            msg = f"getAppSetting request failed: {exc}"
            raise CloudAPIError(msg) from exc

        try:
            settings = CloudMqttSettings.model_validate(body.get("config"))
        except ValidationError as exc:
            msg = f"getAppSetting returned unusable MQTT config: {exc}"
            raise CloudAPIError(msg) from exc
        logger.debug(
            "%s MQTT config",
            lp,
            extra={"host": settings.host, "port": settings.port, "keepalive": settings.keepalive},
        )
        return settings

    async def after_login(self) -> dict[str, Any]:
        """The account's device snapshot (profile, devices, subdevices)."""
        lp = f"{self.lp}after_login:"
        sesh = await self._check_session()
        headers = self._auth_headers()
        logger.info("%s Fetching device profile...", lp)
        try:
            r = await sesh.post(
                self._url(AFTER_LOGIN_PATH),
                json={
                    "deviceId": "",
                    "appId": self.app_id,
                    "user_setting_name": f"{self.app_id}-{self.username}",
                },
                headers=headers,
                timeout=self._timeout,
            )
            return await self._read_json(r, "afterLogin")
        except (aiohttp.ClientError, TimeoutError) as exc:
            msg = f"afterLogin request failed: {exc}"
            raise CloudAPIError(msg) from exc


def dump_snapshot(snapshot: dict[str, Any], path: str | Path) -> Path:
    """Write the raw snapshot as YAML for troubleshooting registry construction."""
    lp = "cloud_api:dump_snapshot:"
    out = Path(path)
    out.parent.mkdir(parents=True, exist_ok=True)
    with out.open("w", encoding="utf-8") as f:
        _ = f.write(yaml.safe_dump(snapshot, allow_unicode=True, sort_keys=False))
    logger.info("%s Wrote cloud snapshot to %s", lp, out)
    return out
