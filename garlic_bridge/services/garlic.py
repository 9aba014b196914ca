from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

import aiohttp

from ..config import Settings
from .screenshots import CaptureError, capture

logger = logging.getLogger("garlic_bridge.garlic")


class DeviceError(RuntimeError):
    pass


class GarlicClient:
    """Client for the player's local REST API (``/v2/...``).

    The access token comes from a password grant and is fetched on first
    use, then reused for the lifetime of the process.
    """

    def __init__(self, settings: Settings):
        self.settings = settings
        self.access_token: Optional[str] = None
        self._token_lock = asyncio.Lock()

    @property
    def ip(self) -> str:
        return self.settings.garlic_ip

    def _url(self, path: str) -> str:
        return f"{self.settings.garlic_base_url}{path}"

    def _timeout(self) -> aiohttp.ClientTimeout:
        return aiohttp.ClientTimeout(total=self.settings.http_timeout_seconds)

    async def fetch_token(self) -> Optional[str]:
        payload = {
            "grant_type": "password",
            "username": self.settings.garlic_username,
            "password": self.settings.garlic_password,
        }
        try:
            async with aiohttp.ClientSession(timeout=self._timeout()) as session:
                async with session.post(self._url("/v2/oauth2/token"), json=payload) as resp:
                    if resp.status != 200:
                        logger.error("Token request to %s failed: HTTP %s", self.ip, resp.status)
                        return None
                    data = await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as err:
            logger.error("Token request to %s failed: %s", self.ip, err)
            return None

        token = data.get("access_token") if isinstance(data, dict) else None
        if not token:
            logger.error("Token response from %s carried no access_token", self.ip)
            return None
        logger.info("Player access token obtained for %s", self.ip)
        return str(token)

    async def ensure_token(self) -> str:
        async with self._token_lock:
            if not self.access_token:
                self.access_token = await self.fetch_token()
            if not self.access_token:
                raise DeviceError("Failed to get Garlic Player access token")
            return self.access_token

    async def reload_playlist(self) -> Any:
        token = await self.ensure_token()
        try:
            async with aiohttp.ClientSession(timeout=self._timeout()) as session:
                async with session.post(
                    self._url("/v2/app/switch"),
                    params={"access_token": token},
                    json={"mode": "start"},
                ) as resp:
                    if not 200 <= resp.status < 300:
                        raise DeviceError(f"HTTP {resp.status}: {await resp.text()}")
                    return await resp.json(content_type=None)
        except (aiohttp.ClientError, ValueError) as err:
            raise DeviceError(str(err) or type(err).__name__) from err
        except asyncio.TimeoutError as err:
            raise DeviceError(f"timed out after {self.settings.http_timeout_seconds}s") from err

    async def take_screenshot(self) -> bytes:
        token = await self.ensure_token()
        try:
            result = await capture(
                self._url("/v2/task/screenshot"),
                timeout_seconds=self.settings.http_timeout_seconds,
                params={"access_token": token},
            )
        except CaptureError as err:
            raise DeviceError(str(err)) from err
        if not result.ok:
            raise DeviceError(f"HTTP {result.status}: {result.text}")
        return result.content
