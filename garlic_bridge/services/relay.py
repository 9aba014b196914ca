from __future__ import annotations

import asyncio
import json
from typing import Any

import aiohttp


class RelayError(RuntimeError):
    pass


class RelayClient:
    def __init__(self, timeout_seconds: int = 30):
        self.timeout_seconds = timeout_seconds

    async def forward(self, target_url: str, method: str = "GET", body: Any = None) -> tuple[int, Any]:
        """Send one JSON request downstream and return ``(status, json_body)``."""
        kwargs: dict[str, Any] = {"headers": {"Content-Type": "application/json"}}
        if method == "POST" and body:
            kwargs["json"] = body
        timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.request(method, target_url, **kwargs) as resp:
                    raw = await resp.read()
                    status = resp.status
            if not raw.strip():
                raise RelayError(f"Empty response body (HTTP {status})")
            return status, json.loads(raw)
        except (aiohttp.ClientError, ValueError) as err:
            raise RelayError(str(err) or type(err).__name__) from err
        except asyncio.TimeoutError as err:
            raise RelayError(f"timed out after {self.timeout_seconds}s") from err
