from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Optional

import aiohttp

logger = logging.getLogger("garlic_bridge.backend")


class BackendError(RuntimeError):
    pass


@dataclass(frozen=True)
class Command:
    id: Any
    command_type: str
    payload: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_api(cls, raw: dict[str, Any]) -> "Command":
        payload = raw.get("payload")
        return cls(
            id=raw.get("id"),
            command_type=str(raw.get("command_type") or ""),
            payload=payload if isinstance(payload, dict) else {},
        )


@dataclass(frozen=True)
class StatusReport:
    ok: bool
    error: str = ""


class CommandQueueClient:
    """Talks to the backend's ``/garlic/commands`` endpoints."""

    def __init__(self, base_url: str, timeout_seconds: int = 30):
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds

    def _timeout(self) -> aiohttp.ClientTimeout:
        return aiohttp.ClientTimeout(total=self.timeout_seconds)

    async def fetch_pending(self, player_id: str) -> list[Command]:
        url = f"{self.base_url}/garlic/commands/pending"
        try:
            async with aiohttp.ClientSession(timeout=self._timeout()) as session:
                async with session.get(url, params={"player_id": player_id}) as resp:
                    if not 200 <= resp.status < 300:
                        raise BackendError(f"Failed to fetch commands: HTTP {resp.status}")
                    result = await resp.json(content_type=None)
        except (aiohttp.ClientError, ValueError) as err:
            raise BackendError(str(err) or type(err).__name__) from err
        except asyncio.TimeoutError as err:
            raise BackendError(f"timed out after {self.timeout_seconds}s") from err

        data = result.get("data") if isinstance(result, dict) else None
        raw_commands = data.get("commands") if isinstance(data, dict) else None
        if not isinstance(raw_commands, list):
            return []
        return [Command.from_api(item) for item in raw_commands if isinstance(item, dict)]

    async def update_status(self, command_id: Any, status: str, result: Optional[dict[str, Any]] = None) -> StatusReport:
        url = f"{self.base_url}/garlic/commands/{command_id}/status"
        payload: dict[str, Any] = {"status": status}
        if result is not None:
            payload["result"] = result
        try:
            async with aiohttp.ClientSession(timeout=self._timeout()) as session:
                async with session.put(url, json=payload) as resp:
                    if 200 <= resp.status < 300:
                        return StatusReport(ok=True)
                    body = await resp.text()
                    return StatusReport(ok=False, error=f"status={resp.status} body={body[:300]}")
        except asyncio.TimeoutError:
            return StatusReport(ok=False, error=f"timed out after {self.timeout_seconds}s")
        except aiohttp.ClientError as err:
            return StatusReport(ok=False, error=str(err) or type(err).__name__)
