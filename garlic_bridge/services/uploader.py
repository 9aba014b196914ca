from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from typing import Any

import aiohttp

logger = logging.getLogger("garlic_bridge.uploader")

_UNSAFE_ID_CHARS = re.compile(r"[^a-zA-Z0-9.-]")


class UploadError(RuntimeError):
    pass


def sanitize_player_id(value: str | None) -> str:
    if not value:
        return "unknown"
    return _UNSAFE_ID_CHARS.sub("_", value)


@dataclass(frozen=True)
class UploadResponse:
    status: int
    data: Any

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


class UploadClient:
    def __init__(self, upload_url: str, timeout_seconds: int = 30):
        self.upload_url = upload_url
        self.timeout_seconds = timeout_seconds

    @property
    def configured(self) -> bool:
        return bool(self.upload_url)

    async def upload(self, *, content: bytes, filename: str, player_id: str | None, timestamp: str) -> UploadResponse:
        if not self.upload_url:
            raise UploadError("UPLOAD_API_URL not configured")
        safe_id = sanitize_player_id(player_id)
        form = aiohttp.FormData()
        form.add_field("image", content, filename=filename, content_type="image/jpeg")
        form.add_field("player_id", safe_id)
        form.add_field("timestamp", timestamp)
        logger.info("Uploading %s (%d bytes) for player_id=%s to %s", filename, len(content), safe_id, self.upload_url)

        timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(self.upload_url, data=form) as resp:
                    content_type = resp.headers.get("Content-Type", "")
                    if "application/json" in content_type:
                        data = await resp.json(content_type=None)
                    else:
                        text = await resp.text()
                        logger.warning("Non-JSON upload response (status=%s): %s", resp.status, text[:300])
                        data = {"error": "Non-JSON response", "response_text": text}
                    status = resp.status
        except (aiohttp.ClientError, ValueError) as err:
            raise UploadError(str(err) or type(err).__name__) from err
        except asyncio.TimeoutError as err:
            raise UploadError(f"timed out after {self.timeout_seconds}s") from err

        logger.info("Upload response status=%s", status)
        return UploadResponse(status=status, data=data)
