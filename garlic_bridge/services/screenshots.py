from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

import aiohttp

from ..store import file_timestamp

logger = logging.getLogger("garlic_bridge.screenshots")


class CaptureError(RuntimeError):
    pass


class UnsafePathError(ValueError):
    pass


@dataclass(frozen=True)
class SavedScreenshot:
    filename: str
    filepath: str
    path: Path
    size: int
    timestamp: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "filename": self.filename,
            "filepath": self.filepath,
            "size": self.size,
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True)
class CaptureResult:
    status: int
    content: bytes
    content_type: Optional[str]

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    @property
    def text(self) -> str:
        return self.content.decode("utf-8", errors="replace")


class ScreenshotStore:
    """Screenshots live under ``<public_dir>/screenshots`` and are addressed by
    paths relative to ``public_dir`` (``screenshots/<name>``)."""

    subdir = "screenshots"

    def __init__(self, public_dir: str):
        self.public_dir = Path(public_dir)

    @property
    def directory(self) -> Path:
        return self.public_dir / self.subdir

    def save(self, content: bytes, timestamp: str | None = None) -> SavedScreenshot:
        stamp = timestamp or file_timestamp()
        filename = f"screenshot_{stamp}.jpg"
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self.directory / filename
        path.write_bytes(content)
        size = path.stat().st_size
        logger.info("Screenshot saved: %s (%d bytes)", path, size)
        return SavedScreenshot(
            filename=filename,
            filepath=f"{self.subdir}/{filename}",
            path=path,
            size=size,
            timestamp=stamp,
        )

    def resolve(self, relative_path: str) -> Path:
        root = self.public_dir.resolve()
        candidate = (root / relative_path.lstrip("/\\")).resolve()
        if candidate != root and root not in candidate.parents:
            raise UnsafePathError(f"Path escapes public directory: {relative_path}")
        return candidate

    def read(self, relative_path: str) -> tuple[Path, bytes]:
        path = self.resolve(relative_path)
        return path, path.read_bytes()


async def capture(target_url: str, timeout_seconds: int = 30, params: dict[str, str] | None = None) -> CaptureResult:
    """POST an empty JSON object to a screenshot endpoint and collect the image."""
    timeout = aiohttp.ClientTimeout(total=timeout_seconds)
    try:
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.post(target_url, json={}, params=params) as resp:
                content = await resp.read()
                return CaptureResult(
                    status=resp.status,
                    content=content,
                    content_type=resp.headers.get("Content-Type"),
                )
    except aiohttp.ClientError as err:
        raise CaptureError(str(err) or type(err).__name__) from err
    except asyncio.TimeoutError as err:
        raise CaptureError(f"timed out after {timeout_seconds}s") from err
