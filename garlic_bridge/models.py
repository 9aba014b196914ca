from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, field_validator


class _TrimmedRequest(BaseModel):
    @field_validator("target_url", "method", "filepath", "player_id", mode="before", check_fields=False)
    @classmethod
    def normalize_empty(cls, value: Any) -> Any:
        if isinstance(value, str):
            v = value.strip()
            return v or None
        return value


class ProxyRequest(_TrimmedRequest):
    target_url: Optional[str] = None
    method: Optional[str] = None
    body: Any = None

    @property
    def http_method(self) -> str:
        return (self.method or "GET").upper()


class ScreenshotRequest(_TrimmedRequest):
    target_url: Optional[str] = None


class UploadRequest(_TrimmedRequest):
    filepath: Optional[str] = None
    player_id: Optional[str] = None
