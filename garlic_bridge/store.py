from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from dotenv import set_key

logger = logging.getLogger("garlic_bridge.store")


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def file_timestamp(now: datetime | None = None) -> str:
    """Filesystem-safe UTC timestamp, e.g. ``2025-01-31T08-15-00``."""
    moment = now or datetime.now(timezone.utc)
    return moment.strftime("%Y-%m-%dT%H-%M-%S")


@dataclass(frozen=True)
class PlayerIdentity:
    player_id: str
    filename: str
    last_updated: str
    ip_address: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class PlayerIdentityStore:
    """Tracks the single most recent identity reported by the player.

    The player announces itself through a callback; every callback
    replaces the previous record, so lookups only ever see the latest one.
    """

    def __init__(self) -> None:
        self._current: Optional[PlayerIdentity] = None

    def record(self, player_id: str, filename: str, ip_address: str) -> PlayerIdentity:
        identity = PlayerIdentity(
            player_id=player_id,
            filename=filename,
            last_updated=utc_now_iso(),
            ip_address=ip_address,
        )
        self._current = identity
        return identity

    def current(self) -> Optional[PlayerIdentity]:
        return self._current

    def get(self, player_id: str) -> Optional[PlayerIdentity]:
        if self._current and self._current.player_id == player_id:
            return self._current
        return None

    def list_all(self) -> list[PlayerIdentity]:
        return [self._current] if self._current else []

    def find_by_ip(self, fragment: str) -> Optional[PlayerIdentity]:
        if self._current and self._current.ip_address and fragment in self._current.ip_address:
            return self._current
        return None

    def current_player_id(self, fallback: str = "") -> str:
        if self._current:
            return self._current.player_id
        return fallback


def persist_player_id(env_file: str, player_id: str, key: str = "DEFAULT_PLAYER_ID") -> bool:
    path = Path(env_file)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.touch(exist_ok=True)
        ok, _, _ = set_key(str(path), key, player_id, quote_mode="never")
    except OSError:
        logger.exception("Could not persist %s to %s", key, path)
        return False
    if not ok:
        logger.warning("Could not persist %s to %s", key, path)
        return False
    return True
