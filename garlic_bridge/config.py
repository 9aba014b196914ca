from __future__ import annotations

import os
from dataclasses import dataclass, field


def env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() == "true"


def env_positive_int(name: str, default: int) -> int:
    raw = os.getenv(name, "")
    try:
        value = int(raw)
    except (TypeError, ValueError):
        return default
    return value if value > 0 else default


@dataclass(frozen=True)
class Settings:
    app_name: str = "Garlic Bridge"
    host: str = field(default_factory=lambda: os.getenv("HOST", "0.0.0.0"))
    port: int = field(default_factory=lambda: env_positive_int("PORT", 3005))
    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))
    public_dir: str = field(default_factory=lambda: os.getenv("PUBLIC_DIR", "public"))
    env_file: str = field(default_factory=lambda: os.getenv("ENV_FILE", ".env"))
    http_timeout_seconds: int = field(default_factory=lambda: env_positive_int("HTTP_TIMEOUT_SECONDS", 30))

    upload_api_url: str = field(default_factory=lambda: os.getenv("UPLOAD_API_URL", ""))
    auto_screenshot_enabled: bool = field(default_factory=lambda: env_bool("AUTO_SCREENSHOT_ENABLED"))
    screenshot_interval_minutes: int = field(
        default_factory=lambda: env_positive_int("SCREENSHOT_INTERVAL_MINUTES", 5)
    )

    garlic_ip: str = field(default_factory=lambda: os.getenv("DEFAULT_GARLIC_IP", "127.0.0.1"))
    garlic_username: str = field(default_factory=lambda: os.getenv("DEFAULT_GARLIC_USERNAME", "admin"))
    garlic_password: str = field(default_factory=lambda: os.getenv("DEFAULT_GARLIC_PASSWORD", ""))
    garlic_api_port: int = field(default_factory=lambda: env_positive_int("GARLIC_API_PORT", 8080))

    default_player_id: str = field(default_factory=lambda: os.getenv("DEFAULT_PLAYER_ID", ""))
    auto_update_env_player_id: bool = field(default_factory=lambda: env_bool("AUTO_UPDATE_ENV_PLAYER_ID"))

    command_polling_enabled: bool = field(default_factory=lambda: env_bool("COMMAND_POLLING_ENABLED"))
    command_polling_interval_seconds: int = field(
        default_factory=lambda: env_positive_int("COMMAND_POLLING_INTERVAL_SECONDS", 5)
    )
    adnova_api_base_url: str = field(
        default_factory=lambda: os.getenv("ADNOVA_API_BASE_URL", "http://127.0.0.1:8000/api/v1")
    )

    @property
    def screenshots_dir(self) -> str:
        return os.path.join(self.public_dir, "screenshots")

    @property
    def garlic_base_url(self) -> str:
        return f"http://{self.garlic_ip}:{self.garlic_api_port}"


COMMAND_RELOAD_PLAYLIST = "reload_playlist"
COMMAND_TAKE_SCREENSHOT = "take_screenshot"

COMMAND_STATUS_PROCESSING = "processing"
COMMAND_STATUS_COMPLETED = "completed"
COMMAND_STATUS_FAILED = "failed"
