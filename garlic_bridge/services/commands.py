from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

from ..config import (
    COMMAND_RELOAD_PLAYLIST,
    COMMAND_STATUS_COMPLETED,
    COMMAND_STATUS_FAILED,
    COMMAND_STATUS_PROCESSING,
    COMMAND_TAKE_SCREENSHOT,
    Settings,
)
from ..store import PlayerIdentityStore, utc_now_iso
from .backend import BackendError, Command, CommandQueueClient, StatusReport
from .garlic import GarlicClient
from .screenshots import ScreenshotStore
from .uploader import UploadClient, UploadError

logger = logging.getLogger("garlic_bridge.commands")

Handler = Callable[[Command], Awaitable[dict[str, Any]]]


class UnknownCommandError(RuntimeError):
    pass


@dataclass
class CommandOutcome:
    """What happened to one command: its own result, and whether the backend
    heard about it."""

    command_id: Any
    command_type: str
    status: str
    result: dict[str, Any] = field(default_factory=dict)
    error: str = ""
    status_report: StatusReport = field(default_factory=lambda: StatusReport(ok=True))
    processing_report: StatusReport = field(default_factory=lambda: StatusReport(ok=True))

    def to_dict(self) -> dict[str, Any]:
        return {
            "command_id": self.command_id,
            "command_type": self.command_type,
            "status": self.status,
            "result": self.result,
            "error": self.error,
            "status_reported": self.status_report.ok,
            "status_report_error": self.status_report.error,
            "processing_reported": self.processing_report.ok,
            "processing_report_error": self.processing_report.error,
        }


class CommandPoller:
    def __init__(
        self,
        *,
        settings: Settings,
        identities: PlayerIdentityStore,
        garlic: GarlicClient,
        queue: CommandQueueClient,
        uploader: UploadClient,
        screenshots: ScreenshotStore,
    ):
        self.settings = settings
        self.identities = identities
        self.garlic = garlic
        self.queue = queue
        self.uploader = uploader
        self.screenshots = screenshots
        self.handlers: dict[str, Handler] = {
            COMMAND_RELOAD_PLAYLIST: self.reload_playlist,
            COMMAND_TAKE_SCREENSHOT: self.take_screenshot,
        }
        self.last_poll_at = ""
        self.last_error = ""
        self.recent_outcomes: list[CommandOutcome] = []

    def current_player_id(self) -> str:
        return self.identities.current_player_id(self.settings.default_player_id)

    async def poll_once(self) -> list[CommandOutcome]:
        player_id = self.current_player_id()
        if not player_id:
            return []
        self.last_poll_at = utc_now_iso()
        commands = await self.queue.fetch_pending(player_id)
        self.last_error = ""
        if not commands:
            return []

        logger.info("Received %d pending command(s) for player_id=%s", len(commands), player_id)
        outcomes: list[CommandOutcome] = []
        for command in commands:
            outcomes.append(await self.execute(command))
        self.recent_outcomes = (self.recent_outcomes + outcomes)[-20:]
        return outcomes

    async def execute(self, command: Command) -> CommandOutcome:
        processing = await self.queue.update_status(command.id, COMMAND_STATUS_PROCESSING)
        if not processing.ok:
            logger.warning("Command #%s: processing status update failed: %s", command.id, processing.error)

        try:
            handler = self.handlers.get(command.command_type)
            if handler is None:
                raise UnknownCommandError(f"Unknown command type: {command.command_type}")
            result = await handler(command)
        except Exception as err:
            message = str(err) or type(err).__name__
            logger.error("Command #%s (%s) failed: %s", command.id, command.command_type, message)
            report = await self.queue.update_status(command.id, COMMAND_STATUS_FAILED, {"error": message})
            outcome = CommandOutcome(
                command_id=command.id,
                command_type=command.command_type,
                status=COMMAND_STATUS_FAILED,
                error=message,
                status_report=report,
                processing_report=processing,
            )
        else:
            report = await self.queue.update_status(command.id, COMMAND_STATUS_COMPLETED, result)
            logger.info("Command #%s (%s) completed", command.id, command.command_type)
            outcome = CommandOutcome(
                command_id=command.id,
                command_type=command.command_type,
                status=COMMAND_STATUS_COMPLETED,
                result=result,
                status_report=report,
                processing_report=processing,
            )

        if not report.ok:
            logger.warning(
                "Command #%s finished as %s but the status update failed: %s",
                command.id,
                outcome.status,
                report.error,
            )
        return outcome

    async def reload_playlist(self, command: Command) -> dict[str, Any]:
        content_url = command.payload.get("content_url")
        logger.info(
            "Reloading playlist on %s for command #%s%s",
            self.garlic.ip,
            command.id,
            f" (content_url={content_url})" if content_url else "",
        )
        result = await self.garlic.reload_playlist()
        return {"success": True, "result": result, "executed_at": utc_now_iso()}

    async def take_screenshot(self, command: Command) -> dict[str, Any]:
        logger.info("Taking screenshot on %s for command #%s", self.garlic.ip, command.id)
        image = await self.garlic.take_screenshot()
        saved = self.screenshots.save(image)
        outcome: dict[str, Any] = {"success": True, "local_path": saved.filepath}

        if self.uploader.configured:
            player_id = self.identities.current_player_id(self.settings.default_player_id or self.garlic.ip)
            try:
                response = await self.uploader.upload(
                    content=saved.path.read_bytes(),
                    filename=saved.filename,
                    player_id=player_id,
                    timestamp=saved.timestamp,
                )
            except UploadError as err:
                logger.warning("Screenshot %s saved locally but upload failed: %s", saved.filename, err)
            else:
                if response.ok:
                    data = response.data.get("data") if isinstance(response.data, dict) else None
                    screenshot_url = data.get("url") if isinstance(data, dict) else None
                    logger.info("Screenshot uploaded: %s", screenshot_url or "success")
                    outcome["screenshot_url"] = screenshot_url
                else:
                    logger.warning(
                        "Screenshot %s saved locally but upload failed: HTTP %s", saved.filename, response.status
                    )

        outcome["executed_at"] = utc_now_iso()
        return outcome

    async def run(self, interval_seconds: Optional[float] = None) -> None:
        interval = interval_seconds or self.settings.command_polling_interval_seconds
        while True:
            try:
                await self.poll_once()
            except asyncio.CancelledError:
                raise
            except BackendError as err:
                self.last_error = str(err)
                logger.error("Command polling error: %s", err)
            except Exception as err:
                self.last_error = f"{type(err).__name__}: {err}"
                logger.exception("Command polling cycle failed")
            await asyncio.sleep(interval)

    def info(self) -> dict[str, Any]:
        return {
            "enabled": self.settings.command_polling_enabled,
            "interval_seconds": self.settings.command_polling_interval_seconds,
            "endpoint": f"{self.queue.base_url}/garlic/commands/pending",
            "player_id": self.current_player_id(),
            "last_poll_at": self.last_poll_at,
            "last_error": self.last_error,
            "recent": [o.to_dict() for o in self.recent_outcomes],
        }
