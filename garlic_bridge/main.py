from __future__ import annotations

import asyncio
import logging
import sys
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, AsyncGenerator

from dotenv import load_dotenv
from fastapi import APIRouter, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse
from fastapi.staticfiles import StaticFiles
from fastapi.templating import Jinja2Templates

from .config import Settings
from .models import ProxyRequest, ScreenshotRequest, UploadRequest
from .services.backend import CommandQueueClient
from .services.commands import CommandPoller
from .services.garlic import GarlicClient
from .services.relay import RelayClient, RelayError
from .services.screenshots import CaptureError, ScreenshotStore, UnsafePathError, capture
from .services.uploader import UploadClient, UploadError
from .store import PlayerIdentityStore, file_timestamp, persist_player_id

logger = logging.getLogger("garlic_bridge")

base_dir = Path(__file__).resolve().parent
templates = Jinja2Templates(directory=str(base_dir / "templates"))
router = APIRouter()


@dataclass
class RuntimeState:
    settings: Settings
    identities: PlayerIdentityStore
    relay: RelayClient
    screenshots: ScreenshotStore
    uploader: UploadClient
    garlic: GarlicClient
    commands: CommandPoller
    poller_task: asyncio.Task[None] | None = None

    @classmethod
    def build(cls, settings: Settings) -> "RuntimeState":
        identities = PlayerIdentityStore()
        screenshots = ScreenshotStore(settings.public_dir)
        uploader = UploadClient(settings.upload_api_url, settings.http_timeout_seconds)
        garlic = GarlicClient(settings)
        commands = CommandPoller(
            settings=settings,
            identities=identities,
            garlic=garlic,
            queue=CommandQueueClient(settings.adnova_api_base_url, settings.http_timeout_seconds),
            uploader=uploader,
            screenshots=screenshots,
        )
        return cls(
            settings=settings,
            identities=identities,
            relay=RelayClient(settings.http_timeout_seconds),
            screenshots=screenshots,
            uploader=uploader,
            garlic=garlic,
            commands=commands,
        )

    def current_player_id(self) -> str:
        return self.identities.current_player_id(self.settings.default_player_id)

    def frontend_config(self) -> dict[str, Any]:
        s = self.settings
        return {
            "auto_screenshot_enabled": s.auto_screenshot_enabled,
            "screenshot_interval_minutes": s.screenshot_interval_minutes,
            "upload_api_url": s.upload_api_url,
            "default_garlic_ip": s.garlic_ip,
            "default_garlic_username": s.garlic_username,
            "default_garlic_password": s.garlic_password,
            "default_player_id": self.current_player_id(),
        }

    def start_polling(self) -> None:
        if not self.settings.command_polling_enabled:
            logger.info("Command polling disabled (set COMMAND_POLLING_ENABLED=true to enable)")
            return
        self.poller_task = asyncio.create_task(self.commands.run(), name="garlic-command-poller")
        logger.info(
            "Command polling every %ss from %s",
            self.settings.command_polling_interval_seconds,
            self.commands.info()["endpoint"],
        )

    async def stop_polling(self) -> None:
        if self.poller_task:
            self.poller_task.cancel()
            await asyncio.gather(self.poller_task, return_exceptions=True)
            self.poller_task = None


def _runtime(request: Request) -> RuntimeState:
    return request.app.state.runtime


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    runtime = RuntimeState.build(app.state.settings)
    app.state.runtime = runtime
    runtime.screenshots.directory.mkdir(parents=True, exist_ok=True)
    logger.info("Screenshots directory: %s", runtime.screenshots.directory)
    logger.info("Upload endpoint: %s", runtime.settings.upload_api_url or "(not configured)")
    runtime.start_polling()
    yield
    await runtime.stop_polling()


@router.get("/healthz")
async def healthz() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/", response_class=HTMLResponse)
async def page_home(request: Request) -> HTMLResponse:
    runtime = _runtime(request)
    return templates.TemplateResponse(
        request,
        "index.html",
        {
            "config": runtime.frontend_config(),
            "identity": runtime.identities.current(),
            "polling": runtime.commands.info(),
        },
    )


@router.post("/api/proxy")
async def api_proxy(payload: ProxyRequest, request: Request) -> JSONResponse:
    runtime = _runtime(request)
    if not payload.target_url:
        return JSONResponse(status_code=400, content={"error": "Missing target_url"})
    try:
        status, data = await runtime.relay.forward(payload.target_url, payload.http_method, payload.body)
    except RelayError as err:
        logger.error("Proxy error for %s: %s", payload.target_url, err)
        return JSONResponse(
            status_code=500,
            content={"error": f"Proxy Error: {err}", "target_url": payload.target_url},
        )
    return JSONResponse(status_code=status, content=data)


@router.post("/api/screenshot")
async def api_screenshot(payload: ScreenshotRequest, request: Request) -> JSONResponse:
    runtime = _runtime(request)
    if not payload.target_url:
        return JSONResponse(status_code=400, content={"error": "Missing target_url"})
    try:
        result = await capture(payload.target_url, timeout_seconds=runtime.settings.http_timeout_seconds)
        if not result.ok:
            return JSONResponse(
                status_code=result.status,
                content={"error": f"HTTP Error: {result.status}", "response": result.text},
            )
        saved = runtime.screenshots.save(result.content)
    except (CaptureError, OSError) as err:
        logger.error("Screenshot error for %s: %s", payload.target_url, err)
        return JSONResponse(
            status_code=500,
            content={"error": f"Screenshot Error: {err}", "target_url": payload.target_url},
        )
    return JSONResponse(
        status_code=200,
        content={"success": True, **saved.to_dict(), "content_type": result.content_type},
    )


@router.post("/api/upload-to-api")
async def api_upload_to_api(payload: UploadRequest, request: Request) -> JSONResponse:
    runtime = _runtime(request)
    if not payload.filepath:
        return JSONResponse(status_code=400, content={"error": "Missing filepath"})
    if not runtime.uploader.configured:
        logger.error("UPLOAD_API_URL not configured")
        return JSONResponse(status_code=500, content={"error": "UPLOAD_API_URL not configured"})
    try:
        path, content = runtime.screenshots.read(payload.filepath)
        response = await runtime.uploader.upload(
            content=content,
            filename=path.name,
            player_id=payload.player_id,
            timestamp=file_timestamp(),
        )
    except UnsafePathError as err:
        return JSONResponse(status_code=400, content={"error": str(err)})
    except (OSError, UploadError) as err:
        logger.exception("Upload to API failed for %s", payload.filepath)
        return JSONResponse(status_code=500, content={"error": f"Upload to API Error: {err}"})

    if not response.ok:
        logger.error("Upload failed: status=%s details=%s", response.status, response.data)
        return JSONResponse(
            status_code=response.status,
            content={"error": "Upload failed", "status": response.status, "details": response.data},
        )
    return JSONResponse(
        status_code=200,
        content={
            "success": True,
            "message": "Screenshot uploaded to API successfully",
            "api_response": response.data,
        },
    )


@router.put("/get-uuid-player/{player_id}/{filename}")
async def api_player_callback(player_id: str, filename: str, request: Request) -> dict[str, Any]:
    runtime = _runtime(request)
    ip_address = request.client.host if request.client else ""
    runtime.identities.record(player_id, filename, ip_address)
    logger.info("Player identity received: player_id=%s filename=%s ip=%s", player_id, filename, ip_address)
    if runtime.settings.auto_update_env_player_id:
        await asyncio.to_thread(persist_player_id, runtime.settings.env_file, player_id)
    return {
        "success": True,
        "message": "Player ID received and stored",
        "player_id": player_id,
        "filename": filename,
    }


@router.get("/api/get-player-id/{player_id}")
async def api_get_player_id(player_id: str, request: Request) -> JSONResponse:
    identity = _runtime(request).identities.get(player_id)
    if not identity:
        return JSONResponse(status_code=404, content={"success": False, "message": "Player ID not found"})
    return JSONResponse(content={"success": True, "data": identity.to_dict()})


@router.get("/api/list-player-ids")
async def api_list_player_ids(request: Request) -> dict[str, Any]:
    players = [identity.to_dict() for identity in _runtime(request).identities.list_all()]
    return {"success": True, "count": len(players), "players": players}


@router.get("/api/get-player-id-by-ip/{ip}")
async def api_get_player_id_by_ip(ip: str, request: Request) -> JSONResponse:
    identity = _runtime(request).identities.find_by_ip(ip)
    if not identity:
        return JSONResponse(
            status_code=404,
            content={"success": False, "message": f"No player_id found for IP: {ip}"},
        )
    return JSONResponse(content={"success": True, "data": identity.to_dict()})


@router.get("/api/get-current-player-id")
async def api_get_current_player_id(request: Request) -> JSONResponse:
    identity = _runtime(request).identities.current()
    if not identity:
        return JSONResponse(
            status_code=404,
            content={
                "success": False,
                "message": "No player_id stored yet. Waiting for Garlic Player to send UUID...",
            },
        )
    return JSONResponse(content={"success": True, "data": identity.to_dict()})


@router.get("/api/config")
async def api_config(request: Request) -> dict[str, Any]:
    return _runtime(request).frontend_config()


@router.get("/api/commands/status")
async def api_commands_status(request: Request) -> dict[str, Any]:
    runtime = _runtime(request)
    info = runtime.commands.info()
    info["running"] = bool(runtime.poller_task and not runtime.poller_task.done())
    return info


async def request_validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    details: list[str] = []
    for err in exc.errors():
        field = ".".join([str(x) for x in err.get("loc", []) if x != "body"]) or "request"
        details.append(f"{field}: {err.get('msg', 'Invalid value')}")
    return JSONResponse(
        status_code=422,
        content={"error": "validation_error", "detail": "; ".join(details) or "Invalid request data."},
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled API error: %s", exc)
    return JSONResponse(status_code=500, content={"error": "internal_error"})


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or Settings()
    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.state.settings = settings
    app.add_middleware(CORSMiddleware, allow_origins=["*"], allow_methods=["*"], allow_headers=["*"])
    app.include_router(router)
    app.add_exception_handler(RequestValidationError, request_validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    app.mount(
        "/screenshots",
        StaticFiles(directory=settings.screenshots_dir, check_dir=False),
        name="screenshots",
    )
    return app


def setup_logging(level: str) -> None:
    root_logger = logging.getLogger("garlic_bridge")
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    root_logger.addHandler(handler)


load_dotenv()
app = create_app()


def run() -> None:
    import uvicorn

    settings: Settings = app.state.settings
    setup_logging(settings.log_level)
    logger.info("Starting %s on http://%s:%s", settings.app_name, settings.host, settings.port)
    uvicorn.run(app, host=settings.host, port=settings.port)


if __name__ == "__main__":
    run()
