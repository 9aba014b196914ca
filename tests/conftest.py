import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer

from garlic_bridge.config import Settings


@pytest.fixture
def settings(tmp_path):
    return Settings(
        public_dir=str(tmp_path / "public"),
        env_file=str(tmp_path / ".env"),
        upload_api_url="",
        default_player_id="",
        auto_update_env_player_id=False,
        command_polling_enabled=False,
        http_timeout_seconds=5,
    )


@pytest_asyncio.fixture
async def serve():
    """Start an in-process aiohttp app standing in for the player or backend."""
    servers: list[TestServer] = []

    async def _start(app: web.Application) -> TestServer:
        server = TestServer(app, host="127.0.0.1")
        await server.start_server()
        servers.append(server)
        return server

    yield _start
    for server in servers:
        await server.close()
