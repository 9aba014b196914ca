import dataclasses

import pytest
from aiohttp import web

from garlic_bridge.services.garlic import DeviceError, GarlicClient
from garlic_bridge.services.relay import RelayClient, RelayError
from garlic_bridge.services.uploader import UploadClient, UploadError, sanitize_player_id


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("abc-123.XYZ", "abc-123.XYZ"),
        ("dev 1/α?", "dev_1___"),
        ("a:b:c", "a_b_c"),
        ("", "unknown"),
        (None, "unknown"),
    ],
)
def test_sanitize_player_id(raw, expected):
    assert sanitize_player_id(raw) == expected


@pytest.mark.asyncio
async def test_relay_passes_status_and_body_through(serve):
    seen = {}

    async def handler(request: web.Request) -> web.Response:
        seen["method"] = request.method
        seen["content_type"] = request.headers.get("Content-Type")
        seen["body"] = await request.json() if request.can_read_body else None
        return web.json_response({"ok": False, "reason": "busy"}, status=503)

    app = web.Application()
    app.router.add_route("*", "/v2/thing", handler)
    server = await serve(app)

    status, data = await RelayClient(5).forward(str(server.make_url("/v2/thing")), "POST", {"x": 1})
    assert status == 503
    assert data == {"ok": False, "reason": "busy"}
    assert seen == {"method": "POST", "content_type": "application/json", "body": {"x": 1}}


@pytest.mark.asyncio
async def test_relay_get_sends_no_body(serve):
    seen = {}

    async def handler(request: web.Request) -> web.Response:
        seen["has_body"] = request.can_read_body
        return web.json_response([1, 2, 3])

    app = web.Application()
    app.router.add_get("/list", handler)
    server = await serve(app)

    status, data = await RelayClient(5).forward(str(server.make_url("/list")), "GET", {"ignored": True})
    assert (status, data) == (200, [1, 2, 3])
    assert seen["has_body"] is False


@pytest.mark.asyncio
async def test_relay_rejects_non_json(serve):
    async def handler(request: web.Request) -> web.Response:
        return web.Response(text="<html>nope</html>", content_type="text/html")

    app = web.Application()
    app.router.add_get("/page", handler)
    server = await serve(app)

    with pytest.raises(RelayError):
        await RelayClient(5).forward(str(server.make_url("/page")))


@pytest.mark.asyncio
async def test_relay_rejects_empty_body(serve):
    async def empty(request: web.Request) -> web.Response:
        return web.Response(status=200, body=b"")

    async def no_content(request: web.Request) -> web.Response:
        return web.Response(status=204)

    app = web.Application()
    app.router.add_get("/empty", empty)
    app.router.add_get("/no-content", no_content)
    server = await serve(app)

    with pytest.raises(RelayError, match=r"Empty response body \(HTTP 200\)"):
        await RelayClient(5).forward(str(server.make_url("/empty")), "GET")
    with pytest.raises(RelayError, match=r"Empty response body \(HTTP 204\)"):
        await RelayClient(5).forward(str(server.make_url("/no-content")), "GET")


@pytest.mark.asyncio
async def test_upload_sends_multipart_form(serve):
    received = {}

    async def handler(request: web.Request) -> web.Response:
        form = await request.post()
        image = form["image"]
        received["filename"] = image.filename
        received["image"] = image.file.read()
        received["player_id"] = form["player_id"]
        received["timestamp"] = form["timestamp"]
        return web.json_response({"data": {"url": "http://cdn/shot.jpg"}}, status=201)

    app = web.Application()
    app.router.add_post("/upload", handler)
    server = await serve(app)

    client = UploadClient(str(server.make_url("/upload")), 5)
    response = await client.upload(
        content=b"jpeg-bytes",
        filename="screenshot_x.jpg",
        player_id="dev/42",
        timestamp="2025-01-31T08-15-00",
    )
    assert response.ok
    assert response.data == {"data": {"url": "http://cdn/shot.jpg"}}
    assert received == {
        "filename": "screenshot_x.jpg",
        "image": b"jpeg-bytes",
        "player_id": "dev_42",
        "timestamp": "2025-01-31T08-15-00",
    }


@pytest.mark.asyncio
async def test_upload_wraps_non_json_response(serve):
    async def handler(request: web.Request) -> web.Response:
        return web.Response(text="gateway error", status=502)

    app = web.Application()
    app.router.add_post("/upload", handler)
    server = await serve(app)

    response = await UploadClient(str(server.make_url("/upload")), 5).upload(
        content=b"x", filename="a.jpg", player_id="p", timestamp="t"
    )
    assert response.status == 502
    assert not response.ok
    assert response.data == {"error": "Non-JSON response", "response_text": "gateway error"}


@pytest.mark.asyncio
async def test_upload_malformed_json_raises_upload_error(serve):
    async def handler(request: web.Request) -> web.Response:
        return web.Response(body=b"{not json", content_type="application/json")

    app = web.Application()
    app.router.add_post("/upload", handler)
    server = await serve(app)

    with pytest.raises(UploadError):
        await UploadClient(str(server.make_url("/upload")), 5).upload(
            content=b"x", filename="a.jpg", player_id="p", timestamp="t"
        )


@pytest.mark.asyncio
async def test_upload_without_url_fails():
    with pytest.raises(UploadError):
        await UploadClient("").upload(content=b"x", filename="a.jpg", player_id="p", timestamp="t")


def _player_app(counter: dict) -> web.Application:
    async def token(request: web.Request) -> web.Response:
        counter["token"] = counter.get("token", 0) + 1
        body = await request.json()
        assert body["grant_type"] == "password"
        assert body["username"] == "admin"
        return web.json_response({"access_token": "tok-1"})

    async def switch(request: web.Request) -> web.Response:
        counter["switch_token"] = request.query.get("access_token")
        counter["switch_body"] = await request.json()
        return web.json_response({"status": "ok"})

    async def screenshot(request: web.Request) -> web.Response:
        if request.query.get("access_token") != "tok-1":
            return web.Response(text="unauthorized", status=401)
        return web.Response(body=b"\xff\xd8image", content_type="image/jpeg")

    app = web.Application()
    app.router.add_post("/v2/oauth2/token", token)
    app.router.add_post("/v2/app/switch", switch)
    app.router.add_post("/v2/task/screenshot", screenshot)
    return app


@pytest.mark.asyncio
async def test_garlic_token_is_fetched_once(serve, settings):
    counter: dict = {}
    server = await serve(_player_app(counter))
    client = GarlicClient(dataclasses.replace(settings, garlic_ip="127.0.0.1", garlic_api_port=server.port))

    assert await client.reload_playlist() == {"status": "ok"}
    assert await client.take_screenshot() == b"\xff\xd8image"
    assert counter["token"] == 1
    assert counter["switch_token"] == "tok-1"
    assert counter["switch_body"] == {"mode": "start"}


@pytest.mark.asyncio
async def test_garlic_stale_token_is_not_refreshed(serve, settings):
    counter: dict = {}
    server = await serve(_player_app(counter))
    client = GarlicClient(dataclasses.replace(settings, garlic_ip="127.0.0.1", garlic_api_port=server.port))
    client.access_token = "expired"

    with pytest.raises(DeviceError, match="HTTP 401: unauthorized"):
        await client.take_screenshot()
    assert "token" not in counter


@pytest.mark.asyncio
async def test_garlic_failed_grant_raises(serve, settings):
    async def token(request: web.Request) -> web.Response:
        return web.json_response({"error": "invalid_grant"}, status=400)

    app = web.Application()
    app.router.add_post("/v2/oauth2/token", token)
    server = await serve(app)
    client = GarlicClient(dataclasses.replace(settings, garlic_ip="127.0.0.1", garlic_api_port=server.port))

    with pytest.raises(DeviceError, match="Failed to get Garlic Player access token"):
        await client.reload_playlist()
    assert client.access_token is None
