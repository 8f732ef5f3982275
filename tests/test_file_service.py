import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from assetflow.core.dto import BinaryPayload
from assetflow.core.errors import FetchError, UploadError, UploadErrorCategory
from assetflow.core.file_service import FileService
from assetflow.core.http_client import HttpClient, HttpClientConfig


def build_app(state):
    async def get_file(request):
        file_id = request.match_info["file_id"]
        if file_id == "missing":
            return web.json_response({"message": "not found"}, status=404)
        state["auth"] = request.headers.get("Authorization")
        return web.Response(body=b"\x89PNG-bytes", content_type="image/png")

    async def upload(request):
        mode = request.match_info["mode"]
        form = await request.post()
        state["form"] = {k: v for k, v in form.items() if k != "file"}
        state["file"] = form["file"]
        state["auth"] = request.headers.get("Authorization")
        if mode == "ok":
            return web.json_response([{"fieldId": "f-1", "fileName": form["file"].filename}])
        if mode == "invalid":
            return web.json_response({"message": "File type not allowed"}, status=422)
        if mode == "plain":
            return web.Response(text="teapot", status=418)
        return web.json_response({}, status=int(mode))

    async def upload_logs(request):
        state["polls"] = state.get("polls", 0) + 1
        count = min(state["polls"], 3)
        return web.json_response([f"line {i}" for i in range(1, count + 1)])

    app = web.Application()
    app.router.add_get("/api/file/upload-logs/{session_id}", upload_logs)
    app.router.add_get("/api/file/{file_id}", get_file)
    app.router.add_post("/upload/{mode}", upload)
    return app


@pytest.fixture
async def server():
    state = {}
    srv = TestServer(build_app(state))
    await srv.start_server()
    srv.state = state
    yield srv
    await srv.close()


@pytest.fixture
async def make_service(server):
    services = []

    def factory(mode="ok", token="secret"):
        svc = FileService(
            str(server.make_url("/api")),
            str(server.make_url(f"/upload/{mode}")),
            http_client=HttpClient(HttpClientConfig(connect_timeout=5, read_timeout=5)),
            token_provider=lambda: token,
            log_poll_interval=0.01,
        )
        services.append(svc)
        return svc

    yield factory
    for svc in services:
        await svc.close()


async def test_fetch_asset_returns_bytes_and_mime(make_service, server):
    payload = await make_service().fetch_asset("abc")

    assert payload == BinaryPayload(b"\x89PNG-bytes", "image/png")
    assert server.state["auth"] == "Bearer secret"


async def test_fetch_asset_maps_http_error(make_service):
    with pytest.raises(FetchError) as exc:
        await make_service().fetch_asset("missing")

    assert exc.value.status == 404
    assert exc.value.asset_id == "missing"


async def test_upload_sends_multipart_and_parses_ids(make_service, server):
    svc = make_service()

    result = await svc.upload_file(
        BinaryPayload(b"jpeg", "image/jpeg"),
        {"eventId": "e1", "tags": ["a", "b"], "skip": None},
        file_name="photo.jpg",
        session_id="s1",
    )

    assert result.file_ids == ["f-1"]
    assert result.file_name == "photo.jpg"
    assert server.state["form"] == {"eventId": "e1", "tags": '["a", "b"]', "sessionId": "s1"}
    assert server.state["file"].filename == "photo.jpg"
    assert server.state["auth"] == "Bearer secret"


@pytest.mark.parametrize(
    "mode, category",
    [
        ("401", UploadErrorCategory.AUTH),
        ("403", UploadErrorCategory.FORBIDDEN),
        ("500", UploadErrorCategory.SERVER),
        ("503", UploadErrorCategory.SERVER),
        ("invalid", UploadErrorCategory.VALIDATION),
    ],
)
async def test_upload_status_mapping(make_service, mode, category):
    with pytest.raises(UploadError) as exc:
        await make_service(mode).upload_file(BinaryPayload(b"x"), file_name="x.bin")

    assert exc.value.category == category


async def test_upload_uses_server_message(make_service):
    with pytest.raises(UploadError) as exc:
        await make_service("invalid").upload_file(BinaryPayload(b"x"), file_name="x.bin")

    assert str(exc.value) == "File type not allowed"
    assert exc.value.status == 422


async def test_upload_without_message_uses_generic_text(make_service):
    with pytest.raises(UploadError) as exc:
        await make_service("plain").upload_file(BinaryPayload(b"x"), file_name="x.bin")

    assert str(exc.value) == "upload failed"
    assert exc.value.category == UploadErrorCategory.VALIDATION


async def test_unreachable_server_is_connectivity_error():
    svc = FileService(
        "http://127.0.0.1:9/api",
        http_client=HttpClient(HttpClientConfig(connect_timeout=2, read_timeout=2)),
    )
    try:
        with pytest.raises(UploadError) as exc:
            await svc.upload_file(BinaryPayload(b"x"), file_name="x.bin")
    finally:
        await svc.close()

    assert exc.value.category == UploadErrorCategory.CONNECTIVITY
    assert exc.value.status is None


async def test_stream_upload_log_yields_each_line_once(make_service):
    stream = make_service().stream_upload_log("s1")

    lines = [await stream.__anext__() for _ in range(3)]
    await stream.aclose()

    assert lines == ["line 1", "line 2", "line 3"]


async def test_requests_without_token_have_no_auth_header(make_service, server):
    await make_service(token=None).fetch_asset("abc")

    assert server.state["auth"] is None
