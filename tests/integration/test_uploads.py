"""Integration tests for the upload endpoint.

Tests verify:
- Accepted uploads are stored and served back
- Type, size and presence checks with machine-readable codes
- Attachments disabled by the live server settings
"""

from collections.abc import AsyncGenerator
from pathlib import Path
from typing import Any

import pytest
from aiohttp import FormData, web
from aiohttp.test_utils import TestClient, TestServer

from chatserver.config import UploadConfig
from chatserver.metrics import MetricsCollector
from chatserver.models import ServerSettings
from chatserver.uploads import setup_upload_routes


class SettingsHolder:
    def __init__(self) -> None:
        self.settings = ServerSettings()

    def __call__(self) -> ServerSettings:
        return self.settings


@pytest.fixture
def upload_dir(tmp_path: Path) -> Path:
    return tmp_path / "uploads"


@pytest.fixture
def settings() -> SettingsHolder:
    return SettingsHolder()


@pytest.fixture
async def client(upload_dir: Path, settings: SettingsHolder) -> AsyncGenerator[Any, None]:
    app = web.Application()
    setup_upload_routes(
        app, UploadConfig(directory=upload_dir, max_size_bytes=1024), settings
    )
    async with TestClient(TestServer(app)) as client:
        yield client


def form(content: bytes, filename: str, content_type: str, field: str = "file") -> FormData:
    data = FormData()
    data.add_field(field, content, filename=filename, content_type=content_type)
    return data


@pytest.mark.integration
@pytest.mark.asyncio
async def test_upload_and_download(
    client: Any, upload_dir: Path, fresh_metrics: MetricsCollector
) -> None:
    resp = await client.post("/upload", data=form(b"hello notes", "Notes.TXT", "text/plain"))
    assert resp.status == 200

    body = await resp.json()
    assert body["originalname"] == "Notes.TXT"
    assert body["mimetype"] == "text/plain"
    assert body["size"] == 11
    assert body["filename"].endswith(".txt")
    assert body["url"] == f"/uploads/{body['filename']}"
    assert (upload_dir / body["filename"]).read_bytes() == b"hello notes"

    served = await client.get(body["url"])
    assert served.status == 200
    assert await served.read() == b"hello notes"

    assert fresh_metrics.get_summary()["uploads_accepted"] == 1


@pytest.mark.integration
@pytest.mark.asyncio
async def test_stored_names_are_unique(client: Any) -> None:
    first = await (await client.post("/upload", data=form(b"a", "a.png", "image/png"))).json()
    second = await (await client.post("/upload", data=form(b"b", "a.png", "image/png"))).json()

    assert first["filename"] != second["filename"]


@pytest.mark.integration
@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("filename", "content_type"),
    [
        ("script.exe", "application/octet-stream"),
        ("image.png", "application/x-msdownload"),
        ("virus.exe", "image/png"),
        ("noextension", "text/plain"),
    ],
)
async def test_invalid_file_type(
    client: Any, upload_dir: Path, filename: str, content_type: str
) -> None:
    resp = await client.post("/upload", data=form(b"data", filename, content_type))

    assert resp.status == 400
    assert (await resp.json())["code"] == "INVALID_FILE_TYPE"
    assert list(upload_dir.iterdir()) == []


@pytest.mark.integration
@pytest.mark.asyncio
async def test_file_too_large(client: Any, upload_dir: Path) -> None:
    resp = await client.post("/upload", data=form(b"x" * 2048, "big.txt", "text/plain"))

    assert resp.status == 413
    assert (await resp.json())["code"] == "FILE_TOO_LARGE"
    assert list(upload_dir.iterdir()) == []


@pytest.mark.integration
@pytest.mark.asyncio
async def test_no_file(client: Any) -> None:
    resp = await client.post("/upload", data=form(b"data", "a.txt", "text/plain", field="other"))

    assert resp.status == 400
    assert (await resp.json())["code"] == "NO_FILE"


@pytest.mark.integration
@pytest.mark.asyncio
async def test_not_multipart(client: Any) -> None:
    resp = await client.post("/upload", json={"file": "inline"})

    assert resp.status == 400
    assert (await resp.json())["code"] == "NO_FILE"


@pytest.mark.integration
@pytest.mark.asyncio
async def test_attachments_disabled(client: Any, settings: SettingsHolder) -> None:
    settings.settings = ServerSettings(allow_attachments=False)

    resp = await client.post("/upload", data=form(b"data", "a.txt", "text/plain"))

    assert resp.status == 403
    assert (await resp.json())["code"] == "ATTACHMENTS_DISABLED"
