from __future__ import annotations

from dataclasses import replace
from io import BytesIO

import pytest
from aiohttp import web
from PIL import Image

from img_router.core.config import ImageStoreConfig, Settings


def make_image_bytes(fmt: str = "PNG", color=(200, 30, 60), size=(4, 4), **save_kwargs) -> bytes:
    img = Image.new("RGB", size, color)
    buf = BytesIO()
    img.save(buf, format=fmt, **save_kwargs)
    return buf.getvalue()


def add_image_store_routes(app: web.Application, files: dict) -> None:
    """在测试服务器上挂载一个最小化的 ImgBed 图床。"""

    async def upload(request: web.Request) -> web.Response:
        form = await request.post()
        field = form["file"]
        name = field.filename
        files[name] = (field.file.read(), field.content_type)
        files.setdefault("_queries", []).append(dict(request.query))
        return web.json_response([{"src": f"/file/{name}"}])

    async def serve(request: web.Request) -> web.Response:
        data, content_type = files[request.match_info["name"]]
        return web.Response(body=data, content_type=content_type)

    app.router.add_post("/upload", upload)
    app.router.add_get("/file/{name}", serve)


def settings_with_store(base_url: str, **overrides) -> Settings:
    store = ImageStoreConfig(base_url=base_url.rstrip("/"), auth_code="test-code")
    return replace(Settings(api_timeout=5, fetch_timeout=5), image_store=store, **overrides)


@pytest.fixture
def png_bytes() -> bytes:
    return make_image_bytes("PNG")


@pytest.fixture
def settings() -> Settings:
    return Settings(api_timeout=5, fetch_timeout=5)
