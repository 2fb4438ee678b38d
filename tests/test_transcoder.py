import asyncio
import socket
from io import BytesIO

import aiohttp
import pytest
from aiohttp import web
from PIL import Image

from conftest import add_image_store_routes, make_image_bytes
from img_router.core.config import ImageStoreConfig
from img_router.core.errors import SecurityError, VendorError
from img_router.core.transcoder import (
    ImageTranscoder,
    check_resolved_host,
    check_url_safety,
    collect_converted,
    detect_mime_type,
    parse_ip_literal,
    resolve_mime_type,
)
from img_router.core.types import ConversionOutcome, InlineData, RemoteURL


@pytest.mark.parametrize(
    "url",
    [
        "http://127.0.0.1/x",
        "http://localhost:8080/x",
        "http://10.1.2.3/x",
        "http://172.16.0.5/x",
        "http://192.168.1.1/x",
        "http://169.254.169.254/latest/meta-data",
        "http://printer.local/x",
        "http://metadata.google.internal/x",
        "http://[::1]/x",
        "http://[::ffff:127.0.0.1]/x",
        "http://0x7f000001/x",
        "http://2130706433/x",
        "http://127.1/x",
        "http://0/x",
        "http://0xa000001/x",
        "ftp://example.com/x.png",
        "file:///etc/passwd",
    ],
)
def test_ssrf_guard_blocks(url):
    with pytest.raises(SecurityError):
        check_url_safety(url)


@pytest.mark.parametrize(
    "url",
    [
        "https://example.com/a.png",
        "http://172.32.0.1/x",
        "https://ark.cn-beijing.volces.com/img.png",
        "https://luca115-z-image-turbo.hf.space/gradio_api/file=x.png",
    ],
)
def test_ssrf_guard_allows(url):
    check_url_safety(url)


def test_store_host_bypasses_private_checks():
    check_url_safety("http://127.0.0.1:9000/file/a.png", store_host="127.0.0.1")


def test_parse_ip_literal_normalizes_ipv4_shorthand():
    assert str(parse_ip_literal("0x7f000001")) == "127.0.0.1"
    assert str(parse_ip_literal("2130706433")) == "127.0.0.1"
    assert str(parse_ip_literal("127.1")) == "127.0.0.1"
    assert parse_ip_literal("example.com") is None


@pytest.mark.asyncio
async def test_hex_loopback_is_not_fetched(aiohttp_server, png_bytes):
    # Setup
    fetched = []

    async def secret(request):
        fetched.append(request.path)
        return web.Response(body=png_bytes, content_type="image/png")

    app = web.Application()
    app.router.add_get("/secret.png", secret)
    server = await aiohttp_server(app)

    # Execute
    async with aiohttp.ClientSession() as session:
        transcoder = ImageTranscoder(session, ImageStoreConfig())
        with pytest.raises(SecurityError):
            await transcoder.remote_to_inline(f"http://0x7f000001:{server.port}/secret.png")

    # Verify
    assert fetched == []


def _fake_resolver(address):
    async def getaddrinfo(host, port, **kwargs):
        return [(socket.AF_INET, socket.SOCK_STREAM, 6, "", (address, 0))]

    return getaddrinfo


@pytest.mark.asyncio
async def test_hostname_resolving_to_private_address_is_blocked(monkeypatch):
    loop = asyncio.get_running_loop()
    monkeypatch.setattr(loop, "getaddrinfo", _fake_resolver("10.0.0.8"))

    with pytest.raises(SecurityError):
        await check_resolved_host("http://images.example.net/a.png")


@pytest.mark.asyncio
async def test_hostname_resolving_to_public_address_passes(monkeypatch):
    loop = asyncio.get_running_loop()
    monkeypatch.setattr(loop, "getaddrinfo", _fake_resolver("93.184.216.34"))

    await check_resolved_host("http://images.example.net/a.png")


@pytest.mark.asyncio
async def test_store_host_skips_resolution(monkeypatch):
    async def fail(*args, **kwargs):
        raise AssertionError("resolver should not be called")

    loop = asyncio.get_running_loop()
    monkeypatch.setattr(loop, "getaddrinfo", fail)

    await check_resolved_host("http://imgbed.example.com/file/a.png", store_host="imgbed.example.com")


def test_detect_mime_type(png_bytes):
    assert detect_mime_type(png_bytes) == "image/png"
    assert detect_mime_type(make_image_bytes("JPEG")) == "image/jpeg"
    assert detect_mime_type(make_image_bytes("GIF")) == "image/gif"
    assert detect_mime_type(make_image_bytes("WEBP")) == "image/webp"
    assert detect_mime_type(make_image_bytes("BMP")) == "image/bmp"
    assert detect_mime_type(b"not an image") is None


def test_resolve_mime_type_order():
    unknown = b"\x00\x01\x02"
    assert resolve_mime_type(unknown, "image/jpeg; charset=binary", "https://x/a.gif") == "image/jpeg"
    assert resolve_mime_type(unknown, "application/octet-stream", "https://x/a.gif") == "image/gif"
    assert resolve_mime_type(unknown, None, "https://x/a") == "image/png"


@pytest.mark.asyncio
async def test_remote_to_inline_rejects_loopback():
    async with aiohttp.ClientSession() as session:
        transcoder = ImageTranscoder(session, ImageStoreConfig())
        with pytest.raises(SecurityError):
            await transcoder.remote_to_inline("http://127.0.0.1/x")


async def _store_server(aiohttp_server):
    files: dict = {}
    app = web.Application()
    add_image_store_routes(app, files)
    server = await aiohttp_server(app)
    store = ImageStoreConfig(base_url=str(server.make_url("")).rstrip("/"), auth_code="secret")
    return server, store, files


@pytest.mark.asyncio
async def test_png_round_trip_is_byte_identical(aiohttp_server, png_bytes):
    # Setup
    server, store, files = await _store_server(aiohttp_server)

    async with aiohttp.ClientSession() as session:
        transcoder = ImageTranscoder(session, store)

        # Execute
        remote = await transcoder.inline_to_remote(InlineData(png_bytes, "image/png"))
        inline = await transcoder.remote_to_inline(remote.url)

    # Verify
    assert remote.url.startswith(store.base_url + "/file/")
    assert remote.url.endswith(".png")
    assert inline.data == png_bytes
    assert inline.mime_type == "image/png"
    assert files["_queries"][0]["authCode"] == "secret"


@pytest.mark.asyncio
async def test_webp_round_trip_returns_png_with_same_pixels(aiohttp_server):
    server, store, files = await _store_server(aiohttp_server)
    source = Image.new("RGB", (3, 2), (10, 120, 250))
    buf = BytesIO()
    source.save(buf, format="WEBP", lossless=True)
    webp_bytes = buf.getvalue()

    async with aiohttp.ClientSession() as session:
        transcoder = ImageTranscoder(session, store)
        remote = await transcoder.inline_to_remote(InlineData(webp_bytes, "image/webp"))
        inline = await transcoder.remote_to_inline(remote.url)

    assert remote.url.endswith(".webp")
    assert inline.mime_type == "image/png"
    assert detect_mime_type(inline.data) == "image/png"
    decoded = Image.open(BytesIO(inline.data)).convert("RGB")
    assert decoded.size == source.size
    assert decoded.tobytes() == source.tobytes()


@pytest.mark.asyncio
async def test_unknown_mime_uploads_as_png(aiohttp_server):
    server, store, files = await _store_server(aiohttp_server)

    async with aiohttp.ClientSession() as session:
        transcoder = ImageTranscoder(session, store)
        remote = await transcoder.inline_to_remote(InlineData(b"raw", "image/x-unknown"))

    assert remote.url.endswith(".png")


@pytest.mark.asyncio
async def test_upload_without_src_fails(aiohttp_server):
    async def upload(request):
        return web.json_response([{"error": "quota"}])

    app = web.Application()
    app.router.add_post("/upload", upload)
    server = await aiohttp_server(app)
    store = ImageStoreConfig(base_url=str(server.make_url("")).rstrip("/"))

    async with aiohttp.ClientSession() as session:
        transcoder = ImageTranscoder(session, store)
        with pytest.raises(VendorError):
            await transcoder.inline_to_remote(InlineData(b"x", "image/png"))


@pytest.mark.asyncio
async def test_upload_non_2xx_fails(aiohttp_server):
    async def upload(request):
        return web.Response(status=403, text="bad auth code")

    app = web.Application()
    app.router.add_post("/upload", upload)
    server = await aiohttp_server(app)
    store = ImageStoreConfig(base_url=str(server.make_url("")).rstrip("/"))

    async with aiohttp.ClientSession() as session:
        transcoder = ImageTranscoder(session, store)
        with pytest.raises(VendorError) as exc_info:
            await transcoder.inline_to_remote(InlineData(b"x", "image/png"))

    assert exc_info.value.detail == "bad auth code"


@pytest.mark.asyncio
async def test_undecodable_error_bodies_become_failed_outcomes(aiohttp_server, png_bytes):
    # Setup
    async def broken(request):
        return web.Response(status=404, body=b"\xff\xfe\xfa\x00\x81")

    async def upload(request):
        return web.Response(status=500, body=b"\xff\xfe\xfa")

    app = web.Application()
    app.router.add_get("/broken.png", broken)
    app.router.add_post("/upload", upload)
    server = await aiohttp_server(app)
    base = str(server.make_url("")).rstrip("/")
    store = ImageStoreConfig(base_url=base)

    # Execute
    async with aiohttp.ClientSession() as session:
        transcoder = ImageTranscoder(session, store)
        to_inline = await transcoder.to_inline_batch(
            [RemoteURL(f"{base}/broken.png"), InlineData(png_bytes, "image/png")]
        )
        to_remote = await transcoder.to_remote(InlineData(png_bytes, "image/png"))

    # Verify
    assert not to_inline[0].ok and not to_inline[0].blocked
    assert to_inline[1].converted == InlineData(png_bytes, "image/png")
    assert not to_remote.ok


@pytest.mark.asyncio
async def test_batch_conversion_preserves_order_and_tags_failures(aiohttp_server, png_bytes):
    server, store, files = await _store_server(aiohttp_server)
    refs = [
        InlineData(png_bytes, "image/png"),
        RemoteURL("http://10.0.0.1/private.png"),
        RemoteURL("https://example.com/already-remote.png"),
    ]

    async with aiohttp.ClientSession() as session:
        transcoder = ImageTranscoder(session, store, concurrency=2)
        to_remote = await transcoder.to_remote_batch(refs)
        to_inline = await transcoder.to_inline_batch(refs[:2])

    assert to_remote[0].ok and isinstance(to_remote[0].converted, RemoteURL)
    assert to_remote[1].converted == refs[1]
    assert to_remote[2].converted == refs[2]
    assert to_inline[0].converted == InlineData(png_bytes, "image/png")
    assert to_inline[1].is_fallback and to_inline[1].blocked
    assert to_inline[1].original == refs[1]


def test_collect_converted_policies():
    good = ConversionOutcome(original=RemoteURL("a"), converted=InlineData(b"1"))
    bad = ConversionOutcome(original=RemoteURL("b"), error="boom")

    assert collect_converted([good, bad], keep_original=False) == [InlineData(b"1")]
    assert collect_converted([good, bad], keep_original=True) == [InlineData(b"1"), RemoteURL("b")]


def test_collect_converted_sole_blocked_image_escalates():
    blocked = ConversionOutcome(original=RemoteURL("http://10.0.0.1/x"), error="blocked", blocked=True)
    with pytest.raises(VendorError):
        collect_converted([blocked], keep_original=False)


@pytest.mark.asyncio
async def test_broken_webp_is_returned_unchanged():
    from img_router.core.transcoder import convert_webp_to_png

    broken = InlineData(b"RIFF\x00\x00\x00\x00WEBPgarbage", "image/webp")
    assert await convert_webp_to_png(broken) is broken
