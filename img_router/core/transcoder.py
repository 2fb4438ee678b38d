"""
Image transcoding for img-router
远程 URL 与内联二进制图片之间的双向转换、格式识别、SSRF 检查与图床上传
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import ipaddress
import json
import logging
import posixpath
import socket
import uuid
from io import BytesIO
from typing import Awaitable, Callable, Union
from urllib.parse import urljoin, urlparse

import aiohttp
from PIL import Image

from .config import ImageStoreConfig
from .constants import (
    DEFAULT_CONVERSION_CONCURRENCY,
    DEFAULT_FETCH_TIMEOUT,
    LOG_PREFIX,
    MIME_EXTENSIONS,
    SUFFIX_MIME_TYPES,
    TRUSTED_VENDOR_HOSTS,
)
from .errors import SecurityError, VendorError
from .types import ConversionOutcome, ImageRef, InlineData, RemoteURL

logger = logging.getLogger(__name__)

MAX_REDIRECTS = 3

_BLOCKED_SUFFIXES = (".local", ".internal", ".localhost")

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]


def detect_mime_type(data: bytes) -> str | None:
    """
    通过文件头检测图片 MIME 类型

    Args:
        data: 图片二进制数据

    Returns:
        str | None: MIME 类型，无法识别时返回 None
    """
    mime = None
    if data.startswith(b"\x89PNG\r\n\x1a\n"):
        mime = "image/png"
    elif data.startswith(b"\xff\xd8\xff"):
        mime = "image/jpeg"
    elif data.startswith(b"GIF87a") or data.startswith(b"GIF89a"):
        mime = "image/gif"
    elif data.startswith(b"RIFF") and data[8:12] == b"WEBP":
        mime = "image/webp"
    elif data.startswith(b"BM"):
        mime = "image/bmp"

    logger.debug(f"{LOG_PREFIX} [Transcoder] Detected MIME type: {mime}")
    return mime


def resolve_mime_type(data: bytes, content_type: str | None, url: str) -> str:
    """文件头 -> Content-Type -> URL 后缀 -> image/png。"""
    mime = detect_mime_type(data)
    if mime:
        return mime

    if content_type:
        header_mime = content_type.split(";", 1)[0].strip().lower()
        if header_mime.startswith("image/"):
            return header_mime

    suffix = posixpath.splitext(urlparse(url).path)[1].lower()
    return SUFFIX_MIME_TYPES.get(suffix, "image/png")


def parse_data_uri(src: str) -> InlineData | None:
    """解码 data URI，格式错误返回 None。"""
    if not src.startswith("data:") or ";base64," not in src:
        return None
    header, _, payload = src.partition(";base64,")
    try:
        data = base64.b64decode(payload.strip(), validate=False)
    except (binascii.Error, ValueError):
        return None
    if not data:
        return None
    mime = header[len("data:"):].strip().lower() or None
    return InlineData(data=data, mime_type=detect_mime_type(data) or mime or "image/png")


def to_image_ref(src: str) -> ImageRef | None:
    """将字符串形式的图片地址转为 ImageRef。"""
    src = src.strip()
    if not src:
        return None
    if src.startswith("data:"):
        return parse_data_uri(src)
    return RemoteURL(src)


def _host_matches(host: str, domains: tuple[str, ...]) -> bool:
    return any(host == d or host.endswith("." + d) for d in domains)


def check_url_safety(
    url: str,
    store_host: str = "",
    trusted_hosts: tuple[str, ...] = TRUSTED_VENDOR_HOSTS,
) -> None:
    """SSRF 检查，不通过时抛出 SecurityError。

    图床域名始终放行；官方渠道域名不做内网检查。
    """
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https"):
        raise SecurityError(f"不允许的协议: {parsed.scheme or '(empty)'}")

    host = (parsed.hostname or "").lower().rstrip(".")
    if not host:
        raise SecurityError("URL 缺少主机名")

    if store_host and host == store_host:
        return
    if _host_matches(host, trusted_hosts):
        return

    if host == "localhost" or host.endswith(_BLOCKED_SUFFIXES):
        raise SecurityError(f"禁止访问内网主机: {host}")

    ip = parse_ip_literal(host)
    if ip is not None:
        _ensure_public(ip, host)


def parse_ip_literal(host: str) -> IPAddress | None:
    """解析 IP 字面量，包括十六进制、十进制整数和省略写法的 IPv4（如 0x7f000001、127.1）。"""
    try:
        return ipaddress.ip_address(host)
    except ValueError:
        pass
    try:
        packed = socket.inet_aton(host)
    except OSError:
        return None
    return ipaddress.IPv4Address(packed)


def _ensure_public(ip: IPAddress, host: str) -> None:
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        ip = ip.ipv4_mapped
    if (
        ip.is_loopback
        or ip.is_private
        or ip.is_link_local
        or ip.is_unspecified
        or ip.is_reserved
        or ip.is_multicast
    ):
        raise SecurityError(f"禁止访问内网地址: {host} ({ip})")


async def check_resolved_host(
    url: str,
    store_host: str = "",
    trusted_hosts: tuple[str, ...] = TRUSTED_VENDOR_HOSTS,
) -> None:
    """解析域名并检查所有解析结果，任一地址为内网地址时抛出 SecurityError。"""
    host = (urlparse(url).hostname or "").lower().rstrip(".")
    if not host or (store_host and host == store_host) or _host_matches(host, trusted_hosts):
        return
    if parse_ip_literal(host) is not None:
        return

    loop = asyncio.get_running_loop()
    try:
        infos = await loop.getaddrinfo(host, None, type=socket.SOCK_STREAM)
    except OSError as e:
        raise VendorError(f"无法解析图片主机: {host}") from e

    for info in infos:
        _ensure_public(ipaddress.ip_address(info[4][0]), host)


def _sync_convert_to_png(image_data: bytes) -> bytes:
    """同步的 PNG 转换逻辑（在线程池中执行）"""
    img = Image.open(BytesIO(image_data))
    if img.mode not in ("RGB", "RGBA", "L", "LA", "P"):
        img = img.convert("RGBA")
    output = BytesIO()
    img.save(output, format="PNG")
    return output.getvalue()


async def convert_webp_to_png(image: InlineData) -> InlineData:
    """
    将 WEBP 转为 PNG，转换失败时原样返回

    Args:
        image: 原始图片

    Returns:
        InlineData: 转换后的图片
    """
    if image.mime_type != "image/webp":
        return image
    try:
        converted = await asyncio.to_thread(_sync_convert_to_png, image.data)
    except Exception as e:  # noqa: BLE001
        logger.warning(f"{LOG_PREFIX} [Transcoder] WEBP 转 PNG 失败，保留原图: {e}")
        return image
    logger.debug(f"{LOG_PREFIX} [Transcoder] WEBP 转 PNG 成功: {len(converted)} bytes")
    return InlineData(data=converted, mime_type="image/png")


class ImageTranscoder:
    """图片表示转换器，使用调用方持有的 HTTP 会话。"""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        image_store: ImageStoreConfig,
        timeout: float = DEFAULT_FETCH_TIMEOUT,
        concurrency: int = DEFAULT_CONVERSION_CONCURRENCY,
        trusted_hosts: tuple[str, ...] = TRUSTED_VENDOR_HOSTS,
        log_prefix: str = LOG_PREFIX,
    ):
        self.session = session
        self.image_store = image_store
        self.timeout = timeout
        self.concurrency = max(1, concurrency)
        self.trusted_hosts = trusted_hosts
        self.prefix = f"{log_prefix} [Transcoder]"

    def _client_timeout(self) -> aiohttp.ClientTimeout:
        return aiohttp.ClientTimeout(total=self.timeout)

    async def remote_to_inline(self, url: str) -> InlineData:
        """下载远程图片并识别格式，WEBP 自动转为 PNG。"""
        current = url
        for _ in range(MAX_REDIRECTS + 1):
            check_url_safety(current, self.image_store.host, self.trusted_hosts)
            await check_resolved_host(current, self.image_store.host, self.trusted_hosts)
            try:
                async with self.session.get(
                    current,
                    timeout=self._client_timeout(),
                    allow_redirects=False,
                ) as resp:
                    if resp.status in (301, 302, 303, 307, 308):
                        location = resp.headers.get("Location")
                        if not location:
                            raise VendorError(f"图片下载重定向缺少 Location: {current}")
                        current = urljoin(current, location)
                        continue
                    if resp.status < 200 or resp.status >= 300:
                        detail = await resp.text(errors="replace")
                        raise VendorError(
                            f"图片下载失败 ({resp.status}): {current}", detail=detail
                        )
                    data = await resp.read()
                    content_type = resp.headers.get("Content-Type")
            except asyncio.TimeoutError as e:
                raise VendorError(f"图片下载超时: {current}") from e
            except aiohttp.ClientError as e:
                raise VendorError(f"图片下载异常: {e}") from e

            if not data:
                raise VendorError(f"图片内容为空: {current}")
            mime = resolve_mime_type(data, content_type, current)
            logger.debug(f"{self.prefix} 图片下载成功: {len(data)} bytes, {mime}")
            return await convert_webp_to_png(InlineData(data=data, mime_type=mime))

        raise VendorError(f"图片下载重定向次数过多: {url}")

    async def inline_to_remote(self, image: InlineData) -> RemoteURL:
        """上传图片到图床，返回可访问的 URL。"""
        store = self.image_store
        mime = (image.mime_type or "").lower()
        ext = MIME_EXTENSIONS.get(mime, "png")
        form = aiohttp.FormData()
        form.add_field(
            "file",
            image.data,
            filename=f"{uuid.uuid4().hex}.{ext}",
            content_type=mime or "image/png",
        )
        params = {
            "authCode": store.auth_code,
            "uploadFolder": store.upload_folder,
            "uploadChannel": store.upload_channel,
        }

        try:
            async with self.session.post(
                store.upload_url,
                data=form,
                params=params,
                timeout=self._client_timeout(),
            ) as resp:
                text = await resp.text(errors="replace")
                if resp.status < 200 or resp.status >= 300:
                    raise VendorError(f"图床上传失败 ({resp.status})", detail=text)
        except asyncio.TimeoutError as e:
            raise VendorError("图床上传超时") from e
        except aiohttp.ClientError as e:
            raise VendorError(f"图床上传异常: {e}") from e

        try:
            payload = json.loads(text)
        except ValueError as e:
            raise VendorError("图床返回数据不是合法 JSON", detail=text) from e

        entries = payload if isinstance(payload, list) else [payload]
        for entry in entries:
            if isinstance(entry, dict) and entry.get("src"):
                url = urljoin(store.base_url.rstrip("/") + "/", entry["src"])
                logger.info(f"{self.prefix} 图床上传成功: {url}")
                return RemoteURL(url)

        raise VendorError("图床返回数据缺少 src", detail=str(payload))

    async def to_inline(self, ref: ImageRef) -> ConversionOutcome:
        """转换为内联数据，失败时返回带原始引用的 ConversionOutcome。"""
        if isinstance(ref, InlineData):
            mime = detect_mime_type(ref.data) or ref.mime_type
            normalized = await convert_webp_to_png(InlineData(ref.data, mime))
            return ConversionOutcome(original=ref, converted=normalized)
        try:
            return ConversionOutcome(original=ref, converted=await self.remote_to_inline(ref.url))
        except SecurityError as e:
            return ConversionOutcome(original=ref, error=e.message, blocked=True)
        except VendorError as e:
            return ConversionOutcome(original=ref, error=e.message)

    async def to_remote(self, ref: ImageRef) -> ConversionOutcome:
        """转换为远程 URL，内联图片上传到图床。"""
        if isinstance(ref, RemoteURL):
            return ConversionOutcome(original=ref, converted=ref)
        try:
            return ConversionOutcome(original=ref, converted=await self.inline_to_remote(ref))
        except VendorError as e:
            return ConversionOutcome(original=ref, error=e.message)

    async def _convert_batch(
        self,
        refs: list[ImageRef],
        convert: Callable[[ImageRef], Awaitable[ConversionOutcome]],
    ) -> list[ConversionOutcome]:
        if not refs:
            return []

        semaphore = asyncio.Semaphore(self.concurrency)

        async def run(ref: ImageRef) -> ConversionOutcome:
            async with semaphore:
                return await convert(ref)

        return list(await asyncio.gather(*(run(ref) for ref in refs)))

    async def to_inline_batch(self, refs: list[ImageRef]) -> list[ConversionOutcome]:
        """批量转换为内联数据，结果顺序与输入一致"""
        return await self._convert_batch(refs, self.to_inline)

    async def to_remote_batch(self, refs: list[ImageRef]) -> list[ConversionOutcome]:
        """批量转换为远程 URL，结果顺序与输入一致"""
        return await self._convert_batch(refs, self.to_remote)


def collect_converted(
    outcomes: list[ConversionOutcome],
    keep_original: bool,
    log_prefix: str = LOG_PREFIX,
    provider: str | None = None,
) -> list[ImageRef]:
    """
    整理批量转换结果

    Args:
        outcomes: 转换结果列表
        keep_original: 失败时是否透传原始图片（否则丢弃该图片）
        log_prefix: 日志前缀
        provider: 渠道名称，用于错误信息

    Returns:
        list[ImageRef]: 可用图片，顺序与输入一致

    Raises:
        VendorError: 唯一一张图片未通过 SSRF 检查
    """
    if len(outcomes) == 1 and outcomes[0].blocked:
        raise VendorError(
            f"图片地址未通过安全检查: {outcomes[0].error}", provider=provider
        )

    images: list[ImageRef] = []
    for index, outcome in enumerate(outcomes):
        if outcome.ok:
            images.append(outcome.converted)
            continue
        if keep_original:
            logger.warning(
                f"{log_prefix} 第 {index + 1} 张图片转换失败，透传原始数据: {outcome.error}"
            )
            images.append(outcome.original)
        else:
            logger.warning(
                f"{log_prefix} 第 {index + 1} 张图片转换失败，已跳过: {outcome.error}"
            )
    return images
