from __future__ import annotations

import abc
import asyncio
import base64
import binascii
import json
import logging
import time
from typing import Any

import aiohttp

from .config import ProviderConfig, Settings
from .constants import DEFAULT_PROMPT
from .errors import TaskTimeoutError, VendorError
from .poller import AsyncTaskPoller, PollCheck
from .transcoder import ImageTranscoder, detect_mime_type
from .types import (
    GenerationResult,
    GenerationTask,
    ImageCapability,
    ImageRef,
    InlineData,
    NormalizedRequest,
    ProviderIdentity,
    RemoteURL,
    RequestContext,
    TaskStatus,
)

logger = logging.getLogger(__name__)


class BaseImageAdapter(abc.ABC):
    """图像生成适配器基类。

    适配器按请求创建，持有自己的 HTTP 会话，请求结束时调用 ``close()``。
    """

    PROVIDER: ProviderIdentity = ProviderIdentity.UNKNOWN

    def __init__(self, settings: Settings, session: aiohttp.ClientSession | None = None):
        self.settings = settings
        self.timeout = settings.api_timeout
        self._session = session
        self._owns_session = session is None
        self._transcoder: ImageTranscoder | None = None
        self._sleep = asyncio.sleep

    @property
    @abc.abstractmethod
    def config(self) -> ProviderConfig:
        """渠道配置。"""

    @abc.abstractmethod
    def get_capabilities(self) -> ImageCapability:
        """获取适配器支持的功能。"""

    @property
    def name(self) -> str:
        return self.PROVIDER.value

    async def close(self) -> None:
        """关闭底层的 HTTP 会话。"""
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()
        self._session = None
        self._transcoder = None

    async def __aenter__(self) -> "BaseImageAdapter":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    def _get_session(self) -> aiohttp.ClientSession:
        """获取或创建 HTTP 会话。"""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    def _get_transcoder(self, ctx: RequestContext) -> ImageTranscoder:
        if self._transcoder is None:
            self._transcoder = ImageTranscoder(
                self._get_session(),
                self.settings.image_store,
                timeout=self.settings.fetch_timeout,
                concurrency=self.settings.conversion_concurrency,
                trusted_hosts=self.settings.trusted_hosts,
                log_prefix=ctx.log_prefix(),
            )
        return self._transcoder

    def _get_log_prefix(self, ctx: RequestContext) -> str:
        """获取统一的日志前缀。"""
        return ctx.log_prefix(self.name)

    def _client_timeout(self) -> aiohttp.ClientTimeout:
        return aiohttp.ClientTimeout(total=self.timeout)

    def resolve_model(self, requested: str | None, is_edit: bool) -> str:
        """请求的模型在支持列表中则使用，否则静默替换为默认模型。"""
        catalogue = self.config.edit_models if is_edit else self.config.models
        if requested and requested in catalogue:
            return requested
        return catalogue[0]

    def resolve_size(self, requested: str | None, is_edit: bool) -> str:
        if requested:
            return requested
        return self.config.default_edit_size if is_edit else self.config.default_size

    @staticmethod
    def effective_prompt(request: NormalizedRequest) -> str:
        return request.prompt or DEFAULT_PROMPT

    async def generate(
        self, credential: str, request: NormalizedRequest, ctx: RequestContext
    ) -> GenerationResult:
        """生成模板方法。

        子类实现 ``_generate_once()``；失败时抛出 VendorError。
        """
        prefix = self._get_log_prefix(ctx)
        start_time = time.time()
        logger.info(
            f"{prefix} 开始{'图生图' if request.is_edit else '文生图'}: "
            f"prompt='{request.prompt[:50]}...', images={len(request.images)}"
        )
        logger.debug(f"{prefix} 完整 Prompt: {request.prompt}")

        try:
            result = await self._generate_once(credential, request, ctx)
        except VendorError as e:
            e.provider = e.provider or self.name
            duration = time.time() - start_time
            logger.error(f"{prefix} 生成失败 (耗时: {duration:.2f}s): {e.message}")
            raise

        duration = time.time() - start_time
        if not result.artifacts:
            logger.error(f"{prefix} 未生成任何图像 (耗时: {duration:.2f}s)")
            raise VendorError(f"{self.name} 未返回任何图像", provider=self.name)

        logger.info(
            f"{prefix} 生成成功: {result.image_count} 张图像, 模型 {result.model} (耗时: {duration:.2f}s)"
        )
        return result

    @abc.abstractmethod
    async def _generate_once(
        self, credential: str, request: NormalizedRequest, ctx: RequestContext
    ) -> GenerationResult:
        """执行单次生成请求。"""

    def _auth_headers(self, credential: str, **extra: str) -> dict[str, str]:
        headers = {"Authorization": f"Bearer {credential}"}
        headers.update(extra)
        return headers

    async def _request(
        self,
        method: str,
        url: str,
        ctx: RequestContext,
        *,
        headers: dict[str, str] | None = None,
        json_body: Any = None,
        data: Any = None,
        expect_json: bool = True,
    ) -> Any:
        """发送一次带超时的请求，非 2xx 时抛出携带原始响应体的 VendorError。"""
        prefix = self._get_log_prefix(ctx)
        session = self._get_session()
        start_time = time.time()
        logger.debug(f"{prefix} {method} -> {url}")

        try:
            async with session.request(
                method,
                url,
                json=json_body,
                data=data,
                headers=headers,
                timeout=self._client_timeout(),
            ) as resp:
                duration = time.time() - start_time
                text = await resp.text(errors="replace")
                if resp.status < 200 or resp.status >= 300:
                    logger.error(
                        f"{prefix} API 错误 ({resp.status}, 耗时: {duration:.2f}s): {text[:200]}"
                    )
                    raise VendorError(
                        f"{self.name} API Error ({resp.status}): {text}",
                        provider=self.name,
                        detail=text,
                    )
                logger.debug(f"{prefix} 状态 -> {resp.status} (耗时: {duration:.2f}s)")
        except asyncio.TimeoutError as e:
            raise VendorError(
                f"{self.name} 请求超时 ({self.timeout:.0f}s): {url}", provider=self.name
            ) from e
        except aiohttp.ClientError as e:
            raise VendorError(f"{self.name} 请求异常: {e}", provider=self.name) from e

        if not expect_json:
            return text
        try:
            return json.loads(text)
        except ValueError as e:
            raise VendorError(
                f"{self.name} 返回数据不是合法 JSON", provider=self.name, detail=text
            ) from e

    async def _post_json(
        self, url: str, payload: dict, ctx: RequestContext, headers: dict[str, str]
    ) -> Any:
        headers = {"Content-Type": "application/json", **headers}
        return await self._request("POST", url, ctx, headers=headers, json_body=payload)

    async def _post_form(
        self, url: str, form: aiohttp.FormData, ctx: RequestContext, headers: dict[str, str]
    ) -> Any:
        return await self._request("POST", url, ctx, headers=headers, data=form)

    async def _get_json(self, url: str, ctx: RequestContext, headers: dict[str, str]) -> Any:
        return await self._request("GET", url, ctx, headers=headers)

    async def _poll_task(
        self,
        task_id: str,
        check: PollCheck,
        interval: float,
        max_attempts: int,
        ctx: RequestContext,
    ) -> Any:
        """轮询异步任务，成功时返回渠道结果，失败或超时抛出 VendorError。"""
        poller = AsyncTaskPoller(
            interval, max_attempts, sleep=self._sleep, log_prefix=self._get_log_prefix(ctx)
        )
        task = await poller.run(GenerationTask(id=task_id), check)
        if task.status is TaskStatus.SUCCEEDED:
            return task.payload
        if task.status is TaskStatus.FAILED:
            raise VendorError(
                f"{self.name} Task Failed: {task.error}", provider=self.name, detail=task.error
            )
        raise TaskTimeoutError(
            f"{self.name} Task Timeout ({task.attempts}次轮询)", provider=self.name
        )

    def _extract_images(self, response: Any) -> list[ImageRef]:
        """从 OpenAI 风格的响应中提取图像（data[].url / data[].b64_json）。"""
        if not isinstance(response, dict) or not isinstance(response.get("data"), list):
            raise VendorError(
                f"{self.name} 返回数据格式异常: {json.dumps(response, ensure_ascii=False)[:500]}",
                provider=self.name,
                detail=json.dumps(response, ensure_ascii=False),
            )

        images: list[ImageRef] = []
        for item in response["data"]:
            if not isinstance(item, dict):
                continue
            if item.get("url"):
                images.append(RemoteURL(item["url"]))
            elif item.get("b64_json"):
                try:
                    raw = base64.b64decode(item["b64_json"])
                except (binascii.Error, ValueError):
                    logger.warning(f"[{self.name}] 无法解码 b64_json，已跳过")
                    continue
                images.append(InlineData(raw, detect_mime_type(raw) or "image/png"))
        return images
