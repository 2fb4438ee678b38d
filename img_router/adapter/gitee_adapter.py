from __future__ import annotations

import json
import logging
from typing import Any

import aiohttp

from ..core.base_adapter import BaseImageAdapter
from ..core.config import GiteeConfig
from ..core.constants import MIME_EXTENSIONS
from ..core.errors import VendorError
from ..core.poller import PollResult, PollStatus
from ..core.transcoder import collect_converted
from ..core.types import (
    GenerationResult,
    ImageCapability,
    ImageRef,
    InlineData,
    NormalizedRequest,
    ProviderIdentity,
    RemoteURL,
    RequestContext,
)

logger = logging.getLogger(__name__)

USER_AGENT = "ImgRouter/1.0"

TASK_SUCCESS = "success"
TASK_FAILURES = ("failure", "failed", "cancelled")


class GiteeAdapter(BaseImageAdapter):
    """Gitee AI（模力方舟）图像生成适配器。

    - 文生图：同步 JSON 接口
    - 图片编辑：同步 multipart 接口
    - 图片编辑（异步）：multipart 提交 + 任务轮询
    """

    PROVIDER = ProviderIdentity.GITEE

    @property
    def config(self) -> GiteeConfig:
        return self.settings.gitee

    def get_capabilities(self) -> ImageCapability:
        """获取适配器支持的功能。"""
        return (
            ImageCapability.TEXT_TO_IMAGE
            | ImageCapability.IMAGE_TO_IMAGE
            | ImageCapability.MULTIPART_EDIT
            | ImageCapability.ASYNC_TASK
        )

    def is_async_edit(self, requested: str | None) -> bool:
        """请求的模型只在异步编辑目录中时走异步接口。"""
        if not requested or requested in self.config.edit_models:
            return False
        return requested in self.config.async_edit_models

    def resolve_model(self, requested: str | None, is_edit: bool) -> str:
        if is_edit and self.is_async_edit(requested):
            return requested
        return super().resolve_model(requested, is_edit)

    async def _generate_once(
        self, credential: str, request: NormalizedRequest, ctx: RequestContext
    ) -> GenerationResult:
        """执行单次生图请求。"""
        prefix = self._get_log_prefix(ctx)
        if not request.is_edit:
            return await self._text_to_image(credential, request, ctx)

        outcomes = await self._get_transcoder(ctx).to_inline_batch(request.images)
        images = collect_converted(outcomes, keep_original=False, log_prefix=prefix, provider=self.name)
        if not images:
            logger.warning(f"{prefix} 所有参考图转换失败，降级为文生图")
            return await self._text_to_image(credential, request, ctx)

        if self.is_async_edit(request.model_hint):
            return await self._async_edit(credential, request, images, ctx)
        return await self._sync_edit(credential, request, images, ctx)

    async def _text_to_image(
        self, credential: str, request: NormalizedRequest, ctx: RequestContext
    ) -> GenerationResult:
        model = self.resolve_model(request.model_hint, is_edit=False)
        payload: dict[str, Any] = {
            "model": model,
            "prompt": self.effective_prompt(request),
            "size": self.resolve_size(request.size_hint, is_edit=False),
            "n": 1,
            "response_format": "url",
        }
        logger.info(f"{self._get_log_prefix(ctx)} 文生图: 模型 {model}, 尺寸 {payload['size']}")

        headers = self._auth_headers(credential, **{"User-Agent": USER_AGENT})
        data = await self._post_json(self.config.api_url, payload, ctx, headers)
        return GenerationResult(artifacts=self._extract_images(data), model=model)

    def _build_form(
        self, request: NormalizedRequest, images: list[ImageRef], model: str, size: str
    ) -> aiohttp.FormData:
        """构建 multipart 表单，每张参考图作为一个 image 文件字段。"""
        form = aiohttp.FormData()
        form.add_field("model", model)
        form.add_field("prompt", self.effective_prompt(request))
        form.add_field("size", size)
        form.add_field("n", "1")
        form.add_field("response_format", "url")
        for index, image in enumerate(images):
            if not isinstance(image, InlineData):
                continue
            ext = MIME_EXTENSIONS.get(image.mime_type, "png")
            form.add_field(
                "image",
                image.data,
                filename=f"image_{index}.{ext}",
                content_type=image.mime_type,
            )
        return form

    async def _sync_edit(
        self,
        credential: str,
        request: NormalizedRequest,
        images: list[ImageRef],
        ctx: RequestContext,
    ) -> GenerationResult:
        model = self.resolve_model(request.model_hint, is_edit=True)
        size = self.resolve_size(request.size_hint, is_edit=True)
        logger.info(
            f"{self._get_log_prefix(ctx)} 图片编辑: 模型 {model}, 尺寸 {size}, 参考图 {len(images)} 张"
        )

        form = self._build_form(request, images, model, size)
        headers = self._auth_headers(credential, **{"User-Agent": USER_AGENT})
        data = await self._post_form(self.config.edit_api_url, form, ctx, headers)
        return GenerationResult(artifacts=self._extract_images(data), model=model)

    async def _async_edit(
        self,
        credential: str,
        request: NormalizedRequest,
        images: list[ImageRef],
        ctx: RequestContext,
    ) -> GenerationResult:
        prefix = self._get_log_prefix(ctx)
        model = self.resolve_model(request.model_hint, is_edit=True)
        size = request.size_hint or self.config.default_async_edit_size
        logger.info(f"{prefix} 图片编辑（异步）: 模型 {model}, 尺寸 {size}, 参考图 {len(images)} 张")

        form = self._build_form(request, images, model, size)
        headers = self._auth_headers(credential, **{"User-Agent": USER_AGENT})
        submit = await self._post_form(self.config.async_edit_api_url, form, ctx, headers)
        task_id = submit.get("task_id") if isinstance(submit, dict) else None
        if not task_id:
            raise VendorError(
                f"Gitee 异步任务提交失败: {json.dumps(submit, ensure_ascii=False)}",
                provider=self.name,
                detail=json.dumps(submit, ensure_ascii=False),
            )
        logger.info(f"{prefix} 任务已提交, Task ID: {task_id}")

        status_url = f"{self.config.task_status_url.rstrip('/')}/{task_id}"

        async def check() -> PollResult:
            data = await self._get_json(status_url, ctx, headers)
            if not isinstance(data, dict):
                return PollResult(PollStatus.FAILED, error=json.dumps(data, ensure_ascii=False))
            status = str(data.get("status", "")).lower()
            if status == TASK_SUCCESS:
                return PollResult(PollStatus.SUCCEEDED, payload=data, vendor_status=status)
            if status in TASK_FAILURES:
                error = data.get("error") or data.get("message") or data
                return PollResult(
                    PollStatus.FAILED,
                    error=json.dumps(error, ensure_ascii=False),
                    vendor_status=status,
                )
            return PollResult(PollStatus.RUNNING, vendor_status=status)

        payload = await self._poll_task(
            task_id, check, self.config.poll_interval, self.config.poll_attempts, ctx
        )
        return GenerationResult(artifacts=self._extract_task_images(payload), model=model)

    def _extract_task_images(self, payload: dict) -> list[ImageRef]:
        """从异步任务结果中提取图像。"""
        output = payload.get("output") or {}
        images: list[ImageRef] = []
        if isinstance(output, dict):
            if output.get("file_url"):
                images.append(RemoteURL(output["file_url"]))
            file_urls = output.get("file_urls")
            if isinstance(file_urls, list):
                images.extend(RemoteURL(url) for url in file_urls if isinstance(url, str) and url)
        if not images and isinstance(payload.get("data"), list):
            images = self._extract_images(payload)
        return images
