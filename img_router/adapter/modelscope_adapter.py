from __future__ import annotations

import json
import logging
from typing import Any

from ..core.base_adapter import BaseImageAdapter
from ..core.config import ModelScopeConfig
from ..core.errors import VendorError
from ..core.poller import PollResult, PollStatus
from ..core.transcoder import collect_converted
from ..core.types import (
    GenerationResult,
    ImageCapability,
    ImageRef,
    NormalizedRequest,
    ProviderIdentity,
    RemoteURL,
    RequestContext,
)

logger = logging.getLogger(__name__)


class ModelScopeAdapter(BaseImageAdapter):
    """ModelScope（魔搭）图像生成适配器，异步提交 + 轮询。"""

    PROVIDER = ProviderIdentity.MODELSCOPE

    @property
    def config(self) -> ModelScopeConfig:
        return self.settings.modelscope

    def get_capabilities(self) -> ImageCapability:
        """获取适配器支持的功能。"""
        return (
            ImageCapability.TEXT_TO_IMAGE
            | ImageCapability.IMAGE_TO_IMAGE
            | ImageCapability.ASYNC_TASK
        )

    async def _prepare_images(
        self, request: NormalizedRequest, ctx: RequestContext
    ) -> list[str]:
        """参考图统一转为 URL，上传失败时透传原始 data URI。"""
        if not request.images:
            return []
        outcomes = await self._get_transcoder(ctx).to_remote_batch(request.images)
        images = collect_converted(
            outcomes, keep_original=True, log_prefix=self._get_log_prefix(ctx), provider=self.name
        )
        return [image.as_src() for image in images]

    def _build_payload(
        self, request: NormalizedRequest, model: str, image_urls: list[str]
    ) -> dict[str, Any]:
        """构建请求载荷。"""
        payload: dict[str, Any] = {
            "model": model,
            "prompt": self.effective_prompt(request),
            "size": self.resolve_size(request.size_hint, request.is_edit),
            "n": 1,
        }
        if image_urls:
            payload["image_url"] = image_urls
        return payload

    async def _generate_once(
        self, credential: str, request: NormalizedRequest, ctx: RequestContext
    ) -> GenerationResult:
        """提交任务并轮询结果。"""
        prefix = self._get_log_prefix(ctx)
        model = self.resolve_model(request.model_hint, request.is_edit)
        image_urls = await self._prepare_images(request, ctx)
        payload = self._build_payload(request, model, image_urls)
        logger.info(
            f"{prefix} 模型 {model}, 尺寸 {payload['size']}, 参考图 {len(image_urls)} 张"
        )

        base_url = self.config.api_url.rstrip("/")
        submit = await self._post_json(
            f"{base_url}/images/generations",
            payload,
            ctx,
            self._auth_headers(credential, **{"X-ModelScope-Async-Mode": "true"}),
        )
        task_id = submit.get("task_id") if isinstance(submit, dict) else None
        if not task_id:
            raise VendorError(
                f"ModelScope Submit Error: {json.dumps(submit, ensure_ascii=False)}",
                provider=self.name,
                detail=json.dumps(submit, ensure_ascii=False),
            )
        logger.info(f"{prefix} 任务已提交, Task ID: {task_id}")

        poll_headers = self._auth_headers(
            credential, **{"X-ModelScope-Task-Type": "image_generation"}
        )

        async def check() -> PollResult:
            data = await self._get_json(f"{base_url}/tasks/{task_id}", ctx, poll_headers)
            if not isinstance(data, dict):
                return PollResult(PollStatus.FAILED, error=json.dumps(data, ensure_ascii=False))
            status = data.get("task_status")
            if status == "SUCCEED":
                return PollResult(PollStatus.SUCCEEDED, payload=data, vendor_status=status)
            if status == "FAILED":
                return PollResult(
                    PollStatus.FAILED,
                    error=json.dumps(data, ensure_ascii=False),
                    vendor_status=status,
                )
            return PollResult(PollStatus.RUNNING, vendor_status=status)

        result = await self._poll_task(
            task_id, check, self.config.poll_interval, self.config.poll_attempts, ctx
        )
        output_images = result.get("output_images") or []
        if not isinstance(output_images, list):
            raise VendorError(
                f"ModelScope 返回数据格式异常: {json.dumps(result, ensure_ascii=False)[:500]}",
                provider=self.name,
                detail=json.dumps(result, ensure_ascii=False),
            )
        artifacts: list[ImageRef] = [
            RemoteURL(url) for url in output_images if isinstance(url, str) and url
        ]
        return GenerationResult(artifacts=artifacts, model=model)
