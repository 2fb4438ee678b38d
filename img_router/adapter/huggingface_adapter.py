from __future__ import annotations

import json
import logging
import re
from typing import Any

from ..core.base_adapter import BaseImageAdapter
from ..core.config import HuggingFaceConfig
from ..core.errors import VendorError
from ..core.poller import PollResult, PollStatus
from ..core.pool import run_endpoint_pool
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

SIZE_PATTERN = re.compile(r"^\s*(\d+)\s*[xX*]\s*(\d+)\s*$")


def parse_size(size: str, default: str = "1024x1024") -> tuple[int, int]:
    """解析 "WxH" 形式的尺寸，无法解析时使用默认值。"""
    match = SIZE_PATTERN.match(size or "") or SIZE_PATTERN.match(default)
    return int(match.group(1)), int(match.group(2))


def parse_event_stream(text: str) -> list[tuple[str, str]]:
    """解析 Gradio 结果事件流，返回 (event, data) 列表。"""
    events: list[tuple[str, str]] = []
    current = "message"
    for line in text.splitlines():
        line = line.strip()
        if line.startswith("event:"):
            current = line[len("event:"):].strip()
        elif line.startswith("data:"):
            events.append((current, line[len("data:"):].strip()))
            current = "message"
    return events


def find_file_urls(node: Any, base_url: str) -> list[str]:
    """按出现顺序收集 Gradio 输出中的文件地址。"""
    urls: list[str] = []
    if isinstance(node, dict):
        url = node.get("url")
        if isinstance(url, str) and url.startswith("http"):
            urls.append(url)
            return urls
        path = node.get("path")
        if isinstance(path, str) and (node.get("meta") or {}).get("_type") == "gradio.FileData":
            urls.append(f"{base_url.rstrip('/')}/gradio_api/file={path}")
            return urls
        for value in node.values():
            urls.extend(find_file_urls(value, base_url))
    elif isinstance(node, list):
        for item in node:
            urls.extend(find_file_urls(item, base_url))
    return urls


class HuggingFaceAdapter(BaseImageAdapter):
    """Hugging Face Spaces（Gradio API）图像生成适配器。

    多个 Space 组成资源池，按顺序故障转移。
    """

    PROVIDER = ProviderIdentity.HUGGINGFACE

    GENERATE_FN = "generate_image"
    EDIT_FN = "infer"

    @property
    def config(self) -> HuggingFaceConfig:
        return self.settings.huggingface

    def get_capabilities(self) -> ImageCapability:
        """获取适配器支持的功能。"""
        return (
            ImageCapability.TEXT_TO_IMAGE
            | ImageCapability.IMAGE_TO_IMAGE
            | ImageCapability.ASYNC_TASK
            | ImageCapability.ENDPOINT_POOL
        )

    async def _generate_once(
        self, credential: str, request: NormalizedRequest, ctx: RequestContext
    ) -> GenerationResult:
        prefix = self._get_log_prefix(ctx)
        images: list[ImageRef] = []
        if request.is_edit:
            outcomes = await self._get_transcoder(ctx).to_remote_batch(request.images)
            images = collect_converted(
                outcomes, keep_original=False, log_prefix=prefix, provider=self.name
            )
            if not images:
                logger.warning(f"{prefix} 所有参考图转换失败，降级为文生图")

        is_edit = bool(images)
        model = self.resolve_model(request.model_hint, is_edit)
        width, height = parse_size(
            self.resolve_size(request.size_hint, is_edit),
            self.config.default_edit_size if is_edit else self.config.default_size,
        )
        prompt = self.effective_prompt(request)

        if is_edit:
            fn = self.EDIT_FN
            pool = self.config.edit_api_urls
            data = self._build_edit_data(prompt, images, width, height)
        else:
            fn = self.GENERATE_FN
            pool = self.config.api_urls
            data = self._build_generation_data(prompt, width, height)
        logger.info(f"{prefix} 模型 {model}, 尺寸 {width}x{height}, 资源池 {len(pool)} 个节点")

        async def attempt(base_url: str) -> list[ImageRef]:
            return await self._call_space(base_url, fn, data, credential, ctx)

        artifacts = await run_endpoint_pool(pool, attempt, log_prefix=prefix)
        return GenerationResult(artifacts=artifacts, model=model)

    def _build_generation_data(self, prompt: str, width: int, height: int) -> list[Any]:
        # prompt, height, width, num_inference_steps, seed, randomize_seed
        return [prompt, height, width, 9, 42, True]

    def _build_edit_data(
        self, prompt: str, images: list[ImageRef], width: int, height: int
    ) -> list[Any]:
        gallery = [
            {
                "image": {
                    "path": image.as_src(),
                    "url": image.as_src(),
                    "meta": {"_type": "gradio.FileData"},
                },
                "caption": None,
            }
            for image in images
            if isinstance(image, RemoteURL)
        ]
        # images, prompt, seed, randomize_seed, true_guidance_scale, steps, height, width
        return [gallery, prompt, 0, True, 1.0, 4, height, width]

    async def _call_space(
        self,
        base_url: str,
        fn: str,
        data: list[Any],
        credential: str,
        ctx: RequestContext,
    ) -> list[ImageRef]:
        """在单个 Space 上完成提交与结果读取。"""
        base_url = base_url.rstrip("/")
        headers = self._auth_headers(credential)
        submit = await self._post_json(
            f"{base_url}/gradio_api/call/{fn}", {"data": data}, ctx, headers
        )
        event_id = submit.get("event_id") if isinstance(submit, dict) else None
        if not event_id:
            raise VendorError(
                f"HuggingFace 提交失败: {json.dumps(submit, ensure_ascii=False)}",
                provider=self.name,
                detail=json.dumps(submit, ensure_ascii=False),
            )
        logger.debug(f"{self._get_log_prefix(ctx)} {base_url} Event ID: {event_id}")

        result_url = f"{base_url}/gradio_api/call/{fn}/{event_id}"

        async def check() -> PollResult:
            text = await self._request("GET", result_url, ctx, headers=headers, expect_json=False)
            for event, payload in parse_event_stream(text):
                if event == "complete":
                    try:
                        return PollResult(
                            PollStatus.SUCCEEDED, payload=json.loads(payload), vendor_status=event
                        )
                    except ValueError:
                        return PollResult(
                            PollStatus.FAILED, error=f"无法解析结果: {payload}", vendor_status=event
                        )
                if event == "error":
                    return PollResult(PollStatus.FAILED, error=payload, vendor_status=event)
            return PollResult(PollStatus.RUNNING, vendor_status="generating")

        output = await self._poll_task(
            event_id, check, self.config.poll_interval, self.config.poll_attempts, ctx
        )
        urls = find_file_urls(output, base_url)
        if not urls:
            raise VendorError(
                f"HuggingFace 返回数据中没有图像: {json.dumps(output, ensure_ascii=False)[:500]}",
                provider=self.name,
            )
        return [RemoteURL(url) for url in urls]
