from __future__ import annotations

import logging
from typing import Any

from ..core.base_adapter import BaseImageAdapter
from ..core.config import ProviderConfig
from ..core.types import (
    GenerationResult,
    ImageCapability,
    NormalizedRequest,
    ProviderIdentity,
    RequestContext,
)

logger = logging.getLogger(__name__)


class VolcEngineAdapter(BaseImageAdapter):
    """火山引擎（豆包 Seedream）图像生成适配器。

    文生图与图生图共用同一个同步 JSON 接口，参考图以 URL 或 data URI 传递。
    """

    PROVIDER = ProviderIdentity.VOLCENGINE

    @property
    def config(self) -> ProviderConfig:
        return self.settings.volcengine

    def get_capabilities(self) -> ImageCapability:
        """获取适配器支持的功能。"""
        return ImageCapability.TEXT_TO_IMAGE | ImageCapability.IMAGE_TO_IMAGE

    async def _generate_once(
        self, credential: str, request: NormalizedRequest, ctx: RequestContext
    ) -> GenerationResult:
        """执行单次生图请求。"""
        model = self.resolve_model(request.model_hint, request.is_edit)
        payload = self._build_payload(request, model)
        logger.info(
            f"{self._get_log_prefix(ctx)} 模型 {model}, 尺寸 {payload['size']}, 参考图 {len(payload['image'])} 张"
        )

        headers = self._auth_headers(credential, Connection="close")
        data = await self._post_json(self.config.api_url, payload, ctx, headers)
        return GenerationResult(artifacts=self._extract_images(data), model=model)

    def _build_payload(self, request: NormalizedRequest, model: str) -> dict[str, Any]:
        """构建请求载荷。"""
        return {
            "model": model,
            "prompt": self.effective_prompt(request),
            # 渠道同时接受 URL 与 data URI，无需转换
            "image": [image.as_src() for image in request.images],
            "response_format": "url",
            "size": self.resolve_size(request.size_hint, request.is_edit),
            "seed": -1,
            "stream": False,
            "watermark": False,
        }
