from __future__ import annotations

import logging

from ..adapter import (
    GiteeAdapter,
    HuggingFaceAdapter,
    ModelScopeAdapter,
    VolcEngineAdapter,
)
from .base_adapter import BaseImageAdapter
from .config import Settings
from .errors import AuthenticationError
from .types import (
    GenerationResult,
    ImageCapability,
    NormalizedRequest,
    ProviderIdentity,
    RequestContext,
)

logger = logging.getLogger(__name__)

DEFAULT_ADAPTERS: dict[ProviderIdentity, type[BaseImageAdapter]] = {
    ProviderIdentity.VOLCENGINE: VolcEngineAdapter,
    ProviderIdentity.GITEE: GiteeAdapter,
    ProviderIdentity.MODELSCOPE: ModelScopeAdapter,
    ProviderIdentity.HUGGINGFACE: HuggingFaceAdapter,
}


class ImageGenerator:
    """适配器编排器，负责分发生图请求。"""

    def __init__(
        self,
        settings: Settings,
        adapter_map: dict[ProviderIdentity, type[BaseImageAdapter]] | None = None,
    ):
        self.settings = settings
        self.adapter_map = dict(DEFAULT_ADAPTERS if adapter_map is None else adapter_map)

    def create_adapter(self, provider: ProviderIdentity) -> BaseImageAdapter:
        """根据渠道创建对应的适配器。"""
        adapter_cls = self.adapter_map.get(provider)
        if adapter_cls is None:
            raise AuthenticationError(f"不支持的渠道: {provider.value}")
        return adapter_cls(self.settings)

    @property
    def providers(self) -> list[str]:
        return [provider.value for provider in self.adapter_map]

    def capabilities(self) -> dict[str, list[str]]:
        """各渠道支持的能力，按定义顺序列出标志名。"""
        result: dict[str, list[str]] = {}
        for provider in self.adapter_map:
            flags = self.create_adapter(provider).get_capabilities()
            result[provider.value] = [
                flag.name for flag in ImageCapability if flag.value and flag in flags
            ]
        return result

    async def generate(
        self,
        credential: str,
        provider: ProviderIdentity,
        request: NormalizedRequest,
        ctx: RequestContext,
    ) -> GenerationResult:
        """执行生图逻辑，适配器在请求结束时关闭。"""
        adapter = self.create_adapter(provider)
        async with adapter:
            return await adapter.generate(credential, request, ctx)
