"""Configuration Management

进程级只读配置，启动时构建一次，之后以参数形式显式传递。
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from urllib.parse import urlparse

from . import constants as c


@dataclass(frozen=True)
class ImageStoreConfig:
    """图床配置"""

    base_url: str = c.IMGBED_DEFAULT_BASE_URL
    upload_endpoint: str = c.IMGBED_DEFAULT_UPLOAD_ENDPOINT
    auth_code: str = ""
    upload_folder: str = c.IMGBED_DEFAULT_UPLOAD_FOLDER
    upload_channel: str = c.IMGBED_DEFAULT_UPLOAD_CHANNEL

    @property
    def host(self) -> str:
        return (urlparse(self.base_url).hostname or "").lower()

    @property
    def upload_url(self) -> str:
        return f"{self.base_url.rstrip('/')}{self.upload_endpoint}"


@dataclass(frozen=True)
class ProviderConfig:
    """单个渠道的模型目录与默认参数"""

    api_url: str
    models: tuple[str, ...]
    edit_models: tuple[str, ...]
    default_size: str
    default_edit_size: str

    @property
    def default_model(self) -> str:
        return self.models[0]

    @property
    def default_edit_model(self) -> str:
        return self.edit_models[0]


@dataclass(frozen=True)
class GiteeConfig(ProviderConfig):
    """Gitee 配置：文生图、图片编辑（同步）、图片编辑（异步）"""

    edit_api_url: str = c.GITEE_EDIT_API_URL
    async_edit_api_url: str = c.GITEE_ASYNC_EDIT_API_URL
    task_status_url: str = c.GITEE_TASK_STATUS_URL
    async_edit_models: tuple[str, ...] = c.GITEE_ASYNC_EDIT_MODELS
    default_async_edit_size: str = "2048x2048"
    poll_interval: float = c.GITEE_POLL_INTERVAL
    poll_attempts: int = c.GITEE_POLL_ATTEMPTS


@dataclass(frozen=True)
class ModelScopeConfig(ProviderConfig):
    poll_interval: float = c.MODELSCOPE_POLL_INTERVAL
    poll_attempts: int = c.MODELSCOPE_POLL_ATTEMPTS


@dataclass(frozen=True)
class HuggingFaceConfig(ProviderConfig):
    """HF Spaces 配置，api_url 不使用，按资源池故障转移"""

    api_urls: tuple[str, ...] = c.HUGGINGFACE_API_URLS
    edit_api_urls: tuple[str, ...] = c.HUGGINGFACE_EDIT_API_URLS
    poll_interval: float = c.HUGGINGFACE_POLL_INTERVAL
    poll_attempts: int = c.HUGGINGFACE_POLL_ATTEMPTS


def _default_volcengine() -> ProviderConfig:
    return ProviderConfig(
        api_url=c.VOLCENGINE_API_URL,
        models=c.VOLCENGINE_MODELS,
        # Seedream 4.x 文生图与图生图共用同一模型目录
        edit_models=c.VOLCENGINE_MODELS,
        default_size="2K",
        default_edit_size="2K",
    )


def _default_gitee() -> GiteeConfig:
    return GiteeConfig(
        api_url=c.GITEE_API_URL,
        models=c.GITEE_MODELS,
        edit_models=c.GITEE_EDIT_MODELS,
        default_size="2048x2048",
        default_edit_size="1024x1024",
    )


def _default_modelscope() -> ModelScopeConfig:
    return ModelScopeConfig(
        api_url=c.MODELSCOPE_API_URL,
        models=c.MODELSCOPE_MODELS,
        edit_models=c.MODELSCOPE_EDIT_MODELS,
        default_size="1024x1024",
        default_edit_size="1328x1328",
    )


def _default_huggingface() -> HuggingFaceConfig:
    return HuggingFaceConfig(
        api_url="",
        models=c.HUGGINGFACE_MODELS,
        edit_models=c.HUGGINGFACE_EDIT_MODELS,
        default_size="1024x1024",
        default_edit_size="1024x1024",
    )


@dataclass(frozen=True)
class Settings:
    """应用配置"""

    host: str = c.DEFAULT_HOST
    port: int = c.DEFAULT_PORT
    log_level: str = "INFO"
    api_timeout: float = c.DEFAULT_TIMEOUT
    fetch_timeout: float = c.DEFAULT_FETCH_TIMEOUT
    conversion_concurrency: int = c.DEFAULT_CONVERSION_CONCURRENCY
    image_store: ImageStoreConfig = field(default_factory=ImageStoreConfig)
    volcengine: ProviderConfig = field(default_factory=_default_volcengine)
    gitee: GiteeConfig = field(default_factory=_default_gitee)
    modelscope: ModelScopeConfig = field(default_factory=_default_modelscope)
    huggingface: HuggingFaceConfig = field(default_factory=_default_huggingface)
    trusted_hosts: tuple[str, ...] = c.TRUSTED_VENDOR_HOSTS

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> "Settings":
        """从环境变量加载配置

        Args:
            environ: 环境变量映射（可选，默认 os.environ）

        Returns:
            配置对象
        """
        env = os.environ if environ is None else environ

        image_store = ImageStoreConfig(
            base_url=env.get("IMGBED_BASE_URL", c.IMGBED_DEFAULT_BASE_URL),
            upload_endpoint=env.get(
                "IMGBED_UPLOAD_ENDPOINT", c.IMGBED_DEFAULT_UPLOAD_ENDPOINT
            ),
            auth_code=env.get("IMGBED_AUTH_CODE", ""),
            upload_folder=env.get("IMGBED_UPLOAD_FOLDER", c.IMGBED_DEFAULT_UPLOAD_FOLDER),
            upload_channel=env.get(
                "IMGBED_UPLOAD_CHANNEL", c.IMGBED_DEFAULT_UPLOAD_CHANNEL
            ),
        )

        return cls(
            host=env.get("HOST", c.DEFAULT_HOST),
            port=int(env.get("PORT", c.DEFAULT_PORT)),
            log_level=env.get("LOG_LEVEL", "INFO").upper(),
            api_timeout=float(env.get("API_TIMEOUT", c.DEFAULT_TIMEOUT)),
            conversion_concurrency=max(
                1, int(env.get("CONVERSION_CONCURRENCY", c.DEFAULT_CONVERSION_CONCURRENCY))
            ),
            image_store=image_store,
        )
