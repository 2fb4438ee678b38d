"""
Core module for img-router
图像路由网关的核心模块
"""

from .base_adapter import BaseImageAdapter
from .config import (
    GiteeConfig,
    HuggingFaceConfig,
    ImageStoreConfig,
    ModelScopeConfig,
    ProviderConfig,
    Settings,
)
from .constants import DEFAULT_PROMPT, DEFAULT_TIMEOUT, LOG_PREFIX
from .errors import (
    AuthenticationError,
    BadRequestError,
    GatewayError,
    RoutingError,
    SecurityError,
    TaskTimeoutError,
    VendorError,
)
from .normalizer import build_request, normalize
from .poller import AsyncTaskPoller, PollResult, PollStatus
from .pool import run_endpoint_pool
from .router import detect_provider, extract_credential, resolve_provider
from .transcoder import (
    ImageTranscoder,
    check_url_safety,
    collect_converted,
    detect_mime_type,
    parse_data_uri,
)
from .types import (
    ConversionOutcome,
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

__all__ = [
    # 基类和核心组件
    "AsyncTaskPoller",
    "BaseImageAdapter",
    "ImageTranscoder",
    # 配置
    "GiteeConfig",
    "HuggingFaceConfig",
    "ImageStoreConfig",
    "ModelScopeConfig",
    "ProviderConfig",
    "Settings",
    # 数据类型
    "ConversionOutcome",
    "GenerationResult",
    "GenerationTask",
    "ImageCapability",
    "ImageRef",
    "InlineData",
    "NormalizedRequest",
    "PollResult",
    "PollStatus",
    "ProviderIdentity",
    "RemoteURL",
    "RequestContext",
    "TaskStatus",
    # 错误
    "AuthenticationError",
    "BadRequestError",
    "GatewayError",
    "RoutingError",
    "SecurityError",
    "TaskTimeoutError",
    "VendorError",
    # 工具函数
    "build_request",
    "check_url_safety",
    "collect_converted",
    "detect_mime_type",
    "detect_provider",
    "extract_credential",
    "normalize",
    "parse_data_uri",
    "resolve_provider",
    "run_endpoint_pool",
    # 常量
    "DEFAULT_PROMPT",
    "DEFAULT_TIMEOUT",
    "LOG_PREFIX",
]
