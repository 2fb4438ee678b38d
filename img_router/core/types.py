"""
Core type definitions for img-router
定义图像路由网关的核心数据类型
"""

from __future__ import annotations

import base64
from dataclasses import dataclass, field
from enum import Enum, Flag, auto
from typing import Any, Union

from .constants import LOG_PREFIX


class ProviderIdentity(str, Enum):
    """渠道类型枚举"""

    VOLCENGINE = "VolcEngine"
    GITEE = "Gitee"
    MODELSCOPE = "ModelScope"
    HUGGINGFACE = "HuggingFace"
    UNKNOWN = "Unknown"


class ImageCapability(Flag):
    """适配器支持的能力"""

    NONE = 0
    TEXT_TO_IMAGE = auto()
    IMAGE_TO_IMAGE = auto()
    MULTIPART_EDIT = auto()
    ASYNC_TASK = auto()
    ENDPOINT_POOL = auto()


@dataclass(frozen=True)
class RemoteURL:
    """远程 URL 形式的图片"""

    url: str

    def as_src(self) -> str:
        return self.url


@dataclass(frozen=True)
class InlineData:
    """内联二进制形式的图片"""

    data: bytes
    mime_type: str = "image/png"

    def as_src(self) -> str:
        """渲染为 data URI。"""
        b64 = base64.b64encode(self.data).decode("ascii")
        return f"data:{self.mime_type};base64,{b64}"


ImageRef = Union[RemoteURL, InlineData]


@dataclass
class NormalizedRequest:
    """从对话中提取出的规范化生图请求"""

    prompt: str = ""
    images: list[ImageRef] = field(default_factory=list)
    model_hint: str | None = None
    size_hint: str | None = None
    stream_requested: bool = False

    @property
    def is_edit(self) -> bool:
        """携带图片的请求一律视为图生图 / 融合生图"""
        return len(self.images) > 0


@dataclass
class GenerationResult:
    """图像生成结果，顺序与渠道返回顺序一致"""

    artifacts: list[ImageRef] = field(default_factory=list)
    model: str = ""

    @property
    def image_count(self) -> int:
        return len(self.artifacts)


class TaskStatus(str, Enum):
    """异步任务状态"""

    SUBMITTED = "submitted"
    POLLING = "polling"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


@dataclass
class GenerationTask:
    """异步渠道的任务句柄，仅在单次请求内存在"""

    id: str
    status: TaskStatus = TaskStatus.SUBMITTED
    attempts: int = 0
    payload: Any = None
    error: str | None = None


@dataclass(frozen=True)
class ConversionOutcome:
    """单张图片的转换结果。

    转换成功时 ``converted`` 非空；失败时 ``converted`` 为 None，
    ``original`` 保留原始引用，``error`` 记录原因，由调用方决定透传、丢弃还是上报。
    """

    original: ImageRef
    converted: ImageRef | None = None
    error: str | None = None
    blocked: bool = False

    @property
    def ok(self) -> bool:
        return self.converted is not None

    @property
    def is_fallback(self) -> bool:
        return self.converted is None


@dataclass(frozen=True)
class RequestContext:
    """单次请求的只读上下文，用于日志前缀等。"""

    request_id: str
    provider: ProviderIdentity = ProviderIdentity.UNKNOWN

    def log_prefix(self, component: str | None = None) -> str:
        prefix = LOG_PREFIX
        if component:
            prefix += f" [{component}]"
        return f"{prefix} [{self.request_id}]"
