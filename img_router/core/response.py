"""
Response building
将生成结果包装为 chat.completion 响应（JSON 或事件流）
"""

from __future__ import annotations

import json
import time
import uuid
from typing import Any

from .errors import GatewayError
from .types import GenerationResult

STREAM_DONE = b"data: [DONE]\n\n"


def new_response_id() -> str:
    return f"chatcmpl-{uuid.uuid4()}"


def render_markdown(result: GenerationResult) -> str:
    """将结果渲染为 Markdown 图片，多张之间以空行分隔。"""
    return "\n\n".join(
        f"![Generated Image]({artifact.as_src()})" for artifact in result.artifacts
    )


def build_completion(content: str, model: str, response_id: str | None = None) -> dict[str, Any]:
    """构建非流式 chat.completion 对象。"""
    return {
        "id": response_id or new_response_id(),
        "object": "chat.completion",
        "created": int(time.time()),
        "model": model,
        "choices": [
            {
                "index": 0,
                "message": {"role": "assistant", "content": content},
                "finish_reason": "stop",
            }
        ],
        "usage": {"prompt_tokens": 0, "completion_tokens": 0, "total_tokens": 0},
    }


def _chunk(response_id: str, model: str, delta: dict, finish_reason: str | None) -> dict[str, Any]:
    return {
        "id": response_id,
        "object": "chat.completion.chunk",
        "created": int(time.time()),
        "model": model,
        "choices": [{"index": 0, "delta": delta, "finish_reason": finish_reason}],
    }


def _frame(payload: dict[str, Any]) -> bytes:
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n".encode("utf-8")


def build_stream_frames(
    content: str, model: str, response_id: str | None = None
) -> list[bytes]:
    """构建事件流：完整内容帧、空结束帧、[DONE]。

    生成结果本身不是增量的，内容不做分片。
    """
    response_id = response_id or new_response_id()
    return [
        _frame(_chunk(response_id, model, {"role": "assistant", "content": content}, None)),
        _frame(_chunk(response_id, model, {}, "stop")),
        STREAM_DONE,
    ]


def build_error(error: GatewayError) -> dict[str, Any]:
    """统一错误信封。"""
    return {
        "error": {
            "message": error.message,
            "type": error.error_type,
            "provider": error.provider or "Unknown",
        }
    }
