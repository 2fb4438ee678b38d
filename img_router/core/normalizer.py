"""
Request normalization
从多轮对话中提取提示词与参考图
"""

from __future__ import annotations

import logging
import re
from typing import Any, Iterable

from .constants import LOG_PREFIX
from .transcoder import to_image_ref
from .types import ImageRef, NormalizedRequest

logger = logging.getLogger(__name__)

MARKDOWN_IMAGE_PATTERN = re.compile(r"!\[.*?\]\((.*?)\)", flags=re.DOTALL)


def _append_image(images: list[ImageRef], src: Any) -> None:
    if not isinstance(src, str) or not src.strip():
        return
    ref = to_image_ref(src)
    if ref is None:
        logger.warning(f"{LOG_PREFIX} [Normalizer] 无法解析的图片地址，已跳过: {src[:50]}...")
        return
    images.append(ref)


def _image_url_of(block: dict) -> Any:
    image_url = block.get("image_url")
    if isinstance(image_url, dict):
        return image_url.get("url")
    return image_url


def normalize(messages: Iterable[Any]) -> tuple[str, list[ImageRef]]:
    """
    提取最后一条用户消息中的提示词和图片

    Args:
        messages: 对话消息列表（dict 或带 role/content 属性的对象）

    Returns:
        tuple[str, list[ImageRef]]: 提示词和有序图片列表
    """
    prompt = ""
    images: list[ImageRef] = []

    for message in reversed(list(messages or [])):
        if isinstance(message, dict):
            role, content = message.get("role"), message.get("content")
        else:
            role = getattr(message, "role", None)
            content = getattr(message, "content", None)
        if role != "user":
            continue

        if isinstance(content, str):
            prompt = content
            # 历史生成结果以 Markdown 图片形式回传时，作为图生图参考
            for src in MARKDOWN_IMAGE_PATTERN.findall(content):
                _append_image(images, src.strip())
        elif isinstance(content, list):
            text_found = False
            for block in content:
                if not isinstance(block, dict):
                    continue
                block_type = block.get("type")
                if block_type == "text" and not text_found:
                    prompt = block.get("text") or ""
                    text_found = True
                elif block_type == "image_url":
                    _append_image(images, _image_url_of(block))
        break

    return prompt, images


def build_request(
    messages: Iterable[Any],
    model: str | None = None,
    size: str | None = None,
    stream: bool = False,
) -> NormalizedRequest:
    """构建规范化请求。"""
    prompt, images = normalize(messages)
    return NormalizedRequest(
        prompt=prompt,
        images=images,
        model_hint=model or None,
        size_hint=size or None,
        stream_requested=stream is True,
    )
