from __future__ import annotations

import json
import logging
import time
import uuid
from typing import Any

from aiohttp import web
from pydantic import Field, TypeAdapter, ValidationError
from pydantic.dataclasses import dataclass as pydantic_dataclass

from .core.config import Settings
from .core.constants import CHAT_COMPLETIONS_PATH, LOG_PREFIX, SERVICE_NAME
from .core.errors import BadRequestError, GatewayError, RoutingError
from .core.generator import ImageGenerator
from .core.normalizer import build_request
from .core.response import (
    build_completion,
    build_error,
    build_stream_frames,
    new_response_id,
    render_markdown,
)
from .core.router import resolve_provider
from .core.types import RequestContext

logger = logging.getLogger(__name__)

GENERATOR_KEY = web.AppKey("generator", ImageGenerator)

CORS_HEADERS = {"Access-Control-Allow-Origin": "*"}

CORS_PREFLIGHT_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, Authorization",
    "Access-Control-Max-Age": "86400",
}


@pydantic_dataclass
class ChatMessage:
    """对话消息，content 可以是字符串或内容块列表。"""

    role: str = ""
    content: Any = None


@pydantic_dataclass
class ChatRequest:
    """chat.completions 请求体，未知字段忽略。"""

    messages: list[ChatMessage] = Field(default_factory=list)
    model: str | None = None
    stream: bool | None = None
    size: str | None = None


CHAT_REQUEST_ADAPTER = TypeAdapter(ChatRequest)


def setup_logging(level: str = "INFO") -> None:
    """配置日志系统

    Args:
        level: 日志级别
    """
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def _error_response(error: GatewayError) -> web.Response:
    return web.json_response(build_error(error), status=error.status, headers=CORS_HEADERS)


async def _parse_body(request: web.Request) -> ChatRequest:
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise BadRequestError(f"请求体不是合法 JSON: {e}") from e
    if not isinstance(body, dict):
        raise BadRequestError("请求体必须是 JSON 对象")
    try:
        return CHAT_REQUEST_ADAPTER.validate_python(body)
    except ValidationError as e:
        raise BadRequestError(f"请求体格式错误: {e.errors()[:3]}") from e


@web.middleware
async def cors_middleware(request: web.Request, handler) -> web.StreamResponse:
    """处理 CORS 预检，并把路由层的 404/405 转为统一错误格式。"""
    if request.method == "OPTIONS":
        return web.Response(headers=CORS_PREFLIGHT_HEADERS)

    try:
        response = await handler(request)
    except web.HTTPNotFound:
        logger.warning(f"{LOG_PREFIX} [HTTP] 路由不匹配: {request.path}")
        return _error_response(RoutingError("Not found"))
    except web.HTTPMethodNotAllowed:
        logger.warning(f"{LOG_PREFIX} [HTTP] 不支持 {request.method} {request.path}")
        return web.json_response(
            {"error": {"message": "Method Not Allowed", "type": "invalid_request_error"}},
            status=405,
            headers=CORS_HEADERS,
        )

    if not response.prepared:
        response.headers.setdefault("Access-Control-Allow-Origin", "*")
    return response


async def health(request: web.Request) -> web.Response:
    generator = request.app[GENERATOR_KEY]
    return web.json_response(
        {
            "status": "ok",
            "service": SERVICE_NAME,
            "providers": generator.providers,
            "capabilities": generator.capabilities(),
        }
    )


async def chat_completions(request: web.Request) -> web.StreamResponse:
    """统一入口：鉴权分流 -> 规范化 -> 渠道适配 -> 响应包装。"""
    generator = request.app[GENERATOR_KEY]
    request_id = uuid.uuid4().hex[:8]
    start_time = time.time()
    prefix = f"{LOG_PREFIX} [HTTP] [{request_id}]"
    logger.info(f"{prefix} --> {request.method} {request.path}")

    provider_name = "Unknown"
    try:
        credential, provider = resolve_provider(request.headers.get("Authorization"))
        provider_name = provider.value
        ctx = RequestContext(request_id=request_id, provider=provider)
        body = await _parse_body(request)
        normalized = build_request(body.messages, body.model, body.size, body.stream)
        logger.debug(
            f"{prefix} 提取 Prompt: {normalized.prompt[:80]}... (完整长度: {len(normalized.prompt)})"
        )
        result = await generator.generate(credential, provider, normalized, ctx)
    except GatewayError as e:
        e.provider = e.provider or provider_name
        duration = time.time() - start_time
        logger.error(f"{prefix} <-- {e.status} ({e.provider}, 耗时: {duration:.2f}s): {e.message}")
        return _error_response(e)
    except Exception as e:  # noqa: BLE001
        duration = time.time() - start_time
        logger.error(f"{prefix} <-- 500 未处理异常 (耗时: {duration:.2f}s): {e}", exc_info=True)
        error = GatewayError(str(e) or "Internal Server Error", provider=provider_name)
        return _error_response(error)

    content = render_markdown(result)
    model_name = body.model or result.model or "unknown-model"
    response_id = new_response_id()
    duration = time.time() - start_time

    if normalized.stream_requested:
        response = web.StreamResponse(
            headers={
                "Content-Type": "text/event-stream",
                "Cache-Control": "no-cache",
                "Connection": "keep-alive",
                **CORS_HEADERS,
            }
        )
        await response.prepare(request)
        for frame in build_stream_frames(content, model_name, response_id):
            await response.write(frame)
        await response.write_eof()
        logger.info(f"{prefix} <-- 200 (流式, 耗时: {duration:.2f}s)")
        return response

    logger.info(f"{prefix} <-- 200 (JSON, 耗时: {duration:.2f}s)")
    return web.json_response(
        build_completion(content, model_name, response_id), headers=CORS_HEADERS
    )


def create_app(settings: Settings | None = None, generator: ImageGenerator | None = None) -> web.Application:
    """创建 aiohttp 应用。"""
    settings = settings or Settings()
    app = web.Application(middlewares=[cors_middleware])
    app[GENERATOR_KEY] = generator or ImageGenerator(settings)
    app.router.add_get("/", health)
    app.router.add_get("/health", health)
    app.router.add_post(CHAT_COMPLETIONS_PATH, chat_completions)
    return app


def main() -> None:
    settings = Settings.from_env()
    setup_logging(settings.log_level)
    logger.info(f"{LOG_PREFIX} [Startup] 服务启动端口 {settings.port}")
    logger.info(f"{LOG_PREFIX} [Startup] 支持: 火山引擎, Gitee, ModelScope, HuggingFace")
    web.run_app(create_app(settings), host=settings.host, port=settings.port, print=None)


if __name__ == "__main__":
    main()
