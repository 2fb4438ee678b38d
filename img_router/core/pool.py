"""Endpoint pool failover."""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, Sequence, TypeVar

from .constants import LOG_PREFIX
from .errors import GatewayError, VendorError

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def run_endpoint_pool(
    pool: Sequence[str],
    attempt: Callable[[str], Awaitable[T]],
    log_prefix: str = LOG_PREFIX,
) -> T:
    """按顺序尝试资源池中的每个候选地址。

    每个候选独立完成整次调用，第一个成功的结果直接返回；全部失败时抛出
    最后一个候选的错误。候选之间严格串行，不会并发竞争。
    """
    if not pool:
        raise VendorError("资源池为空")

    last_error: GatewayError | None = None
    for index, base_url in enumerate(pool):
        logger.info(f"{log_prefix} 尝试节点 {index + 1}/{len(pool)}: {base_url}")
        try:
            result = await attempt(base_url)
        except GatewayError as e:
            logger.warning(f"{log_prefix} 节点 {base_url} 失败: {e.message}")
            last_error = e
            continue
        if index:
            logger.info(f"{log_prefix} 故障转移成功，使用节点 {base_url}")
        return result

    logger.error(f"{log_prefix} 资源池 {len(pool)} 个节点全部失败")
    raise last_error
