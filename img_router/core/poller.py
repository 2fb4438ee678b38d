"""
Async task poller
异步任务轮询：Submitted -> Polling -> Succeeded | Failed | TimedOut
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable

import aiohttp

from .constants import LOG_PREFIX
from .errors import VendorError
from .types import GenerationTask, TaskStatus

logger = logging.getLogger(__name__)


class PollStatus(str, Enum):
    """单次轮询映射后的结果"""

    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class PollResult:
    status: PollStatus
    payload: Any = None
    error: str | None = None
    vendor_status: str | None = None


PollCheck = Callable[[], Awaitable[PollResult]]


class AsyncTaskPoller:
    """有界轮询器。

    每次轮询前等待 ``interval`` 秒，最多轮询 ``max_attempts`` 次，
    最坏耗时为 interval * max_attempts。轮询请求本身的传输错误不是终态，
    记录日志后计入同一次数预算。
    """

    def __init__(
        self,
        interval: float,
        max_attempts: int,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        log_prefix: str = LOG_PREFIX,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be positive")
        self.interval = interval
        self.max_attempts = max_attempts
        self._sleep = sleep
        self.prefix = f"{log_prefix} [Poller]"

    async def run(self, task: GenerationTask, check: PollCheck) -> GenerationTask:
        """轮询直到终态，返回更新后的任务。"""
        task.status = TaskStatus.POLLING
        task.attempts = 0

        while task.attempts < self.max_attempts:
            await self._sleep(self.interval)
            task.attempts += 1

            try:
                result = await check()
            except (VendorError, aiohttp.ClientError, asyncio.TimeoutError) as e:
                logger.warning(
                    f"{self.prefix} 轮询警告 ({task.attempts}/{self.max_attempts}): {e or type(e).__name__}"
                )
                continue

            if result.status == PollStatus.SUCCEEDED:
                task.status = TaskStatus.SUCCEEDED
                task.payload = result.payload
                logger.info(f"{self.prefix} 任务 {task.id} 成功完成, 耗时: {task.attempts}次轮询")
                return task

            if result.status == PollStatus.FAILED:
                task.status = TaskStatus.FAILED
                task.error = result.error
                logger.error(f"{self.prefix} 任务 {task.id} 失败: {result.error}")
                return task

            logger.debug(
                f"{self.prefix} 状态: {result.vendor_status or result.status.value} (第{task.attempts}次)"
            )

        task.status = TaskStatus.TIMED_OUT
        logger.error(f"{self.prefix} 任务 {task.id} 超时 ({self.max_attempts}次轮询)")
        return task
