"""系统监控模块。

该模块负责定期采集系统级指标，包括：
1. 事件循环延迟 (Event Loop Lag)
2. 任务队列大小 (Queue Size)
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from loguru import logger

from .metrics import EVENT_LOOP_LAG, QUEUE_SIZE

if TYPE_CHECKING:
    from ..crawler.queue import TaskQueue


class SystemMonitor:
    """系统监控器。

    在后台运行，定期采集指标。

    Attributes:
        queue: 任务队列，用于采集队列大小。
        interval: 采集间隔（秒）。
    """

    def __init__(self, queue: TaskQueue | None = None, interval: float = 1.0):
        if interval <= 0:
            raise ValueError("interval must be greater than 0")

        self.queue = queue
        self.interval = interval

    def _collect_queue_stats(self) -> None:
        if self.queue is None:
            return

        status = self.queue.get_status()
        QUEUE_SIZE.labels(state="pending").set(status["pending"])
        QUEUE_SIZE.labels(state="running").set(status["running"])

    async def run(self) -> None:
        """运行监控循环。"""
        logger.info("System Monitor started.")
        loop = asyncio.get_running_loop()
        expected_wake_time = loop.time() + self.interval

        try:
            while True:
                sleep_for = max(0.0, expected_wake_time - loop.time())
                await asyncio.sleep(sleep_for)

                try:
                    real_wake_time = loop.time()
                    EVENT_LOOP_LAG.observe(max(0.0, real_wake_time - expected_wake_time))
                    expected_wake_time = real_wake_time + self.interval

                    self._collect_queue_stats()
                except Exception as e:
                    logger.exception("Unexpected error in System Monitor loop: {}", e)

        except asyncio.CancelledError:
            logger.info("System Monitor stopped.")
