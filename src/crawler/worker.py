"""工作器模块。

该模块实现了单个采集任务的执行流程：

1. 写入 started 执行日志
2. 调用采集执行器（可配置超时）
3. 成功：更新日志为 completed，完成任务，通知关注该类目的用户
4. 失败：更新日志为 failed，交由队列决定重试或终止

采集执行器抛出的任何异常都会被转换为失败信号，不会影响调度器；
执行日志与通知调用相互隔离，失败只记录日志与指标，不影响任务状态转换。
"""

from __future__ import annotations

import asyncio
import time
from typing import TYPE_CHECKING, Any

from loguru import logger

from ..core.metrics import ITEMS_COLLECTED, SINK_ERRORS, TASK_DURATION, TASK_ERRORS, TASKS_FINISHED
from .executor import classify_error
from .tasks import CrawlResult, ExecutionLogEntry, LogStatus, TaskStatus, utcnow

if TYPE_CHECKING:
    from datetime import datetime

    from ..core.execution_log import ExecutionLog
    from ..core.notifier import Notifier, WatcherDirectory
    from .executor import CrawlExecutor
    from .queue import TaskQueue
    from .tasks import CrawlTask


class Worker:
    """工作器类，负责执行队列分配给它的任务。

    Attributes:
        queue: 任务队列，用于回报任务结果。
        executor: 采集执行器。
        execution_log: 执行日志。
        notifier: 通知发布器。
        directory: 类目关注者查询。
        timeout_seconds: 单次采集超时（秒），None 表示不限制。
    """

    def __init__(
        self,
        queue: TaskQueue,
        executor: CrawlExecutor,
        execution_log: ExecutionLog,
        notifier: Notifier,
        directory: WatcherDirectory,
        *,
        timeout_seconds: float | None = None,
    ):
        if timeout_seconds is not None and timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be greater than 0")

        self.queue = queue
        self.executor = executor
        self.execution_log = execution_log
        self.notifier = notifier
        self.directory = directory
        self.timeout_seconds = timeout_seconds
        self.log = logger.bind(name="Worker")

    async def run_task(self, task: CrawlTask) -> None:
        """执行单个任务，永不向调用方抛出采集异常。"""
        self.log.info("Executing task {} for {}/{}", task.id, task.source, task.category)
        started_at = utcnow()
        start = time.perf_counter()

        await self._log_start(task, started_at)

        try:
            result = await self._execute(task)
        except Exception as e:
            duration_ms = int((time.perf_counter() - start) * 1000)
            await self._on_failure(task, e, duration_ms)
            return

        duration_ms = int((time.perf_counter() - start) * 1000)
        await self._on_success(task, result, duration_ms)

    async def _execute(self, task: CrawlTask) -> CrawlResult:
        async with asyncio.timeout(self.timeout_seconds):
            return await self.executor.execute(task.source, task.category, task.keywords)

    async def _on_success(self, task: CrawlTask, result: CrawlResult, duration_ms: int) -> None:
        # 指标与日志失败不能阻止任务释放准入名额
        try:
            TASK_DURATION.labels(source=task.source).observe(duration_ms / 1000)
            ITEMS_COLLECTED.labels(source=task.source).inc(result.items_collected)
        except Exception as e:
            self.log.exception("Failed to record metrics for {}: {}", task.id, e)

        try:
            await self._log_update(
                task,
                status=LogStatus.COMPLETED,
                items_collected=result.items_collected,
                completed_at=utcnow(),
                duration_ms=duration_ms,
            )
        finally:
            self.queue.complete_task(task.id)

        TASKS_FINISHED.labels(source=task.source, outcome="completed").inc()
        self.log.info("Task {} completed: {} items collected", task.id, result.items_collected)

        await self._send_update_notification(task, result.items_collected)

    async def _on_failure(self, task: CrawlTask, error: Exception, duration_ms: int) -> None:
        message = str(error) or type(error).__name__
        if isinstance(error, TimeoutError) and self.timeout_seconds is not None:
            message = f"Crawl timed out after {self.timeout_seconds}s"
        error_type = classify_error(error)

        TASK_DURATION.labels(source=task.source).observe(duration_ms / 1000)
        TASK_ERRORS.labels(source=task.source, error_type=error_type).inc()
        self.log.warning("Task {} failed [{}]: {}", task.id, error_type, message)

        await self._log_update(
            task,
            status=LogStatus.FAILED,
            error_message=message,
            error_type=str(error_type),
            completed_at=utcnow(),
            duration_ms=duration_ms,
        )

        status = self.queue.fail_task(task.id, message)
        if status is TaskStatus.PENDING:
            TASKS_FINISHED.labels(source=task.source, outcome="retried").inc()
            self.log.info("Task {} will retry ({}/{})", task.id, task.retry_count, task.max_retries)
        elif status is TaskStatus.FAILED:
            TASKS_FINISHED.labels(source=task.source, outcome="failed").inc()
            self.log.error("Task {} failed permanently after {} attempts: {}", task.id, task.retry_count, message)

    async def _log_start(self, task: CrawlTask, started_at: datetime) -> None:
        entry = ExecutionLogEntry(
            task_id=task.id,
            source=task.source,
            status=LogStatus.STARTED,
            started_at=started_at,
        )
        try:
            await self.execution_log.record(entry)
        except Exception as e:
            SINK_ERRORS.labels(sink="execution_log").inc()
            self.log.exception("Failed to log task start for {}: {}", task.id, e)

    async def _log_update(self, task: CrawlTask, **fields: Any) -> None:
        try:
            await self.execution_log.update(task.id, **fields)
        except Exception as e:
            SINK_ERRORS.labels(sink="execution_log").inc()
            self.log.exception("Failed to update execution log for {}: {}", task.id, e)

    async def _send_update_notification(self, task: CrawlTask, items_collected: int) -> None:
        """通知关注该类目的用户数据已更新。没有类目的任务不发送通知。"""
        if not task.category:
            return

        try:
            user_ids = await self.directory.watchers_of(task.category)
        except Exception as e:
            SINK_ERRORS.labels(sink="directory").inc()
            self.log.exception("Failed to resolve watchers for category {}: {}", task.category, e)
            return

        if not user_ids:
            return

        message = f"{task.source} {task.category} updated: {items_collected} items collected"
        payload = {
            "source": task.source,
            "category": task.category,
            "items_collected": items_collected,
            "task_id": task.id,
        }
        try:
            await self.notifier.notify(user_ids, message, payload)
        except Exception as e:
            SINK_ERRORS.labels(sink="notifier").inc()
            self.log.exception("Failed to send update notification for {}: {}", task.id, e)
