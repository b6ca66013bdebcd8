"""采集任务队列模块。

实现了带并发准入控制的优先级队列：
- 待执行任务按 (优先级, 创建时间, 入队顺序) 排序，同一优先级内先进先出
- 同时处于 running 状态的任务数不超过 ``max_concurrent``
- 失败任务由队列决定重试或进入终态

所有状态转换均为同步方法，只在事件循环线程内调用，因此无需加锁。
"""

from __future__ import annotations

import asyncio
import itertools
from datetime import timedelta
from typing import TYPE_CHECKING

from ..core.metrics import QUEUE_SIZE
from .tasks import CrawlTask, TaskSpec, TaskStatus, new_task_id, utcnow

if TYPE_CHECKING:
    from collections.abc import Callable
    from datetime import datetime


class TaskQueue:
    """带准入控制的内存任务队列。

    ``_queue`` 保存所有未进入终态的任务（包括 running 状态），
    ``_running`` 保存当前占用并发名额的任务。任务完成或最终失败后从两者中移除。

    Attributes:
        max_concurrent: 最大并发执行数。
        retry_delay: 失败任务重新可调度前的等待时间，默认为0（立即重试）。
    """

    def __init__(
        self,
        max_concurrent: int = 3,
        *,
        retry_delay_seconds: float = 0.0,
        clock: Callable[[], datetime] | None = None,
    ):
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        if retry_delay_seconds < 0:
            raise ValueError("retry_delay_seconds must be non-negative")

        self.max_concurrent = max_concurrent
        self.retry_delay = timedelta(seconds=retry_delay_seconds)
        self._clock = clock or utcnow

        self._queue: list[CrawlTask] = []
        self._index: dict[str, CrawlTask] = {}
        self._running: dict[str, CrawlTask] = {}
        self._seq: dict[str, int] = {}
        self._counter = itertools.count()
        self._changed = asyncio.Event()

    def _sort_key(self, task: CrawlTask) -> tuple[int, datetime, int]:
        return (task.priority, task.created_at, self._seq[task.id])

    def _remove(self, task_id: str) -> None:
        self._queue = [t for t in self._queue if t.id != task_id]
        self._index.pop(task_id, None)
        self._seq.pop(task_id, None)

    def _signal(self) -> None:
        self._refresh_gauges()
        self._changed.set()

    def _refresh_gauges(self) -> None:
        QUEUE_SIZE.labels(state="pending").set(self.pending_count)
        QUEUE_SIZE.labels(state="running").set(len(self._running))

    @property
    def pending_count(self) -> int:
        return sum(1 for t in self._queue if t.status is TaskStatus.PENDING)

    @property
    def running_count(self) -> int:
        return len(self._running)

    def add_task(self, spec: TaskSpec) -> str:
        """新任务入队并返回任务 ID。

        Args:
            spec: 调用方提供的任务描述。

        Returns:
            新分配的任务 ID。
        """
        task_id = new_task_id()
        while task_id in self._index:
            task_id = new_task_id()

        task = CrawlTask.from_spec(spec, task_id=task_id, created_at=self._clock())
        self._seq[task_id] = next(self._counter)
        self._index[task_id] = task
        self._queue.append(task)
        self._queue.sort(key=self._sort_key)

        self._signal()
        return task_id

    def get_next_task(self) -> CrawlTask | None:
        """取出下一个可执行任务并标记为 running。

        并发名额已满时返回 None（背压）；否则返回排序最靠前、且已到可调度时间的待执行任务。
        """
        if len(self._running) >= self.max_concurrent:
            return None

        now = self._clock()
        task = next(
            (
                t
                for t in self._queue
                if t.status is TaskStatus.PENDING and (t.available_at is None or t.available_at <= now)
            ),
            None,
        )
        if task is None:
            return None

        task.status = TaskStatus.RUNNING
        task.started_at = now
        self._running[task.id] = task
        self._refresh_gauges()
        return task

    def complete_task(self, task_id: str) -> None:
        """标记任务完成。未知或非 running 的任务 ID 不做任何处理。"""
        task = self._running.pop(task_id, None)
        if task is None:
            return

        task.status = TaskStatus.COMPLETED
        task.completed_at = self._clock()
        self._remove(task_id)
        self._signal()

    def fail_task(self, task_id: str, error: str) -> TaskStatus | None:
        """标记任务失败，由队列决定重试还是进入终态。

        ``retry_count`` 不会超过 ``max_retries``：达到上限时任务进入 failed 并被移除，
        否则任务回到 pending，在原排序位置上等待再次调度。

        Args:
            task_id: 任务 ID。
            error: 错误信息。

        Returns:
            任务的新状态；未知或非 running 的任务 ID 返回 None。
        """
        task = self._running.pop(task_id, None)
        if task is None:
            return None

        now = self._clock()
        task.error = error
        task.retry_count = min(task.retry_count + 1, task.max_retries)

        if task.retry_count < task.max_retries:
            task.status = TaskStatus.PENDING
            task.available_at = now + self.retry_delay
        else:
            task.status = TaskStatus.FAILED
            task.completed_at = now
            self._remove(task_id)

        self._signal()
        return task.status

    def cancel_task(self, task_id: str) -> bool:
        """移除一个 pending 任务。running 任务无法取消。"""
        task = self._index.get(task_id)
        if task is None or task.status is not TaskStatus.PENDING:
            return False

        self._remove(task_id)
        self._signal()
        return True

    def get_task(self, task_id: str) -> CrawlTask | None:
        return self._index.get(task_id)

    def get_all_tasks(self) -> list[CrawlTask]:
        return list(self._queue)

    def get_status(self) -> dict[str, int]:
        return {
            "pending": self.pending_count,
            "running": len(self._running),
            "total": len(self._queue),
        }

    def next_available_in(self) -> float | None:
        """距离最早一个延迟中的 pending 任务可被调度还需多少秒。"""
        now = self._clock()
        delays = [
            (t.available_at - now).total_seconds()
            for t in self._queue
            if t.status is TaskStatus.PENDING and t.available_at is not None and t.available_at > now
        ]
        return min(delays) if delays else None

    async def wait_for_change(self, timeout: float | None = None) -> bool:
        """等待队列发生变化（入队、完成、失败、取消）。

        Returns:
            在超时前被唤醒返回 True，超时返回 False。
        """
        try:
            await asyncio.wait_for(self._changed.wait(), timeout)
        except TimeoutError:
            return False
        self._changed.clear()
        return True

    def clear(self) -> None:
        self._queue.clear()
        self._index.clear()
        self._running.clear()
        self._seq.clear()
        self._signal()
