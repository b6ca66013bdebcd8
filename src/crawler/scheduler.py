"""任务调度器模块。

该模块实现了按数据源的周期性任务调度：
1. 每个启用的数据源拥有独立的定时器，每次触发为每个类目生成一个 MEDIUM 任务
2. 单一的分发循环从队列中取出可准入的任务，交给 Worker 并发执行
3. 对外提供启动/停止、手动触发、调度配置更新和状态查询

分发循环默认由队列变化事件唤醒，并以固定间隔轮询兜底。
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any

from loguru import logger
from pydantic import ValidationError

from ..core.metrics import TASKS_CREATED
from .tasks import (
    DEFAULT_SCHEDULES,
    Priority,
    ScheduleConfig,
    ScheduleConfigError,
    Source,
    TaskSpec,
    parse_source,
)

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping, Sequence

    from .queue import TaskQueue
    from .worker import Worker


class Scheduler:
    """任务调度器主类。

    状态机：``Stopped -> Running``（start），``Running -> Stopped``（stop）。
    stop 只取消定时器与分发循环，已在执行的任务会继续运行到结束。

    Attributes:
        queue: 任务队列。
        worker: 执行任务的工作器。
        poll_interval: 分发循环轮询间隔（秒）。
        event_driven: 是否由队列变化事件唤醒分发循环。
        run_on_start: 定时器启动时是否立即生成一轮任务。
        max_retries: 生成任务时使用的最大尝试次数。
    """

    def __init__(
        self,
        queue: TaskQueue,
        worker: Worker,
        schedules: Iterable[ScheduleConfig] | None = None,
        *,
        poll_interval_seconds: float = 50.0,
        event_driven: bool = True,
        run_on_start: bool = True,
        max_retries: int = 3,
    ):
        if poll_interval_seconds <= 0:
            raise ValueError("poll_interval_seconds must be greater than 0")

        self.queue = queue
        self.worker = worker
        self.poll_interval = poll_interval_seconds
        self.event_driven = event_driven
        self.run_on_start = run_on_start
        self.max_retries = max_retries
        self.log = logger.bind(name="Scheduler")

        self._schedules: dict[Source, ScheduleConfig] = {s.source: s for s in DEFAULT_SCHEDULES}
        for schedule in schedules or ():
            self._schedules[schedule.source] = schedule

        self._timers: dict[Source, asyncio.Task[None]] = {}
        self._dispatcher: asyncio.Task[None] | None = None
        self._inflight: set[asyncio.Task[None]] = set()
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def inflight_count(self) -> int:
        return len(self._inflight)

    def get_schedule(self, source: Source | str) -> ScheduleConfig:
        return self._schedules[parse_source(source)]

    def start(self) -> None:
        """启动调度器：为每个启用的数据源启动定时器，并启动分发循环。

        需要在运行中的事件循环内调用。
        """
        if self._running:
            self.log.warning("Scheduler is already running")
            return

        self._running = True
        self.log.info("Starting crawl scheduler...")

        for source, schedule in self._schedules.items():
            if schedule.enabled:
                self._start_timer(source)

        self._dispatcher = asyncio.create_task(self._dispatch_loop(), name="dispatcher")

    def stop(self) -> None:
        """停止调度器：取消所有定时器与分发循环，不中断正在执行的任务。"""
        if not self._running:
            return

        self._running = False
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()

        if self._dispatcher is not None:
            self._dispatcher.cancel()
            self._dispatcher = None

        self.log.info("Crawl scheduler stopped ({} task(s) still in flight)", len(self._inflight))

    async def drain(self, timeout: float | None = None) -> bool:
        """等待正在执行的任务结束。

        Returns:
            全部结束返回 True，超时返回 False。
        """
        if not self._inflight:
            return True
        done, pending = await asyncio.wait(set(self._inflight), timeout=timeout)
        return not pending

    def _start_timer(self, source: Source) -> None:
        schedule = self._schedules[source]
        self._timers[source] = asyncio.create_task(self._run_timer(schedule), name=f"timer-{source}")
        self.log.info("Scheduled {} crawl every {} minutes", source, schedule.interval)

    def _cancel_timer(self, source: Source) -> None:
        timer = self._timers.pop(source, None)
        if timer is not None:
            timer.cancel()

    async def _run_timer(self, schedule: ScheduleConfig) -> None:
        """单个数据源的定时器。"""
        if self.run_on_start:
            self._create_crawl_tasks(schedule)

        while True:
            await asyncio.sleep(schedule.interval * 60)
            if self._running and schedule.enabled:
                self._create_crawl_tasks(schedule)

    def _create_crawl_tasks(self, schedule: ScheduleConfig) -> list[str]:
        """为调度配置中的每个类目生成一个 MEDIUM 任务。"""
        task_ids = []
        for category in schedule.categories:
            spec = TaskSpec(
                source=schedule.source,
                category=category,
                priority=Priority.MEDIUM,
                max_retries=self.max_retries,
            )
            task_id = self.queue.add_task(spec)
            TASKS_CREATED.labels(source=schedule.source, priority=Priority.MEDIUM.name).inc()
            task_ids.append(task_id)
            self.log.debug("Created crawl task {} for {}/{}", task_id, schedule.source, category)
        return task_ids

    async def _dispatch_loop(self) -> None:
        """分发循环：取出所有可准入任务并发执行，然后等待下一次唤醒。"""
        self.log.info("Dispatcher started (poll interval {}s, event driven: {})", self.poll_interval, self.event_driven)
        while self._running:
            try:
                self.dispatch_ready()
            except Exception as e:
                self.log.exception("Unexpected error in dispatch loop: {}", e)

            timeout = self.poll_interval
            delay = self.queue.next_available_in()
            if delay is not None:
                timeout = min(timeout, max(delay, 0.0))

            if self.event_driven:
                await self.queue.wait_for_change(timeout)
            else:
                await asyncio.sleep(timeout)

    def dispatch_ready(self) -> int:
        """把当前所有可准入的任务交给 Worker，返回本次分发的任务数。"""
        dispatched = 0
        while (task := self.queue.get_next_task()) is not None:
            job = asyncio.create_task(self.worker.run_task(task), name=f"task-{task.id}")
            self._inflight.add(job)
            job.add_done_callback(self._inflight.discard)
            job.add_done_callback(self._log_job_error)
            dispatched += 1
        return dispatched

    def _log_job_error(self, job: asyncio.Task[None]) -> None:
        if job.cancelled():
            return
        if (exc := job.exception()) is not None:
            self.log.opt(exception=exc).error("Unhandled error in {}: {}", job.get_name(), exc)

    def trigger_manual_crawl(
        self,
        source: Source | str,
        category: str | None = None,
        keywords: Sequence[str] | None = None,
    ) -> str:
        """立即创建一个 HIGH 优先级任务并返回任务 ID。

        Raises:
            ValueError: 数据源不受支持，或类目不是字符串。
        """
        spec = TaskSpec(
            source=parse_source(source),
            category=category,
            keywords=tuple(keywords or ()),
            priority=Priority.HIGH,
            max_retries=self.max_retries,
        )
        task_id = self.queue.add_task(spec)
        TASKS_CREATED.labels(source=spec.source, priority=Priority.HIGH.name).inc()
        self.log.info("Manual crawl task {} created for {}", task_id, spec.source)
        return task_id

    def update_schedule(self, source: Source | str, partial: Mapping[str, Any]) -> ScheduleConfig:
        """合并并替换某个数据源的调度配置，然后重建其定时器。

        已入队的任务不受影响。

        Raises:
            ValueError: 数据源不受支持。
            ScheduleConfigError: 合并后的配置非法（例如 interval <= 0）。
        """
        src = parse_source(source)
        existing = self._schedules[src]

        if "source" in partial and parse_source(partial["source"]) is not src:
            raise ScheduleConfigError("Changing the source of a schedule is not allowed")

        try:
            updated = ScheduleConfig.model_validate({**existing.model_dump(), **dict(partial), "source": src})
        except ValidationError as e:
            raise ScheduleConfigError(f"Invalid schedule for {src}: {e}") from e

        self._schedules[src] = updated
        self._cancel_timer(src)
        if self._running and updated.enabled:
            self._start_timer(src)

        self.log.info(
            "Schedule for {} updated: enabled={}, interval={}min, categories={}",
            src,
            updated.enabled,
            updated.interval,
            updated.categories,
        )
        return updated

    def get_status(self) -> dict[str, Any]:
        schedules = [
            {
                "source": str(source),
                "enabled": config.enabled,
                "interval": config.interval,
                "categories": len(config.categories),
                "category_names": list(config.categories),
            }
            for source, config in self._schedules.items()
        ]
        return {
            "is_running": self._running,
            "schedules": schedules,
            "queue_status": self.queue.get_status(),
        }
