"""系统监控模块测试。"""

import asyncio

import pytest

from src.core.monitor import SystemMonitor
from src.crawler.queue import TaskQueue
from src.crawler.tasks import Source, TaskSpec


class _MetricHandle:
    def __init__(self, calls: list, state: str):
        self.calls = calls
        self.state = state

    def set(self, value: float):
        self.calls.append((self.state, value))


class _Metric:
    def __init__(self):
        self.calls: list[tuple[str, float]] = []

    def labels(self, *, state: str):
        return _MetricHandle(self.calls, state)


def test_monitor_interval_must_be_positive():
    """interval 必须为正数。"""
    with pytest.raises(ValueError, match="interval must be greater than 0"):
        SystemMonitor(TaskQueue(), interval=0)


def test_collect_queue_stats_sets_metrics(monkeypatch):
    """应正确采集队列大小指标。"""
    metric = _Metric()
    monitor_module = __import__("src.core.monitor", fromlist=["QUEUE_SIZE"])
    monkeypatch.setattr(monitor_module, "QUEUE_SIZE", metric)

    queue = TaskQueue(1)
    for _ in range(3):
        queue.add_task(TaskSpec(source=Source.AMAZON))
    queue.get_next_task()

    SystemMonitor(queue, interval=1.0)._collect_queue_stats()

    assert ("pending", 2) in metric.calls
    assert ("running", 1) in metric.calls


def test_collect_queue_stats_without_queue_is_noop(monkeypatch):
    metric = _Metric()
    monitor_module = __import__("src.core.monitor", fromlist=["QUEUE_SIZE"])
    monkeypatch.setattr(monitor_module, "QUEUE_SIZE", metric)

    SystemMonitor(None, interval=1.0)._collect_queue_stats()

    assert metric.calls == []


@pytest.mark.asyncio
async def test_monitor_run_can_be_cancelled(monkeypatch):
    """run 循环应能被取消并正常退出。"""
    lag_values: list[float] = []

    class _LagMetric:
        @staticmethod
        def observe(value: float):
            lag_values.append(value)

    monitor_module = __import__("src.core.monitor", fromlist=["EVENT_LOOP_LAG"])
    monkeypatch.setattr(monitor_module, "EVENT_LOOP_LAG", _LagMetric())

    monitor = SystemMonitor(TaskQueue(), interval=0.01)

    task = asyncio.create_task(monitor.run())
    await asyncio.sleep(0.03)
    task.cancel()

    await task
    assert task.done()

    assert lag_values, "Expected EVENT_LOOP_LAG to be observed at least once"
