"""Pytest 配置和共享 fixtures。"""
# ruff: noqa: E402

import sys
from pathlib import Path

# Add the project root to sys.path so `from src...` works (src is a package)
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


from collections.abc import Sequence
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

from src.crawler.tasks import CrawlResult, ExecutionLogEntry, Source

# ==================== Dummy 协作者 ====================


class FakeClock:
    """可手动推进的时钟，用于控制任务创建时间与重试延迟。"""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2024, 1, 1, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class FakeExecutor:
    """按预设结果序列返回或抛出的采集执行器。"""

    def __init__(self, *results: CrawlResult | BaseException):
        self.results = list(results)
        self.calls: list[tuple[Source, str | None, tuple[str, ...]]] = []

    async def execute(self, source: Source, category: str | None, keywords: Sequence[str]) -> CrawlResult:
        self.calls.append((source, category, tuple(keywords)))
        result = self.results.pop(0) if self.results else CrawlResult(items_collected=0)
        if isinstance(result, BaseException):
            raise result
        return result


class RecordingExecutionLog:
    """记录调用顺序的执行日志，可配置为抛出异常。"""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.records: list[ExecutionLogEntry] = []
        self.updates: list[tuple[str, dict[str, Any]]] = []

    async def record(self, entry: ExecutionLogEntry) -> None:
        if self.fail:
            raise RuntimeError("log sink down")
        self.records.append(entry)

    async def update(self, task_id: str, **fields: Any) -> None:
        if self.fail:
            raise RuntimeError("log sink down")
        self.updates.append((task_id, fields))


class RecordingNotifier:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent: list[tuple[list[str], str, dict[str, Any]]] = []

    async def notify(self, user_ids, message, payload) -> None:
        if self.fail:
            raise RuntimeError("notifier down")
        self.sent.append((list(user_ids), message, dict(payload)))

    async def close(self) -> None:
        return


class DummyDirectory:
    def __init__(self, watchers: dict[str, list[str]] | None = None, fail: bool = False):
        self.watchers = watchers or {}
        self.fail = fail

    async def watchers_of(self, category: str) -> list[str]:
        if self.fail:
            raise RuntimeError("directory down")
        return list(self.watchers.get(category, []))


class DummyRedis:
    def __init__(self):
        self.calls: list[tuple[str, tuple, dict]] = []
        self.sets: dict[str, set[bytes]] = {}
        self._fail_times = 0

    def set_fail_times(self, n: int):
        self._fail_times = n

    async def xadd(self, stream, entry, maxlen=None, approximate=None):
        self.calls.append(("xadd", (stream, entry), {"maxlen": maxlen, "approximate": approximate}))
        if self._fail_times > 0:
            self._fail_times -= 1
            raise RuntimeError("transient")
        return "0-1"

    async def smembers(self, key):
        self.calls.append(("smembers", (key,), {}))
        return set(self.sets.get(key, set()))


# ==================== Fixtures ====================


@pytest.fixture
def clock():
    """返回一个可手动推进的时钟"""
    return FakeClock()


@pytest.fixture
def fake_executor():
    return FakeExecutor()


@pytest.fixture
def execution_log():
    return RecordingExecutionLog()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def directory():
    return DummyDirectory({"Electronics": ["u1", "u2"]})


@pytest.fixture
def dummy_redis():
    return DummyRedis()
