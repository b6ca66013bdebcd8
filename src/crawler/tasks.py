"""任务定义模块。

该模块定义了采集系统中使用的任务类型、优先级、数据源和调度配置。
任务通过 TaskQueue 进行调度，按优先级和创建时间排序。
"""

from __future__ import annotations

import dataclasses
import secrets
import time
from datetime import UTC, datetime
from enum import IntEnum, StrEnum

from pydantic import BaseModel, Field


class Source(StrEnum):
    """支持的外部数据源（封闭集合）。"""

    AMAZON = "amazon"
    ALIEXPRESS = "aliexpress"
    EBAY = "ebay"


class Priority(IntEnum):
    """任务优先级，数值越小，优先级越高。

    - HIGH: 手动触发的采集任务
    - MEDIUM: 定时调度生成的采集任务
    - LOW: 预留给补采等低优先级任务
    """

    HIGH = 0
    MEDIUM = 1
    LOW = 2


class TaskStatus(StrEnum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class LogStatus(StrEnum):
    STARTED = "started"
    COMPLETED = "completed"
    FAILED = "failed"


def utcnow() -> datetime:
    return datetime.now(UTC)


def new_task_id() -> str:
    """生成形如 ``task_<毫秒时间戳>_<随机串>`` 的任务 ID。"""
    return f"task_{int(time.time() * 1000)}_{secrets.token_hex(5)[:9]}"


def parse_source(value: Source | str) -> Source:
    """将字符串解析为 Source，未知数据源抛出 ValueError。"""
    if isinstance(value, Source):
        return value
    try:
        return Source(str(value).strip().lower())
    except ValueError:
        raise ValueError(f"Unsupported source: {value!r}") from None


@dataclasses.dataclass(slots=True, frozen=True)
class TaskSpec:
    """调用方提供的任务描述。

    Attributes:
        source: 数据源
        category: 类目，可为空
        keywords: 搜索关键词（有序）
        priority: 任务优先级
        max_retries: 最大尝试次数，默认为3
    """

    source: Source
    category: str | None = None
    keywords: tuple[str, ...] = ()
    priority: Priority = Priority.MEDIUM
    max_retries: int = 3

    def __post_init__(self):
        if self.max_retries < 0:
            raise ValueError("max_retries must be non-negative")
        if self.category is not None and not isinstance(self.category, str):
            raise ValueError("category must be a string")


@dataclasses.dataclass(slots=True)
class CrawlTask:
    """队列中的采集任务。

    仅由 TaskQueue 的状态转换方法修改。``available_at`` 为任务可再次被调度的
    最早时间，新任务等于 ``created_at``，重试任务由重试延迟决定。

    Attributes:
        id: 任务唯一标识
        source: 数据源
        category: 类目
        keywords: 搜索关键词
        priority: 任务优先级
        max_retries: 最大尝试次数
        status: 当前状态
        retry_count: 已失败次数
        created_at: 创建时间
        started_at: 最近一次开始执行的时间
        completed_at: 进入终态的时间
        error: 最近一次失败的错误信息
        available_at: 可被调度的最早时间
    """

    id: str
    source: Source
    category: str | None
    keywords: tuple[str, ...]
    priority: Priority
    max_retries: int
    created_at: datetime
    status: TaskStatus = TaskStatus.PENDING
    retry_count: int = 0
    started_at: datetime | None = None
    completed_at: datetime | None = None
    error: str | None = None
    available_at: datetime | None = None

    @classmethod
    def from_spec(cls, spec: TaskSpec, *, task_id: str, created_at: datetime) -> CrawlTask:
        return cls(
            id=task_id,
            source=spec.source,
            category=spec.category,
            keywords=tuple(spec.keywords),
            priority=spec.priority,
            max_retries=spec.max_retries,
            created_at=created_at,
            available_at=created_at,
        )

    @property
    def spec(self) -> TaskSpec:
        return TaskSpec(
            source=self.source,
            category=self.category,
            keywords=self.keywords,
            priority=self.priority,
            max_retries=self.max_retries,
        )


@dataclasses.dataclass(slots=True)
class ExecutionLogEntry:
    """一次任务执行的生命周期记录。"""

    task_id: str
    source: Source
    status: LogStatus
    started_at: datetime
    items_collected: int | None = None
    error_message: str | None = None
    error_type: str | None = None
    completed_at: datetime | None = None
    duration_ms: int | None = None


@dataclasses.dataclass(slots=True, frozen=True)
class CrawlResult:
    items_collected: int = 0


class ScheduleConfig(BaseModel):
    """单个数据源的调度配置模型"""

    source: Source
    categories: list[str] = Field(default_factory=list)
    interval: int = Field(60, gt=0, description="调度间隔（分钟）")
    enabled: bool = True


class ScheduleConfigError(ValueError):
    """调度配置非法（例如 interval <= 0）。"""


DEFAULT_SCHEDULES: tuple[ScheduleConfig, ...] = (
    ScheduleConfig(
        source=Source.AMAZON,
        categories=["Electronics", "Home & Kitchen", "Sports & Outdoors"],
        interval=60,
    ),
    ScheduleConfig(
        source=Source.ALIEXPRESS,
        categories=["Consumer Electronics", "Home Improvement", "Sports & Entertainment"],
        interval=120,
    ),
    ScheduleConfig(
        source=Source.EBAY,
        categories=["Electronics", "Home & Garden", "Sporting Goods"],
        interval=180,
    ),
)
