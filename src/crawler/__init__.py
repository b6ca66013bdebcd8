"""采集任务调度包。

- TaskQueue: 带准入控制的优先级任务队列
- Scheduler: 按数据源周期性生成任务并分发执行
- Worker: 执行单个任务并记录结果
"""

from .queue import TaskQueue
from .scheduler import Scheduler
from .worker import Worker

__all__ = ["Scheduler", "TaskQueue", "Worker"]
