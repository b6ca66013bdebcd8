"""数据模型包。

包含采集调度器持久化相关的 SQLAlchemy ORM 模型(CrawlLog, CategoryWatcher)。
"""

from .models import (
    Base,
    CategoryWatcher,
    CrawlLog,
)
