"""数据模型定义模块。

该模块定义了采集调度器使用的 SQLAlchemy ORM 模型：
- CrawlLog: 任务执行日志
- CategoryWatcher: 关注某个类目的用户
"""

from __future__ import annotations

from datetime import datetime  # noqa: TC003

from sqlalchemy import BigInteger, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

__all__ = [
    "Base",
    "CategoryWatcher",
    "CrawlLog",
]


class Base(DeclarativeBase):
    pass


class CrawlLog(Base):
    """任务执行日志。

    每次执行尝试插入一行，重试任务会产生多行相同 task_id 的记录。

    Attributes:
        id: 自增主键
        task_id: 任务 ID
        source: 数据源
        status: 状态（started / completed / failed）
        items_collected: 采集条目数
        error_message: 错误信息
        error_type: 错误分类
        started_at: 开始时间
        completed_at: 结束时间
        duration_ms: 执行耗时（毫秒）
    """

    __tablename__ = "crawl_logs"
    __table_args__ = (Index("idx_crawl_logs_task_id", "task_id"),)

    id: Mapped[int] = mapped_column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    task_id: Mapped[str] = mapped_column(String(64), nullable=False)
    source: Mapped[str] = mapped_column(String(32), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    items_collected: Mapped[int | None] = mapped_column(Integer, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    error_type: Mapped[str | None] = mapped_column(String(32), nullable=True)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    duration_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)

    def to_dict(self) -> dict:
        result = {}
        for c in self.__table__.columns:
            value = getattr(self, c.name)
            if value is not None:
                result[c.name] = value
        return result


class CategoryWatcher(Base):
    """用户关注的类目。

    Attributes:
        user_id: 用户 ID
        category: 类目名称
    """

    __tablename__ = "category_watchers"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    category: Mapped[str] = mapped_column(String(255), primary_key=True)
