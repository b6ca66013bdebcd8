"""执行日志模块。

记录任务执行的生命周期（started / completed / failed），仅供观测使用，
调度核心从不读回这些记录。提供两种实现：
- MemoryExecutionLog: 进程内有界存储
- SqlExecutionLog: 基于 SQLAlchemy 异步会话写入 ``crawl_logs`` 表
"""

from __future__ import annotations

import dataclasses
from collections import deque
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any, Protocol

from loguru import logger
from sqlalchemy import select

from ..crawler.tasks import LogStatus
from ..models import CrawlLog

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from ..crawler.tasks import ExecutionLogEntry

_UPDATABLE_FIELDS = frozenset(
    {"status", "items_collected", "error_message", "error_type", "completed_at", "duration_ms"}
)


def _check_fields(fields: dict[str, Any]) -> None:
    unknown = set(fields) - _UPDATABLE_FIELDS
    if unknown:
        raise ValueError(f"Unknown execution log fields: {sorted(unknown)}")


class ExecutionLog(Protocol):
    """执行日志协议。"""

    async def record(self, entry: ExecutionLogEntry) -> None:
        """追加一条记录。"""
        ...

    async def update(self, task_id: str, **fields: Any) -> None:
        """更新该任务最近一条 started 记录。"""
        ...


class MemoryExecutionLog:
    """进程内执行日志，超出容量时丢弃最旧的记录。

    Attributes:
        max_entries: 最大保留条数。
    """

    def __init__(self, max_entries: int = 1000):
        if max_entries <= 0:
            raise ValueError("max_entries must be greater than 0")
        self.max_entries = max_entries
        self._entries: deque[ExecutionLogEntry] = deque(maxlen=max_entries)

    async def record(self, entry: ExecutionLogEntry) -> None:
        self._entries.append(entry)

    async def update(self, task_id: str, **fields: Any) -> None:
        _check_fields(fields)
        for entry in reversed(self._entries):
            if entry.task_id == task_id and entry.status is LogStatus.STARTED:
                for key, value in fields.items():
                    setattr(entry, key, value)
                return
        logger.debug("No started execution log entry for task {}; update ignored.", task_id)

    def entries(self, task_id: str | None = None) -> list[ExecutionLogEntry]:
        """返回记录快照，可按任务 ID 过滤。"""
        if task_id is None:
            return list(self._entries)
        return [e for e in self._entries if e.task_id == task_id]

    async def recent(
        self, limit: int = 50, *, source: str | None = None, status: str | None = None
    ) -> list[dict[str, Any]]:
        """按写入顺序倒序返回最近的执行记录。"""
        rows = [
            e
            for e in reversed(self._entries)
            if (source is None or e.source == source) and (status is None or e.status == status)
        ]
        return [dataclasses.asdict(e) for e in rows[:limit]]


class SqlExecutionLog:
    """基于 SQLAlchemy 的执行日志。"""

    def __init__(self, sessionmaker: async_sessionmaker[AsyncSession]):
        self.async_sessionmaker = sessionmaker

    @asynccontextmanager
    async def get_session(self) -> AsyncIterator[AsyncSession]:
        """用于获取数据库会话的异步上下文管理器，异常时回滚事务。"""
        async with self.async_sessionmaker() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise

    async def record(self, entry: ExecutionLogEntry) -> None:
        values = dataclasses.asdict(entry)
        values["source"] = str(entry.source)
        values["status"] = str(entry.status)
        async with self.get_session() as session:
            session.add(CrawlLog(**values))
            await session.commit()

    async def update(self, task_id: str, **fields: Any) -> None:
        _check_fields(fields)
        if "status" in fields:
            fields["status"] = str(fields["status"])

        async with self.get_session() as session:
            stmt = (
                select(CrawlLog)
                .where(CrawlLog.task_id == task_id, CrawlLog.status == str(LogStatus.STARTED))
                .order_by(CrawlLog.id.desc())
                .limit(1)
            )
            row = (await session.execute(stmt)).scalar_one_or_none()
            if row is None:
                logger.debug("No started execution log row for task {}; update ignored.", task_id)
                return
            for key, value in fields.items():
                setattr(row, key, value)
            await session.commit()

    async def recent(
        self, limit: int = 50, *, source: str | None = None, status: str | None = None
    ) -> list[dict[str, Any]]:
        """按开始时间倒序查询最近的执行记录。"""
        stmt = select(CrawlLog).order_by(CrawlLog.started_at.desc(), CrawlLog.id.desc()).limit(limit)
        if source:
            stmt = stmt.where(CrawlLog.source == source)
        if status:
            stmt = stmt.where(CrawlLog.status == status)
        async with self.get_session() as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [row.to_dict() for row in rows]
