import os

import orjson
import pytest
import redis.asyncio as redis
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from src.core.config import NotificationConfig
from src.core.execution_log import SqlExecutionLog
from src.core.notifier import RedisStreamsNotifier, RedisWatcherDirectory
from src.crawler.queue import TaskQueue
from src.crawler.tasks import CrawlResult, LogStatus, Source, TaskSpec, TaskStatus
from src.crawler.worker import Worker
from src.models import Base

ON_CI = os.getenv("CI", "").lower() == "true" or os.getenv("GITHUB_ACTIONS") == "true"


class _Executor:
    async def execute(self, source, category, keywords):
        return CrawlResult(items_collected=9)


@pytest.mark.skipif(not ON_CI, reason="Integration test only runs on CI")
@pytest.mark.asyncio
async def test_worker_against_live_postgres_and_redis():
    pg_user = os.getenv("PGUSER") or os.getenv("DB_USER", "postgres")
    pg_password = os.getenv("PGPASSWORD") or os.getenv("DB_PASSWORD", "postgres")
    pg_host = os.getenv("PGHOST") or os.getenv("DB_HOST", "127.0.0.1")
    pg_port = int(os.getenv("PGPORT") or os.getenv("DB_PORT", "5432"))
    pg_db = os.getenv("PGDATABASE") or os.getenv("DB_NAME", "crawler")

    dsn = f"postgresql+asyncpg://{pg_user}:{pg_password}@{pg_host}:{pg_port}/{pg_db}"
    engine = create_async_engine(dsn, echo=False)
    session_maker = async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)

    notification_cfg = NotificationConfig(
        transport="redis",
        stream_key="ci:crawler:notifications",
        max_len=3,
        max_retries=3,
        retry_backoff_ms=50,
        key_prefix="ci:crawler:watchers",
    )

    rurl = f"redis://{os.getenv('REDIS_HOST', '127.0.0.1')}:{int(os.getenv('REDIS_PORT', '6379'))}/0"
    r = redis.from_url(rurl)
    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

        await r.ping()
        watchers_key = f"{notification_cfg.key_prefix}:ci-category"
        await r.delete(watchers_key)
        await r.sadd(watchers_key, "ci-user")  # type: ignore

        execution_log = SqlExecutionLog(session_maker)
        queue = TaskQueue(1)
        worker = Worker(
            queue,
            _Executor(),
            execution_log,
            RedisStreamsNotifier(r, notification_config=notification_cfg),
            RedisWatcherDirectory(r, key_prefix=notification_cfg.key_prefix),
        )

        task_id = queue.add_task(TaskSpec(source=Source.AMAZON, category="ci-category"))
        task = queue.get_next_task()
        assert task is not None and task.id == task_id

        await worker.run_task(task)
        assert task.status is TaskStatus.COMPLETED

        rows = await execution_log.recent(50, source="amazon")
        row = next(x for x in rows if x["task_id"] == task_id)
        assert row["status"] == LogStatus.COMPLETED
        assert row["items_collected"] == 9

        entries = await r.xrevrange(notification_cfg.stream_key, count=1)
        assert entries, "expected Redis stream entries to exist"
        payload = orjson.loads(entries[0][1][b"data"])
        assert payload["user_ids"] == ["ci-user"]
        assert payload["payload"]["task_id"] == task_id
    finally:
        await r.aclose()
        await engine.dispose()
