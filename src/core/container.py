"""依赖注入容器模块。

该模块实现了应用程序的依赖注入容器，负责统一管理和初始化
各种外部资源和服务，包括采集接口客户端、数据库连接、Redis客户端，
以及执行日志、通知发布器和关注者查询等输出端。
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import redis.asyncio as redis
from loguru import logger
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from ..crawler.executor import ApiCrawlExecutor
from .client import CrawlApiClient
from .execution_log import MemoryExecutionLog, SqlExecutionLog
from .notifier import (
    NoopNotifier,
    RedisStreamsNotifier,
    RedisWatcherDirectory,
    SqlWatcherDirectory,
    StaticWatcherDirectory,
)

if TYPE_CHECKING:
    from ..crawler.executor import CrawlExecutor
    from .config import Config
    from .execution_log import ExecutionLog
    from .notifier import Notifier, WatcherDirectory


class Container:
    """依赖注入容器。

    负责管理应用程序的所有外部依赖。数据库与Redis仅在配置需要时才会连接。

    Attributes:
        config (Config): 应用程序配置对象
        client (CrawlApiClient): 带限流的采集接口客户端
        executor (CrawlExecutor): 采集执行器
        db_engine (AsyncEngine): SQLAlchemy异步数据库引擎
        async_sessionmaker: 异步数据库会话工厂
        redis_client (redis.Redis): Redis异步客户端
        execution_log (ExecutionLog): 执行日志
        notifier (Notifier): 通知发布器
        directory (WatcherDirectory): 类目关注者查询
    """

    def __init__(self, config: Config):
        self.config = config

        self.client: CrawlApiClient | None = None
        self.executor: CrawlExecutor | None = None
        self.db_engine: AsyncEngine | None = None
        self.async_sessionmaker: async_sessionmaker[AsyncSession] | None = None
        self.redis_client: redis.Redis | None = None
        self.execution_log: ExecutionLog | None = None
        self.notifier: Notifier | None = None
        self.directory: WatcherDirectory | None = None

    async def setup(self):
        """异步初始化容器资源。

        依次初始化以下资源：
        1. CrawlApiClient - 按数据源限流的采集接口客户端
        2. 数据库异步引擎和会话工厂（按需）
        3. Redis异步客户端连接（按需）
        4. 执行日志、通知发布器、关注者查询

        如果任何步骤失败，会自动调用teardown()清理已初始化的资源。
        """
        logger.info("Initializing container resources...")
        try:
            self.client = CrawlApiClient(
                self.config.crawler_base_url,
                requests_per_minute=self.config.requests_per_minute,
                cooldown_seconds_429=self.config.cooldown_seconds_429,
            )
            self.executor = ApiCrawlExecutor(self.client)
            logger.info(
                "Crawl API client ready: {} ({} requests/min per source).",
                self.config.crawler_base_url,
                self.config.requests_per_minute,
            )

            if self.config.needs_database:
                self.db_engine = create_async_engine(self.config.database_url, echo=False)
                self.async_sessionmaker = async_sessionmaker(
                    bind=self.db_engine, class_=AsyncSession, expire_on_commit=False
                )
                logger.info("Database AsyncEngine created.")

            if self.config.needs_redis:
                self.redis_client = redis.from_url(self.config.redis_url)
                await self.redis_client.ping()  # type: ignore
                logger.info("Redis client connected successfully.")

            self.execution_log = self._build_execution_log()
            self.notifier = self._build_notifier()
            self.directory = self._build_directory()

            logger.info("Container resources initialized successfully.")

        except Exception as e:
            logger.exception("Failed to initialize container resources: {}", e)
            await self.teardown()
            raise

    def _build_execution_log(self) -> ExecutionLog:
        if self.config.execution_log_backend == "database":
            assert self.async_sessionmaker is not None
            logger.info("Execution log backend: database")
            return SqlExecutionLog(self.async_sessionmaker)
        logger.info("Execution log backend: memory (max {} entries)", self.config.execution_log_max_entries)
        return MemoryExecutionLog(self.config.execution_log_max_entries)

    def _build_notifier(self) -> Notifier:
        if self.config.notification_transport == "redis":
            assert self.redis_client is not None
            logger.info("Notification transport: redis stream {}", self.config.notification_config.stream_key)
            return RedisStreamsNotifier(self.redis_client, notification_config=self.config.notification_config)
        logger.info("Notification transport: none")
        return NoopNotifier()

    def _build_directory(self) -> WatcherDirectory:
        backend = self.config.watchers_backend
        if backend == "redis":
            assert self.redis_client is not None
            return RedisWatcherDirectory(self.redis_client, key_prefix=self.config.notification_config.key_prefix)
        if backend == "database":
            assert self.async_sessionmaker is not None
            return SqlWatcherDirectory(self.async_sessionmaker)
        return StaticWatcherDirectory(self.config.notification_config.watchers)

    async def teardown(self):
        """异步关闭并清理所有资源。

        按相反顺序安全关闭所有已初始化的资源，该方法是幂等的，可以安全地多次调用。
        """
        logger.info("Tearing down container resources...")

        if self.notifier:
            await self.notifier.close()
            self.notifier = None
        if self.redis_client:
            await self.redis_client.aclose()
            self.redis_client = None
            logger.info("Redis client closed.")
        if self.db_engine:
            await self.db_engine.dispose()
            self.db_engine = None
            logger.info("Database AsyncEngine disposed.")
        if self.client:
            await self.client.close()
            self.client = None
            logger.info("Crawl API client closed.")

        logger.info("Container resources torn down successfully.")
