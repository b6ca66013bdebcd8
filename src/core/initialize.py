"""项目初始化模块。

该模块包含应用程序启动时需要执行的初始化任务：
加载配置、建立外部资源、创建数据库表，并组装任务队列、工作器和调度器。
"""

from __future__ import annotations

from dataclasses import dataclass

from loguru import logger

from ..crawler.queue import TaskQueue
from ..crawler.scheduler import Scheduler
from ..crawler.worker import Worker
from ..models import Base
from .config import Config
from .container import Container


@dataclass
class Application:
    """初始化完成后的应用组件集合。"""

    container: Container
    queue: TaskQueue
    worker: Worker
    scheduler: Scheduler


async def initialize_application(config: Config | None = None) -> Application:
    """初始化整个应用程序。

    该函数封装了应用启动所需的所有核心初始化步骤：
    1. 加载配置。
    2. 创建并设置依赖注入容器。
    3. 按需创建数据库表。
    4. 创建任务队列、工作器和调度器。

    Args:
        config: 可选的配置对象，未提供时从环境变量与 config.toml 加载。

    Returns:
        初始化完成的应用组件集合。调度器尚未启动。
    """
    logger.info("Initializing application...")

    app_config = config or Config()

    container = Container(config=app_config)
    await container.setup()

    try:
        if container.db_engine is not None:
            await create_tables(container)
    except Exception:
        await container.teardown()
        raise

    assert container.executor is not None
    assert container.execution_log is not None
    assert container.notifier is not None
    assert container.directory is not None

    queue = TaskQueue(
        app_config.max_concurrent,
        retry_delay_seconds=app_config.retry_delay_seconds,
    )
    worker = Worker(
        queue,
        container.executor,
        container.execution_log,
        container.notifier,
        container.directory,
        timeout_seconds=app_config.crawl_timeout_seconds,
    )
    scheduler_config = app_config.scheduler_config
    scheduler = Scheduler(
        queue,
        worker,
        app_config.schedules,
        poll_interval_seconds=scheduler_config.poll_interval_seconds,
        event_driven=scheduler_config.event_driven,
        run_on_start=scheduler_config.run_on_start,
        max_retries=scheduler_config.max_retries,
    )

    logger.info("Application initialized successfully.")
    return Application(container=container, queue=queue, worker=worker, scheduler=scheduler)


async def create_tables(container: Container) -> None:
    """创建数据库表。

    使用SQLAlchemy的Base.metadata.create_all方法在数据库中创建所有定义的模型表。

    Args:
        container: 依赖注入容器实例，提供数据库引擎。
    """
    logger.info("Initializing database tables...")

    if container.db_engine is None:
        raise RuntimeError("Container is not set up properly.")

    try:
        async with container.db_engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
    except Exception as e:
        logger.exception("Failed to create database tables: {}", e)
        raise

    logger.info("Database tables created successfully.")
