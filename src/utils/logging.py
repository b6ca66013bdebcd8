"""统一日志配置模块。

提供 setup_logging() 以在应用启动时一次性配置全局日志。
应用代码统一使用 loguru；标准库 logging（aiohttp、SQLAlchemy 等）的输出会被转发到 loguru。
可通过环境变量 LOG_LEVEL 设置日志级别（默认 INFO）。
"""

from __future__ import annotations

import inspect
import logging
import os
import sys

from loguru import logger

LOG_FORMAT = (
    "<green>{time:MM-DD HH:mm:ss}</green> [<level>{level}</level>] "
    "<cyan>{extra[name]}</cyan>:{line} | <level>{message}</level>"
)


class InterceptHandler(logging.Handler):
    """把标准库 logging 记录转发给 loguru。"""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame, depth = inspect.currentframe(), 0
        while frame and (depth == 0 or frame.f_code.co_filename == logging.__file__):
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).bind(name=record.name).log(level, record.getMessage())


def setup_logging(level: int | str | None = None) -> None:
    """配置全局日志输出。

    Args:
        level: 日志级别，int 或名称。若未提供，则读取环境变量 LOG_LEVEL，默认 INFO。
    """
    if level is None:
        level = os.getenv("LOG_LEVEL", "INFO")
    if isinstance(level, str):
        level = level.upper()

    logger.remove()
    logger.configure(extra={"name": "main"})
    logger.add(sys.stderr, level=level, format=LOG_FORMAT)

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
