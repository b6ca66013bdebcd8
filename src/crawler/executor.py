"""采集执行器模块。

定义调度器与外部采集逻辑之间的边界：
- CrawlExecutor: 执行单次采集的协议
- ApiCrawlExecutor: 通过内部 HTTP 采集接口执行的实现
- classify_error: 根据异常信息对失败原因分类，用于日志与指标
"""

from __future__ import annotations

from enum import StrEnum
from typing import TYPE_CHECKING, Protocol

from .tasks import CrawlResult

if TYPE_CHECKING:
    from collections.abc import Sequence

    from ..core.client import CrawlApiClient
    from .tasks import Source


class CrawlError(RuntimeError):
    """采集执行失败。"""


class CrawlErrorType(StrEnum):
    NETWORK = "network"
    TIMEOUT = "timeout"
    PARSE = "parse"
    RATE_LIMIT = "rate_limit"
    BLOCKED = "blocked"
    UNKNOWN = "unknown"


_NETWORK_MARKERS = ("ECONNREFUSED", "ENOTFOUND", "ETIMEDOUT", "net::ERR", "Cannot connect", "Connection")
_TIMEOUT_MARKERS = ("timeout", "Timeout", "timed out")
_PARSE_MARKERS = ("parse", "selector", "undefined", "JSON")
_RATE_LIMIT_MARKERS = ("429", "rate limit", "too many requests")
_BLOCKED_MARKERS = ("403", "blocked", "captcha", "Access Denied")


def classify_error(error: BaseException) -> CrawlErrorType:
    """对采集失败进行分类。

    先按异常类型判断，再按错误信息中的关键字判断，顺序与优先级一致：
    网络 > 超时 > 解析 > 限流 > 封禁。
    """
    if isinstance(error, TimeoutError):
        return CrawlErrorType.TIMEOUT
    if isinstance(error, ConnectionError):
        return CrawlErrorType.NETWORK

    message = str(error)
    if any(m in message for m in _NETWORK_MARKERS):
        return CrawlErrorType.NETWORK
    if any(m in message for m in _TIMEOUT_MARKERS):
        return CrawlErrorType.TIMEOUT
    if any(m in message for m in _PARSE_MARKERS):
        return CrawlErrorType.PARSE
    if any(m in message for m in _RATE_LIMIT_MARKERS):
        return CrawlErrorType.RATE_LIMIT
    if any(m in message for m in _BLOCKED_MARKERS):
        return CrawlErrorType.BLOCKED
    return CrawlErrorType.UNKNOWN


class CrawlExecutor(Protocol):
    """采集执行器协议。"""

    async def execute(self, source: Source, category: str | None, keywords: Sequence[str]) -> CrawlResult:
        """执行一次采集。

        Args:
            source: 数据源。
            category: 类目，可为空。
            keywords: 搜索关键词。

        Returns:
            采集结果。失败时抛出异常。
        """
        ...


class ApiCrawlExecutor:
    """通过内部采集接口执行采集。"""

    def __init__(self, client: CrawlApiClient):
        self.client = client

    async def execute(self, source: Source, category: str | None, keywords: Sequence[str]) -> CrawlResult:
        data = await self.client.crawl(source, category, list(keywords))
        raw = data.get("itemsCollected") or 0
        if isinstance(raw, bool) or (isinstance(raw, float) and not raw.is_integer()):
            raise CrawlError(f"Invalid itemsCollected in crawl response: {raw!r}")
        try:
            items = int(raw)
        except (TypeError, ValueError) as e:
            raise CrawlError(f"Failed to parse itemsCollected from crawl response: {e}") from e
        if items < 0:
            raise CrawlError(f"Invalid itemsCollected in crawl response: {items}")
        return CrawlResult(items_collected=items)
