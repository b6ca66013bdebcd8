"""采集 API 客户端。

对内部采集接口 ``POST {base_url}/api/crawl/{source}`` 的异步 HTTP 封装，
为每个数据源提供独立的请求速率限制，并在收到 429 时触发全局冷却。
"""

from __future__ import annotations

import asyncio
import time
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

import aiohttp
from aiolimiter import AsyncLimiter
from loguru import logger

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from ..crawler.tasks import Source


class CrawlApiError(RuntimeError):
    """采集接口返回非 2xx 状态码。"""

    def __init__(self, status: int, message: str | None = None):
        super().__init__(message or f"Crawl API returned {status}")
        self.status = status


class CrawlApiClient:
    """带速率限制与冷却的采集接口客户端。

    Attributes:
        base_url: 采集服务根地址。
        requests_per_minute: 单个数据源每分钟允许的请求数。
        cooldown_seconds_429: 触发429时的全局冷却秒数。
    """

    def __init__(
        self,
        base_url: str,
        *,
        requests_per_minute: int = 10,
        cooldown_seconds_429: float = 60.0,
        session: aiohttp.ClientSession | None = None,
    ):
        if requests_per_minute <= 0:
            raise ValueError("requests_per_minute must be greater than 0")

        self.base_url = base_url.rstrip("/")
        self.requests_per_minute = requests_per_minute
        self.cooldown_seconds_429 = cooldown_seconds_429
        self._session = session
        self._owns_session = session is None
        self._limiters: dict[str, AsyncLimiter] = {}
        self._cooldown_until: float = 0.0
        self._cooldown_lock = asyncio.Lock()

    def limiter_for(self, source: Source) -> AsyncLimiter:
        """获取（或创建）指定数据源的限流器。"""
        limiter = self._limiters.get(source)
        if limiter is None:
            limiter = AsyncLimiter(self.requests_per_minute, time_period=60)
            self._limiters[source] = limiter
        return limiter

    async def set_cooldown(self, duration: float):
        """设置全局冷却时间，防止多个任务同时设置。"""
        async with self._cooldown_lock:
            cooldown_end_time = time.monotonic() + duration
            self._cooldown_until = max(self._cooldown_until, cooldown_end_time)

    @asynccontextmanager
    async def rate_limiter(self, source: Source) -> AsyncGenerator[None, None]:
        """获取速率限制的上下文管理器，并处理全局冷却。"""
        now = time.monotonic()
        if now < self._cooldown_until:
            wait_time = self._cooldown_until - now
            logger.debug("Global cooldown active. Waiting for {:.1f} seconds.", wait_time)
            await asyncio.sleep(wait_time)

        async with self.limiter_for(source):
            yield

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def crawl(self, source: Source, category: str | None, keywords: list[str]) -> dict[str, Any]:
        """调用采集接口。

        Args:
            source: 数据源。
            category: 类目，可为空。
            keywords: 搜索关键词列表。

        Returns:
            接口返回的 JSON 对象。

        Raises:
            CrawlApiError: 接口返回非 2xx 状态码。
        """
        url = f"{self.base_url}/api/crawl/{source}"
        body = {"category": category, "keywords": keywords}
        headers = {"Content-Type": "application/json", "X-Internal-Request": "true"}

        async with self.rate_limiter(source):
            async with self._get_session().post(url, json=body, headers=headers) as resp:
                if resp.status == 429:
                    logger.warning(
                        "Received HTTP 429 from {}. Activating global cooldown for {:.1f} seconds.",
                        source,
                        self.cooldown_seconds_429,
                    )
                    await self.set_cooldown(self.cooldown_seconds_429)
                    raise CrawlApiError(429, "Crawl API returned 429: too many requests")
                if resp.status >= 400:
                    raise CrawlApiError(resp.status)
                data = await resp.json(content_type=None)

        return data if isinstance(data, dict) else {}

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None
