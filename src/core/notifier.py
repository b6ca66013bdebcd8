"""通知发布模块。

任务成功后，先通过 WatcherDirectory 查出关注该类目的用户，再经 Notifier 推送数据更新通知。

- Notifier: 通知发布协议；NoopNotifier / RedisStreamsNotifier
- WatcherDirectory: 类目关注者查询协议；Static / Redis / Sql 三种实现
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol, cast

import orjson
from loguru import logger
from sqlalchemy import select
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_fixed

from ..crawler.tasks import utcnow
from ..models import CategoryWatcher
from ..utils.serialization import to_jsonable

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Mapping, Sequence

    import redis.asyncio as redis
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from .config import NotificationConfig


@dataclass
class NotificationEnvelope:
    schema: str
    type: str
    user_ids: list[str]
    message: str
    time: int
    payload: dict[str, Any]

    def to_json_bytes(self) -> bytes:
        return orjson.dumps(to_jsonable(self.__dict__))


def build_envelope(
    user_ids: Sequence[str],
    message: str,
    payload: Mapping[str, Any],
    *,
    event_type: str = "data_update",
) -> NotificationEnvelope:
    return NotificationEnvelope(
        schema="crawler.notification.v1",
        type=event_type,
        user_ids=list(user_ids),
        message=message,
        time=int(utcnow().timestamp() * 1000),
        payload=dict(payload),
    )


class Notifier(Protocol):
    async def notify(self, user_ids: Sequence[str], message: str, payload: Mapping[str, Any]) -> None: ...

    async def close(self) -> None: ...


class NoopNotifier:
    async def notify(self, user_ids: Sequence[str], message: str, payload: Mapping[str, Any]) -> None:
        return

    async def close(self) -> None:
        """可选：关闭底层资源。默认无操作。"""
        return


class RedisStreamsNotifier:
    """基于 Redis Streams 的通知发布器。

    每次调用写入一条 JSON 信封到 ``stream_key``，失败时按固定间隔重试。
    """

    def __init__(self, redis_client: redis.Redis, *, notification_config: NotificationConfig) -> None:
        self.redis = redis_client
        self.stream_key = notification_config.stream_key
        self.maxlen = notification_config.max_len
        self.max_retries = notification_config.max_retries
        self.retry_backoff_ms = notification_config.retry_backoff_ms

    async def _retry(self, func: Callable[[], Awaitable[Any]], *, fail_log_msg: str) -> Any:
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.max_retries),
                wait=wait_fixed(max(self.retry_backoff_ms, 0) / 1000.0),
                retry=retry_if_exception_type(Exception),
                reraise=True,
            ):
                with attempt:
                    return await func()
        except Exception as e:
            logger.exception("{} after {} retries: {}", fail_log_msg, self.max_retries, e)
            raise

    async def notify(self, user_ids: Sequence[str], message: str, payload: Mapping[str, Any]) -> None:
        if not user_ids:
            return
        envelope = build_envelope(user_ids, message, payload)
        entry = {"data": envelope.to_json_bytes()}

        await self._retry(
            lambda: self.redis.xadd(self.stream_key, cast("Any", entry), maxlen=self.maxlen, approximate=True),
            fail_log_msg=f"Failed to publish notification to stream={self.stream_key}",
        )

    async def close(self) -> None:
        return


class WatcherDirectory(Protocol):
    async def watchers_of(self, category: str) -> list[str]:
        """返回关注该类目的用户 ID 列表。"""
        ...


class StaticWatcherDirectory:
    """基于配置映射的关注者查询。"""

    def __init__(self, watchers: Mapping[str, Sequence[str]] | None = None):
        self._watchers = {k: list(v) for k, v in (watchers or {}).items()}

    async def watchers_of(self, category: str) -> list[str]:
        return list(self._watchers.get(category, []))


class RedisWatcherDirectory:
    """基于 Redis Set ``{key_prefix}:{category}`` 的关注者查询。"""

    def __init__(self, redis_client: redis.Redis, *, key_prefix: str = "crawler:watchers"):
        self.redis = redis_client
        self.key_prefix = key_prefix

    async def watchers_of(self, category: str) -> list[str]:
        members = await self.redis.smembers(f"{self.key_prefix}:{category}")  # type: ignore
        return sorted(m.decode() if isinstance(m, bytes) else str(m) for m in members)


class SqlWatcherDirectory:
    """基于 ``category_watchers`` 表的关注者查询。"""

    def __init__(self, sessionmaker: async_sessionmaker[AsyncSession]):
        self.async_sessionmaker = sessionmaker

    async def watchers_of(self, category: str) -> list[str]:
        stmt = select(CategoryWatcher.user_id).where(CategoryWatcher.category == category)
        async with self.async_sessionmaker() as session:
            return sorted((await session.execute(stmt)).scalars().all())
