import asyncio
import json
from typing import Any

from redis.asyncio import Redis
from redis.exceptions import ResponseError


async def main() -> None:
    """示例：从 Redis Stream 消费数据更新通知。"""

    # 创建异步 Redis 客户端并开启 decode_responses，避免应用层手动 decode
    redis = Redis(host="localhost", port=6379, db=0, decode_responses=True)

    # 与配置项 notification.stream_key 保持一致
    stream_key = "crawler:notifications"
    # 不同消费者组可以同时获取同一条消息（广播）
    # 但同一消费者组中只有一个消费者会被分配到该条消息（负载均衡）
    group = "mygroup"
    consumer = "consumer1"

    # 创建消费者组，若已存在则忽略 BUSYGROUP 错误
    try:
        await redis.xgroup_create(stream_key, group, id="0", mkstream=True)
    except ResponseError as e:
        if "BUSYGROUP" not in str(e):
            raise

    try:
        while True:
            # 阻塞读取：最多等待 10 秒。使用 ">" 仅拉取未分配过的新消息。
            messages: list[tuple[str, list[tuple[str, dict[str, Any]]]]] | None = await redis.xreadgroup(
                group,
                consumer,
                streams={stream_key: ">"},
                count=1,
                block=10_000,
            )

            if not messages:
                continue

            # 消息结构示例：
            # [
            #     (
            #         "crawler:notifications",
            #         [
            #             (
            #                 "1714389534321-0",
            #                 {"data": '{"schema": "crawler.notification.v1", "user_ids": ["u1"], ...}'},
            #             ),
            #         ],
            #     ),
            # ]
            try:
                _stream, entries = messages[0]
                msg_id, fields = entries[0]

                raw = fields.get("data")
                if raw is None:
                    print(f"[warn] message {msg_id} missing 'data' field: {fields}")
                    await redis.xack(stream_key, group, msg_id)
                    continue

                data = json.loads(raw)
            except (IndexError, ValueError, TypeError) as e:
                print(f"[error] failed to parse message: {messages!r} ({e})")
                continue

            payload = data.get("payload", {})
            for user_id in data.get("user_ids", []):
                # 在此推送给具体用户（邮件、站内信等）
                print(f"[info] notify {user_id}: {data.get('message')} (task={payload.get('task_id')})")

            await redis.xack(stream_key, group, msg_id)

    except asyncio.CancelledError:
        # 任务取消时允许向上传播以触发 finally
        raise
    except KeyboardInterrupt:
        print("[info] shutting down consumer...")
    finally:
        await redis.aclose()


if __name__ == "__main__":
    asyncio.run(main())
