import asyncio
import json
from typing import Any

from aiohttp import ClientSession

CONTROL_URL = "http://127.0.0.1:8000/scheduler"


async def _send_action(session: ClientSession, action: str, **fields: Any) -> dict[str, Any] | None:
    """示例：向控制接口发送一条命令并打印结果。"""

    try:
        async with session.post(CONTROL_URL, json={"action": action, **fields}) as resp:
            data = await resp.json()
    except Exception as exc:
        print(f"[error] {action} request failed: {exc}")
        return None

    if not data.get("ok"):
        print(f"[warn] {action} rejected ({resp.status}): {data.get('error')}")
        return None
    print(f"[info] {action} ok")
    return data


async def main(token: str | None = None) -> None:
    """示例：查询调度器状态，调整调度计划，并手动触发一次采集。"""

    headers = {"Authorization": f"Bearer {token}"} if token else None
    async with ClientSession(headers=headers) as session:
        async with session.get(CONTROL_URL) as resp:
            status = await resp.json()
        print(json.dumps(status, indent=2, ensure_ascii=False))

        # 将 eBay 的调度间隔改为 30 分钟
        await _send_action(session, "update", source="ebay", config={"interval": 30})

        # 手动触发一次高优先级采集
        data = await _send_action(session, "trigger", source="amazon", category="Electronics", keywords=["laptop"])
        if data:
            print(f"[info] manual task id: {data['task_id']}")

        # 查看最近的执行记录
        async with session.get(f"{CONTROL_URL}/logs", params={"limit": "10"}) as resp:
            logs = await resp.json()
        for row in logs.get("logs", []):
            print(f"[info] {row['task_id']} {row['source']} {row['status']} items={row.get('items_collected')}")


if __name__ == "__main__":
    asyncio.run(main())
