"""内置控制接口 HTTP 服务器。

提供调度器的运行时控制能力：
- GET  {path}          查询调度器状态
- POST {path}          执行控制命令，JSON 请求体：
    {"action":"start"}
    {"action":"stop"}
    {"action":"update","source":"amazon","config":{"interval":30}}
    {"action":"trigger","source":"ebay","category":"phones","keywords":["x"]}
- GET  {path}/logs     查询最近的执行日志（需要执行日志支持 recent）
- GET  /metrics        Prometheus 指标

可选 Token 验证（query 参数 token= 或 Authorization: Bearer <token>），/metrics 不做验证。
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any

from aiohttp import web
from loguru import logger
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from ..utils.serialization import to_jsonable

if TYPE_CHECKING:
    from ..crawler.scheduler import Scheduler
    from .execution_log import ExecutionLog


def _json(data: Any, status: int = 200) -> web.Response:
    return web.json_response(to_jsonable(data), status=status)


def _error(error: str, status: int = 400) -> web.Response:
    return _json({"ok": False, "error": error}, status=status)


class ControlServer:
    def __init__(
        self,
        scheduler: Scheduler,
        *,
        host: str = "localhost",
        port: int = 8000,
        path: str = "/scheduler",
        token: str | None = None,
        execution_log: ExecutionLog | None = None,
    ) -> None:
        self.scheduler = scheduler
        self.execution_log = execution_log
        self._host = host
        self._port = port
        self._path = "/" + path.strip("/")
        self._token = token
        self._app: web.Application | None = None
        self._runner: web.AppRunner | None = None
        self._site: web.TCPSite | None = None
        self._server_lock = asyncio.Lock()
        self._started = False
        self._bound_port: int | None = None

    def _auth_passed(self, request: web.Request) -> bool:
        if not self._token:
            return True
        qtok = request.query.get("token")
        if qtok and qtok == self._token:
            return True
        auth = request.headers.get("Authorization", "")
        if auth.startswith("Bearer ") and auth.removeprefix("Bearer ") == self._token:
            return True
        return False

    def build_app(self) -> web.Application:
        app = web.Application()
        app.add_routes(
            [
                web.get(self._path, self._status_handler),
                web.post(self._path, self._action_handler),
                web.get(f"{self._path}/logs", self._logs_handler),
                web.get("/metrics", self._metrics_handler),
            ]
        )
        return app

    async def _status_handler(self, request: web.Request) -> web.Response:
        if not self._auth_passed(request):
            return _error("unauthorized", status=401)
        return _json(self.scheduler.get_status())

    async def _action_handler(self, request: web.Request) -> web.Response:
        if not self._auth_passed(request):
            return _error("unauthorized", status=401)

        try:
            payload = await request.json()
        except ValueError:
            return _error("invalid_json")
        if not isinstance(payload, dict):
            return _error("invalid_json")

        action = payload.get("action")
        try:
            if action == "start":
                self.scheduler.start()
                return _json({"ok": True, "action": action, "status": self.scheduler.get_status()})

            if action == "stop":
                self.scheduler.stop()
                return _json({"ok": True, "action": action, "status": self.scheduler.get_status()})

            if action == "update":
                source = payload.get("source")
                config = payload.get("config")
                if not source:
                    return _error("source_required")
                if not isinstance(config, dict):
                    return _error("config_required")
                updated = self.scheduler.update_schedule(source, config)
                return _json({"ok": True, "action": action, "schedule": updated})

            if action == "trigger":
                source = payload.get("source")
                if not source:
                    return _error("source_required")
                category = payload.get("category")
                if category is not None and not isinstance(category, str):
                    return _error("category_must_be_string")
                keywords = payload.get("keywords") or []
                if not isinstance(keywords, list):
                    return _error("keywords_must_be_list")
                task_id = self.scheduler.trigger_manual_crawl(source, category, [str(k) for k in keywords])
                return _json({"ok": True, "action": action, "task_id": task_id})

        except ValueError as e:
            # 包含 ScheduleConfigError 与不支持的数据源
            return _error(str(e))
        except Exception as e:
            logger.exception("{} action failed: {}", action, e)
            return _error("internal", status=500)

        return _error("unknown_action")

    async def _logs_handler(self, request: web.Request) -> web.Response:
        if not self._auth_passed(request):
            return _error("unauthorized", status=401)

        recent = getattr(self.execution_log, "recent", None)
        if recent is None:
            return _error("execution_log_unavailable", status=404)

        try:
            limit = int(request.query.get("limit", "50"))
        except ValueError:
            return _error("invalid_limit")
        if limit <= 0:
            return _error("invalid_limit")

        rows = await recent(
            min(limit, 500),
            source=request.query.get("source") or None,
            status=request.query.get("status") or None,
        )
        return _json({"ok": True, "logs": rows})

    async def _metrics_handler(self, request: web.Request) -> web.Response:
        return web.Response(body=generate_latest(), headers={"Content-Type": CONTENT_TYPE_LATEST})

    async def start(self) -> None:
        if self._started:
            return
        async with self._server_lock:
            if self._started:
                return
            self._app = self.build_app()
            self._runner = web.AppRunner(self._app)
            await self._runner.setup()
            self._site = web.TCPSite(self._runner, self._host, self._port)
            await self._site.start()
            # 记录实际绑定端口（支持端口为 0 的场景）
            addrs = self._runner.addresses
            self._bound_port = int(addrs[0][1]) if addrs else None
            self._started = True
            logger.info("Control server listening on {}", self.get_url())

    async def stop(self) -> None:
        if self._runner is not None:
            try:
                await self._runner.cleanup()
            except Exception as e:
                logger.warning("Failed to stop control server cleanly: {}", e)

        self._app = None
        self._runner = None
        self._site = None
        self._started = False

    def get_url(self) -> str:
        """返回控制接口的 http:// URL（适配随机端口绑定）。"""
        port = self._bound_port or self._port
        return f"http://{self._host}:{port}{self._path}"
