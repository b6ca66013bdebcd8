"""采集调度应用程序主入口模块。

启动流程：
1. 加载配置并初始化容器、任务队列、工作器和调度器
2. 启动控制接口服务器与系统监控
3. 启动调度器（可用 --no-autostart 关闭，之后通过控制接口启动）

收到取消信号后停止调度器，等待正在执行的任务结束，再释放所有资源。
"""

import asyncio
import platform

from loguru import logger

from src.core.control_server import ControlServer
from src.core.initialize import initialize_application
from src.core.monitor import SystemMonitor
from src.utils.logging import setup_logging

DRAIN_TIMEOUT_SECONDS = 30.0

log = logger.bind(name="main")


async def main(autostart: bool = True):
    """统一入口，启动应用并常驻运行。"""
    app = await initialize_application()
    config = app.container.config

    tasks: list[asyncio.Task] = []
    control_server: ControlServer | None = None
    try:
        if config.control_config.enabled:
            control_server = ControlServer(
                app.scheduler,
                host=config.control_config.host,
                port=config.control_config.port,
                path=config.control_config.path,
                token=config.control_config.token,
                execution_log=app.container.execution_log,
            )
            await control_server.start()

        if config.monitor_config.enabled:
            monitor = SystemMonitor(app.queue, interval=config.monitor_config.interval_seconds)
            tasks.append(asyncio.create_task(monitor.run(), name="monitor"))

        if autostart and config.scheduler_config.autostart:
            app.scheduler.start()
        else:
            log.info("Scheduler autostart disabled; waiting for a start command.")

        await asyncio.Event().wait()

    except asyncio.CancelledError:
        log.info("Received cancellation.")
        raise

    except Exception as e:
        log.exception("Application failed to start or run: {}", e)

    finally:
        log.info("Shutting down application...")
        app.scheduler.stop()
        if not await app.scheduler.drain(DRAIN_TIMEOUT_SECONDS):
            log.warning("Some tasks were still running after {}s; shutting down anyway.", DRAIN_TIMEOUT_SECONDS)

        for t in tasks:
            if not t.done():
                t.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        if control_server is not None:
            await control_server.stop()

        await app.container.teardown()


def setup_event_loop():
    if platform.system() != "Windows":
        try:
            import uvloop  # type: ignore

            asyncio.set_event_loop_policy(uvloop.EventLoopPolicy())

        except ImportError:
            # 非关键依赖，降低为 warning，避免冗长堆栈
            log.warning("uvloop not installed; using default asyncio event loop.")

        except Exception as e:
            log.warning("Failed to set up uvloop; using default asyncio event loop. Error: {}", e)

    else:
        log.info("Running on Windows, using the default ProactorEventLoop.")


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Crawl Task Scheduler")
    parser.add_argument(
        "--no-autostart",
        action="store_true",
        help="Do not start the scheduler on launch; start it later through the control server.",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Log level (DEBUG, INFO, WARNING, ...). Defaults to the LOG_LEVEL environment variable or INFO.",
    )
    args = parser.parse_args()

    setup_logging(args.log_level)
    setup_event_loop()

    try:
        asyncio.run(main(autostart=not args.no_autostart))
    except KeyboardInterrupt:
        log.info("Application stopped by user.")
