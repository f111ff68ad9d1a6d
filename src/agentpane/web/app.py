"""FastAPI 应用初始化与服务入口"""

import asyncio
import logging

import uvicorn
from fastapi import FastAPI

from .. import config
from ..host import create_host
from ..runtime import RuntimeComponents, bootstrap
from ..settings import TerminalSettings
from ..telemetry import setup_logging
from ..terminal import TerminalService
from .api import setup_routes

logger = logging.getLogger(__name__)


def create_app(service: TerminalService) -> FastAPI:
    """创建 Web 应用"""
    app = FastAPI(title="agentpane")
    setup_routes(app, service)
    return app


async def start_server(settings: TerminalSettings | None = None) -> None:
    """启动服务器（退出时执行 cleanup_all）"""
    host = create_host()
    components: RuntimeComponents = await bootstrap(host, settings)

    timer_task = asyncio.create_task(components.timer.run())
    await components.start()

    app = create_app(components.service)
    uvicorn_config = uvicorn.Config(app, host=config.WEB_HOST, port=config.WEB_PORT, log_level="info")
    uvicorn_server = uvicorn.Server(uvicorn_config)

    logger.info(f"agentpane starting at http://{config.WEB_HOST}:{config.WEB_PORT}")

    try:
        await uvicorn_server.serve()
    finally:
        await components.shutdown()
        timer_task.cancel()


def main():
    """入口函数"""
    setup_logging()
    try:
        asyncio.run(start_server())
    except KeyboardInterrupt:
        print("\nServer stopped")
    except ValueError as e:
        logger.error(f"Failed to start: {e}")
        raise SystemExit(1) from e


if __name__ == "__main__":
    main()
