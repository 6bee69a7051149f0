"""服务启动"""

import logging
import sys
from typing import Optional

import uvicorn

from .api import create_app
from .config import Settings
from .runtime import check_runtime, init_docker
from .services import build_service

logger = logging.getLogger(__name__)


def setup_logging(settings: Settings) -> None:
    """根据配置初始化日志"""
    logging.basicConfig(
        level=settings.logging.level,
        format=settings.logging.format
    )


def run(settings: Settings, host: Optional[str] = None, port: Optional[int] = None) -> None:
    """连接运行时并启动HTTP服务

    运行时不可达时以状态码1退出
    """
    try:
        client = init_docker(settings.docker)
        check_runtime(client)
    except Exception as e:
        logger.error(f"Failed to connect to container runtime: {e}")
        sys.exit(1)

    host = host or settings.host
    port = port or settings.port
    app = create_app(build_service(settings, client), settings)
    logger.info(f"Starting {settings.project_name} on {host}:{port}")
    uvicorn.run(app, host=host, port=port, log_level=settings.logging.level.lower())
