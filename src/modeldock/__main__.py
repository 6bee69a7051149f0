"""主入口模块

该模块是modeldock的入口点，负责：
1. 加载配置文件
2. 初始化日志系统
3. 连接容器运行时
4. 启动HTTP服务
"""

import logging
import os
import sys

from .config import load_settings
from .server import run, setup_logging


def main():
    """主入口函数"""
    try:
        settings = load_settings(os.environ.get("MODELDOCK_CONFIG"))
    except Exception as e:
        logging.error(f"Failed to load configuration: {e}")
        sys.exit(1)

    setup_logging(settings)
    run(settings)


if __name__ == "__main__":
    main()
