"""容器运行时客户端

负责：
1. 创建docker客户端
2. 验证运行时可达
3. 运行时调用的重试策略
"""

import logging
import time
from functools import wraps
from typing import Optional

import docker
import requests
from docker.errors import APIError, DockerException, NotFound

from .config import DockerSettings, Settings, settings as default_settings

logger = logging.getLogger(__name__)


def init_docker(docker_settings: Optional[DockerSettings] = None) -> docker.DockerClient:
    """初始化docker客户端

    优先使用DOCKER_HOST等环境变量，未设置时使用配置中的base_url

    Raises:
        DockerException: 无法创建客户端
    """
    docker_settings = docker_settings or default_settings.docker
    try:
        client = docker.from_env(timeout=docker_settings.timeout)
        logger.info("Using docker configuration from environment")
    except DockerException:
        client = docker.DockerClient(base_url=docker_settings.base_url, timeout=docker_settings.timeout)
        logger.info(f"Using docker daemon at {docker_settings.base_url}")
    return client


def check_runtime(client: docker.DockerClient) -> str:
    """验证运行时可达，返回运行时版本

    Raises:
        DockerException: 运行时不可达
        requests.exceptions.ConnectionError: 无法连接到运行时
    """
    client.ping()
    version = client.version().get("Version", "unknown")
    logger.info(f"Connected to container runtime {version}")
    return version


def _is_retryable(e: Exception) -> bool:
    if isinstance(e, NotFound):
        return False
    return isinstance(e, (APIError, requests.exceptions.ConnectionError, requests.exceptions.Timeout))


def retry_on_error(operation: str = "default"):
    """重试装饰器

    用于运行时客户端对象的方法，重试配置从对象的settings属性读取。

    重试策略：
    1. 资源不存在(NotFound): 直接抛出
    2. 运行时API错误和连接错误: 按配置重试，线性退避
    3. 其他异常: 直接抛出
    """
    def decorator(func):
        @wraps(func)
        def wrapper(self, *args, **kwargs):
            conf: Settings = getattr(self, "settings", None) or default_settings
            policy = conf.retry.for_operation(operation)
            attempts = max(1, policy.max_retries)
            last_exception = None
            for attempt in range(attempts):
                try:
                    return func(self, *args, **kwargs)
                except Exception as e:
                    if not _is_retryable(e):
                        raise
                    last_exception = e
                    logger.warning(
                        f"Runtime operation [{operation}] {func.__name__} failed, "
                        f"attempt {attempt + 1}/{attempts}: {e}"
                    )
                    if attempt + 1 < attempts and policy.delay > 0:
                        time.sleep(policy.delay * (attempt + 1))
            raise last_exception
        return wrapper
    return decorator
