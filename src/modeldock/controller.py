"""容器控制器

管理模型对应的容器实例：
1. start - 创建并启动容器，端口1:1映射到宿主机
2. stop - 停止运行中的容器，容器不存在时视为成功
3. remove/remove_image - 尽力清理容器和镜像，失败只记录不抛出

不缓存容器句柄，每次操作都按名称重新查询运行时
"""

import logging
import time
from typing import Optional

import docker
import requests
from docker.errors import APIError, DockerException, ImageNotFound, NotFound
from docker.models.containers import Container

from .config import Settings, settings as default_settings
from .errors import CleanupError, StartError, StopError
from .models import Model
from .runtime import retry_on_error

logger = logging.getLogger(__name__)

_RUNTIME_ERRORS = (DockerException, requests.exceptions.RequestException)
_FAILED_STATES = ("exited", "dead", "removing")


class ContainerController:
    """容器控制器"""

    def __init__(self, client: docker.DockerClient, settings: Optional[Settings] = None):
        self.client = client
        self.settings = settings or default_settings

    @retry_on_error(operation="get")
    def find_container(self, container_name: str, include_stopped: bool = False) -> Optional[Container]:
        """按名称查找容器

        运行时的name过滤是模糊匹配，这里再做一次精确匹配
        """
        containers = self.client.containers.list(all=include_stopped, filters={"name": container_name})
        for container in containers:
            if container.name == container_name:
                return container
        return None

    def start(self, model: Model) -> Container:
        """创建并启动模型容器

        Raises:
            StartError: 容器创建、启动失败或未能进入running状态
        """
        container_name = model.container_name
        port_key = f"{model.port}/tcp"

        # 同名的旧容器(例如之前停止后遗留的)会导致创建冲突
        try:
            stale = self.find_container(container_name, include_stopped=True)
            if stale is not None:
                logger.info(f"Removing stale container {container_name} before start")
                stale.remove(force=True)
        except _RUNTIME_ERRORS as e:
            raise StartError(f"Failed to start container: {e}") from e

        try:
            container = self.client.containers.create(
                image=model.image_name,
                name=container_name,
                ports={port_key: model.port},
            )
        except ImageNotFound as e:
            raise StartError(f"Failed to start container: image {model.image_name} not found") from e
        except _RUNTIME_ERRORS as e:
            raise StartError(f"Failed to start container: {e}") from e

        try:
            container.start()
            self._wait_running(container)
        except StartError:
            self._discard(container)
            raise
        except _RUNTIME_ERRORS as e:
            self._discard(container)
            raise StartError(f"Failed to start container: {e}") from e

        logger.info(f"Started container {container_name} on port {model.port}")
        return container

    def _wait_running(self, container: Container) -> None:
        """等待容器进入running状态"""
        deadline = time.monotonic() + self.settings.docker.start_timeout
        while True:
            container.reload()
            if container.status == "running":
                return
            if container.status in _FAILED_STATES:
                raise StartError(f"Container {container.name} stopped right after start (status={container.status})")
            if time.monotonic() >= deadline:
                raise StartError(
                    f"Container {container.name} did not become running within "
                    f"{self.settings.docker.start_timeout}s (status={container.status})"
                )
            time.sleep(0.2)

    def _discard(self, container: Container) -> None:
        """启动失败后删除刚创建的容器"""
        try:
            container.remove(force=True)
        except NotFound:
            pass
        except _RUNTIME_ERRORS as e:
            logger.error(f"Failed to remove container {container.name} after failed start: {e}")

    def stop(self, container_name: str) -> None:
        """停止容器

        容器不存在或未运行时直接返回

        Raises:
            StopError: 运行时停止失败
        """
        try:
            container = self.find_container(container_name)
            if container is None:
                logger.info(f"Container {container_name} is not running, nothing to stop")
                return
            container.stop(timeout=self.settings.docker.stop_timeout)
        except NotFound:
            logger.info(f"Container {container_name} disappeared before stop")
            return
        except _RUNTIME_ERRORS as e:
            raise StopError(f"Failed to stop container: {e}") from e
        logger.info(f"Stopped container {container_name}")

    def remove(self, container_name: str) -> Optional[CleanupError]:
        """强制删除容器(包括已停止的)

        Returns:
            失败时返回CleanupError，成功或容器不存在时返回None
        """
        try:
            container = self.find_container(container_name, include_stopped=True)
            if container is None:
                return None
            self._remove_container(container)
        except NotFound:
            return None
        except _RUNTIME_ERRORS as e:
            logger.error(f"Failed to remove container {container_name}: {e}")
            return CleanupError("remove container", container_name, str(e))
        logger.info(f"Removed container {container_name}")
        return None

    @retry_on_error(operation="delete")
    def _remove_container(self, container: Container) -> None:
        container.remove(force=True)

    def remove_image(self, image_name: str) -> Optional[CleanupError]:
        """强制删除镜像

        Returns:
            失败时返回CleanupError，成功或镜像不存在时返回None
        """
        try:
            self._remove_image(image_name)
        except ImageNotFound:
            logger.warning(f"Image {image_name} not found, skipping removal")
            return None
        except _RUNTIME_ERRORS as e:
            logger.error(f"Failed to remove image {image_name}: {e}")
            return CleanupError("remove image", image_name, str(e))
        logger.info(f"Removed image {image_name}")
        return None

    @retry_on_error(operation="delete")
    def _remove_image(self, image_name: str) -> None:
        self.client.images.remove(image=image_name, force=True)
