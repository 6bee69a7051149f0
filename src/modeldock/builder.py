"""镜像构建

将上传的构建上下文(tar归档)交给容器运行时构建为可运行的镜像
"""

import logging
import tarfile
from typing import Optional

import docker
import requests
from docker.errors import APIError, BuildError as DockerBuildError

from .config import Settings, settings as default_settings
from .errors import BuildError
from .models import IMAGE_TAG

logger = logging.getLogger(__name__)

_GZIP_MAGIC = b"\x1f\x8b"


def _context_encoding(artifact_path: str) -> Optional[str]:
    """根据文件头判断构建上下文的压缩格式"""
    with open(artifact_path, "rb") as f:
        if f.read(2) == _GZIP_MAGIC:
            return "gzip"
    return None


class ImageBuilder:
    """镜像构建器"""

    def __init__(self, client: docker.DockerClient, settings: Optional[Settings] = None):
        self.client = client
        self.settings = settings or default_settings

    def build(self, artifact_path: str, image_name: str) -> str:
        """构建镜像

        Args:
            artifact_path: 构建上下文文件路径
            image_name: 镜像名称(不含tag)

        Returns:
            str: 镜像引用 image_name:latest

        Raises:
            BuildError: 归档不合法或构建失败
        """
        tag = f"{image_name}:{IMAGE_TAG}"

        try:
            valid = tarfile.is_tarfile(artifact_path)
        except OSError as e:
            raise BuildError(f"Failed to read build context {artifact_path}: {e}") from e
        if not valid:
            raise BuildError(f"Build context is not a valid tar archive: {artifact_path}")

        encoding = _context_encoding(artifact_path)
        logger.info(f"Building image {tag} from {artifact_path}")
        try:
            with open(artifact_path, "rb") as context:
                image, _ = self.client.images.build(
                    fileobj=context,
                    custom_context=True,
                    encoding=encoding,
                    tag=tag,
                    rm=True,
                    forcerm=True,
                    timeout=self.settings.docker.build_timeout,
                )
        except DockerBuildError as e:
            raise BuildError(f"Failed to build image {tag}: {e.msg}") from e
        except requests.exceptions.Timeout as e:
            raise BuildError(
                f"Image build for {tag} timed out after {self.settings.docker.build_timeout}s"
            ) from e
        except (APIError, requests.exceptions.ConnectionError) as e:
            raise BuildError(f"Failed to build image {tag}: {e}") from e

        logger.info(f"Built image {tag} ({getattr(image, 'short_id', image)})")
        return tag
