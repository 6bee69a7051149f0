"""上传文件存储"""

import logging
import os
import shutil
import uuid
from typing import BinaryIO, Optional

from .config import Settings, settings as default_settings

logger = logging.getLogger(__name__)


def format_size(size_in_bytes: Optional[int]) -> str:
    """格式化为GB字符串，例如 "1.5 GB" """
    if size_in_bytes is None:
        return "Unknown"
    return f"{size_in_bytes / (1024 * 1024 * 1024):.1f} GB"


class ArtifactStore:
    """构建上下文和测试图片的本地存储"""

    def __init__(self, root: Optional[str] = None, settings: Optional[Settings] = None):
        self.settings = settings or default_settings
        self.root = root or self.settings.upload_dir
        os.makedirs(self.root, exist_ok=True)

    def save(self, fileobj: BinaryIO, filename: str) -> str:
        """保存上传文件，返回本地路径

        Raises:
            ValueError: 文件超过大小限制
        """
        safe_name = os.path.basename(filename or "upload") or "upload"
        path = os.path.join(self.root, f"{uuid.uuid4()}-{safe_name}")
        written = 0
        try:
            with open(path, "wb") as out:
                while True:
                    chunk = fileobj.read(1024 * 1024)
                    if not chunk:
                        break
                    written += len(chunk)
                    if written > self.settings.max_upload_size:
                        raise ValueError(f"Upload exceeds size limit of {self.settings.max_upload_size} bytes")
                    out.write(chunk)
        except Exception:
            self.delete(path)
            raise
        logger.debug(f"Saved upload {safe_name} to {path} ({written} bytes)")
        return path

    def size_of(self, path: str) -> Optional[int]:
        """文件大小(字节)，文件不存在时返回None"""
        try:
            return os.path.getsize(path)
        except OSError:
            return None

    def delete(self, path: str) -> None:
        """删除文件，文件不存在时直接返回

        Raises:
            OSError: 删除失败
        """
        if not path or not os.path.exists(path):
            return
        if os.path.isdir(path):
            shutil.rmtree(path)
        else:
            os.remove(path)
        logger.debug(f"Deleted {path}")
