"""配置管理模块

该模块负责加载和管理modeldock的配置信息，包括：
1. 环境变量配置(MODELDOCK_前缀)
2. 可选的YAML配置文件
3. 各子模块的默认配置
"""

import os
import logging
from typing import Dict, List, Optional

import yaml
from pydantic import BaseModel
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class RetryPolicy(BaseModel):
    """单个操作的重试策略"""
    max_retries: int = 3
    delay: float = 1.0


class RetrySettings(BaseModel):
    """重试配置"""
    default: RetryPolicy = RetryPolicy()
    operations: Dict[str, RetryPolicy] = {
        "get": RetryPolicy(max_retries=3, delay=1.0),
        "delete": RetryPolicy(max_retries=5, delay=1.0),
    }

    def for_operation(self, operation: Optional[str] = None) -> RetryPolicy:
        """获取操作对应的重试策略，未配置时返回默认策略"""
        if operation:
            return self.operations.get(operation, self.default)
        return self.default


class LoggingSettings(BaseModel):
    """日志配置"""
    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class DockerSettings(BaseModel):
    """容器运行时配置"""
    base_url: str = "unix:///var/run/docker.sock"
    timeout: int = 60  # API调用超时(秒)
    build_timeout: int = 600  # 镜像构建超时(秒)
    start_timeout: int = 30  # 等待容器进入running状态的超时(秒)
    stop_timeout: int = 10  # 停止容器的宽限时间(秒)


class DispatchSettings(BaseModel):
    """推理请求配置"""
    host: str = "localhost"
    timeout: float = 30.0
    file_field: str = "image"


class Settings(BaseSettings):
    """应用配置"""
    model_config = SettingsConfigDict(
        env_prefix="MODELDOCK_",
        env_nested_delimiter="__",
        env_file=".env",
        extra="ignore",
    )

    # API配置
    project_name: str = "ModelDock"
    version: str = "0.1.0"
    api_prefix: str = "/api"
    host: str = "0.0.0.0"
    port: int = 3001
    cors_origins: List[str] = ["*"]

    # 文件存储
    upload_dir: str = "public/uploads"
    max_upload_size: int = 5 * 1024 * 1024 * 1024

    # 模型默认值
    default_port: int = 8080
    default_endpoint: str = "/predict"

    # 清理失败记录保留条数
    diagnostics_size: int = 200
    # 进程退出前停止运行中的模型容器
    stop_on_shutdown: bool = True

    logging: LoggingSettings = LoggingSettings()
    docker: DockerSettings = DockerSettings()
    dispatch: DispatchSettings = DispatchSettings()
    retry: RetrySettings = RetrySettings()


def load_settings(config_path: Optional[str] = None) -> Settings:
    """加载配置

    Args:
        config_path: YAML配置文件路径，为None时读取MODELDOCK_CONFIG环境变量

    Returns:
        Settings: 配置对象，文件中的值覆盖环境变量和默认值

    Raises:
        yaml.YAMLError: 配置文件格式错误
    """
    if config_path is None:
        config_path = os.environ.get("MODELDOCK_CONFIG")

    if not config_path:
        return Settings()

    try:
        with open(config_path, "r") as f:
            data = yaml.safe_load(f) or {}
        logger.info(f"Loaded configuration from {config_path}")
    except FileNotFoundError:
        logger.warning(f"Config file not found: {config_path}, using default configuration")
        return Settings()
    except yaml.YAMLError as e:
        logger.error(f"Failed to parse config file: {e}")
        raise

    return Settings(**data)


# 全局配置实例
settings = Settings()
