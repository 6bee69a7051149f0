"""模型与测试结果的数据定义"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, computed_field, field_validator

from .storage import format_size

CONTAINER_PREFIX = "model-"
IMAGE_TAG = "latest"


class ModelStatus(str, Enum):
    """模型运行状态"""
    STOPPED = "stopped"
    RUNNING = "running"


class ResultStatus(str, Enum):
    """推理结果状态

    PROCESSING保留给前端展示，本服务不会产生该状态
    """
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


def _now() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return uuid.uuid4().hex


def container_name_for(model_id: str) -> str:
    """模型对应的容器名称"""
    return f"{CONTAINER_PREFIX}{model_id}"


def image_name_for(model_id: str) -> str:
    """模型对应的镜像引用"""
    return f"{container_name_for(model_id)}:{IMAGE_TAG}"


class Model(BaseModel):
    """已部署的推理服务"""
    id: str = Field(..., description="模型ID")
    name: str = Field(..., description="模型名称")
    description: Optional[str] = Field(None, description="模型描述")
    status: ModelStatus = Field(ModelStatus.STOPPED, description="运行状态")
    container_name: str = Field(..., description="容器名称")
    image_name: str = Field(..., description="镜像引用")
    port: int = Field(8080, ge=1, le=65535, description="推理服务端口")
    endpoint: str = Field("/predict", description="推理接口路径")
    image_count: int = Field(0, ge=0, description="已测试的图片数量")
    container_size: int = Field(0, ge=0, description="构建上下文大小(字节)")
    file_path: str = Field(..., description="构建上下文文件路径")
    created_at: datetime = Field(default_factory=_now, description="创建时间")

    @field_validator("endpoint")
    @classmethod
    def normalize_endpoint(cls, v):
        v = (v or "").strip()
        if not v.startswith("/"):
            v = "/" + v
        return v

    @field_validator("name")
    @classmethod
    def validate_name(cls, v):
        if not v or not v.strip():
            raise ValueError("name cannot be empty")
        return v.strip()

    @property
    def is_running(self) -> bool:
        return self.status == ModelStatus.RUNNING

    @computed_field
    @property
    def container_size_label(self) -> str:
        """构建上下文大小，例如 "1.5 GB" """
        return format_size(self.container_size)


class TestInput(BaseModel):
    """一次推理测试的输入文件"""
    filename: str = Field(..., description="原始文件名")
    path: str = Field(..., description="本地保存路径")
    content_type: str = Field("application/octet-stream", description="文件类型")


class TestResult(BaseModel):
    """一次推理测试的结果"""
    id: str = Field(default_factory=new_id, description="结果ID")
    filename: str = Field(..., description="测试文件名")
    model: str = Field(..., description="测试时的模型名称")
    confidence: float = Field(0.0, ge=0, le=100, description="置信度(0-100)")
    prediction: str = Field("Error", description="预测标签")
    inference_time_ms: float = Field(0.0, ge=0, description="推理耗时(毫秒)")
    status: ResultStatus = Field(..., description="结果状态")
    timestamp: datetime = Field(default_factory=_now, description="创建时间")
    error: Optional[str] = Field(None, description="失败原因")

    @property
    def succeeded(self) -> bool:
        return self.status == ResultStatus.COMPLETED
