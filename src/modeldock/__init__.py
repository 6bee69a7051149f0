"""容器化推理模型的部署、启停与测试"""

from .config import settings, load_settings
from .models import Model, ModelStatus, ResultStatus, TestInput, TestResult
from .services import ModelService, build_service

__version__ = "0.1.0"
