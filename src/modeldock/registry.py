"""模型注册表与测试结果日志

注册表是模型状态的唯一写入方：
1. 所有修改都通过create/update/remove完成
2. 对外只返回副本，调用方无法绕过update修改内部状态
3. 全局锁只保护字典本身，不会在运行时I/O期间持有
4. 每个模型有独立的锁，用于串行化同一模型的状态迁移
"""

import logging
import threading
from collections import OrderedDict
from typing import Callable, Dict, List, Optional

from .models import Model, TestResult

logger = logging.getLogger(__name__)


class ModelRegistry:
    """内存中的模型集合"""

    def __init__(self):
        self._models: "OrderedDict[str, Model]" = OrderedDict()
        self._locks: Dict[str, threading.Lock] = {}
        self._lock = threading.Lock()

    def create(self, model: Model) -> str:
        """注册新模型

        Raises:
            ValueError: 模型ID已存在
        """
        with self._lock:
            if model.id in self._models:
                raise ValueError(f"Model id already registered: {model.id}")
            self._models[model.id] = model.model_copy(deep=True)
            self._locks[model.id] = threading.Lock()
        logger.info(f"Registered model {model.id} ({model.name})")
        return model.id

    def get(self, model_id: str) -> Optional[Model]:
        """获取模型副本，不存在时返回None"""
        with self._lock:
            model = self._models.get(model_id)
            return model.model_copy(deep=True) if model else None

    def list(self) -> List[Model]:
        """按注册顺序返回所有模型"""
        with self._lock:
            return [m.model_copy(deep=True) for m in self._models.values()]

    def update(self, model_id: str, mutator: Callable[[Model], None]) -> Optional[Model]:
        """原子地修改模型

        mutator在副本上执行，执行成功后副本替换原记录；mutator抛出异常时
        原记录保持不变。

        Returns:
            修改后的模型副本，不存在时返回None
        """
        with self._lock:
            current = self._models.get(model_id)
            if current is None:
                return None
            updated = current.model_copy(deep=True)
            mutator(updated)
            self._models[model_id] = updated
            return updated.model_copy(deep=True)

    def remove(self, model_id: str) -> Optional[Model]:
        """删除模型，返回被删除的记录，不存在时返回None"""
        with self._lock:
            model = self._models.pop(model_id, None)
            self._locks.pop(model_id, None)
        if model is not None:
            logger.info(f"Removed model {model_id} from registry")
        return model

    def lock_for(self, model_id: str) -> Optional[threading.Lock]:
        """获取模型的状态迁移锁，不存在时返回None"""
        with self._lock:
            return self._locks.get(model_id)


class ResultLog:
    """只追加的测试结果集合"""

    def __init__(self):
        self._results: List[TestResult] = []
        self._lock = threading.Lock()

    def extend(self, results: List[TestResult]) -> None:
        """按顺序追加一批结果，整批一次写入"""
        with self._lock:
            self._results.extend(r.model_copy() for r in results)

    def list(self) -> List[TestResult]:
        with self._lock:
            return [r.model_copy() for r in self._results]
