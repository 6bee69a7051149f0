"""异常定义"""

from typing import Optional


class ModelDockError(Exception):
    """modeldock操作异常基类

    用于区分模型生命周期相关的错误和其他系统错误
    """
    pass


class ModelNotFoundError(ModelDockError):
    """模型不存在错误"""

    def __init__(self, model_id: str):
        super().__init__(f"Model not found: {model_id}")
        self.model_id = model_id


class ModelNotRunningError(ModelDockError):
    """模型未运行时执行测试"""

    def __init__(self, model_id: str):
        super().__init__(f"Model must be running to perform tests: {model_id}")
        self.model_id = model_id


class InvalidRequestError(ModelDockError):
    """请求参数不合法"""
    pass


class BuildError(ModelDockError):
    """镜像构建失败

    构建上下文不是合法的tar归档，或运行时构建步骤失败
    """
    pass


class StartError(ModelDockError):
    """容器启动失败

    镜像不存在、端口被占用、运行时不可达或容器未能进入running状态
    """
    pass


class PortConflictError(StartError):
    """端口已被另一个运行中的模型占用"""

    def __init__(self, port: int, owner_id: str):
        super().__init__(f"Port {port} is already used by running model {owner_id}")
        self.port = port
        self.owner_id = owner_id


class StopError(ModelDockError):
    """容器停止失败"""
    pass


class DispatchError(ModelDockError):
    """推理请求失败

    只在Dispatcher内部使用，最终被记录进失败的TestResult，不向调用方抛出
    """
    pass


class CleanupError(ModelDockError):
    """删除过程中的资源清理失败

    不会被抛出：以返回值的形式记录并写入日志，不影响删除操作本身
    """

    def __init__(self, step: str, resource: str, message: str, model_id: Optional[str] = None):
        super().__init__(f"Failed to {step} {resource}: {message}")
        self.step = step
        self.resource = resource
        self.message = message
        self.model_id = model_id

    def to_dict(self) -> dict:
        return {
            "model_id": self.model_id,
            "step": self.step,
            "resource": self.resource,
            "message": self.message,
        }
