"""模型生命周期服务

对外提供的边界操作:
1. deploy - 构建镜像并注册模型(stopped)
2. toggle - 启动或停止模型容器
3. delete - 停止并清理容器、镜像和构建上下文，然后从注册表删除
4. run_test - 向运行中的模型分发测试文件并记录结果

同一模型的状态迁移由该模型的锁串行化，不同模型之间互不阻塞。
"""

import logging
import threading
from collections import deque
from typing import Callable, Dict, List, Optional

import docker
from pydantic import ValidationError

from .builder import ImageBuilder
from .config import Settings, settings as default_settings
from .controller import ContainerController
from .dispatcher import InferenceDispatcher
from .errors import (
    BuildError, CleanupError, InvalidRequestError, ModelNotFoundError,
    ModelNotRunningError, PortConflictError, StopError
)
from .models import (
    Model, ModelStatus, TestInput, TestResult,
    container_name_for, image_name_for, new_id
)
from .registry import ModelRegistry, ResultLog
from .runtime import init_docker
from .stats import get_analytics
from .storage import ArtifactStore

logger = logging.getLogger(__name__)


def _set_status(status: ModelStatus) -> Callable[[Model], None]:
    def mutate(model: Model) -> None:
        model.status = status
    return mutate


class ModelService:
    """模型生命周期服务"""

    def __init__(self, builder: ImageBuilder, controller: ContainerController,
                 dispatcher: InferenceDispatcher, store: ArtifactStore,
                 registry: Optional[ModelRegistry] = None, results: Optional[ResultLog] = None,
                 settings: Optional[Settings] = None):
        self.settings = settings or default_settings
        self.builder = builder
        self.controller = controller
        self.dispatcher = dispatcher
        self.store = store
        self.registry = registry or ModelRegistry()
        self.results = results or ResultLog()
        self._diagnostics = deque(maxlen=self.settings.diagnostics_size)
        self._diagnostics_lock = threading.Lock()
        # 正在启动的模型占用的端口: port -> model_id
        self._starting_ports: Dict[int, str] = {}
        self._ports_lock = threading.Lock()

    # ===================== 部署 =====================

    def deploy(self, artifact_path: str, name: str, description: Optional[str] = None,
               port: Optional[int] = None, endpoint: Optional[str] = None) -> Model:
        """部署模型

        构建失败时删除上传的构建上下文，不创建模型记录

        Raises:
            InvalidRequestError: 模型参数不合法
            BuildError: 镜像构建失败
        """
        model_id = new_id()
        try:
            model = Model(
                id=model_id,
                name=name,
                description=description,
                status=ModelStatus.STOPPED,
                container_name=container_name_for(model_id),
                image_name=image_name_for(model_id),
                port=port or self.settings.default_port,
                endpoint=endpoint or self.settings.default_endpoint,
                file_path=artifact_path,
                container_size=self.store.size_of(artifact_path) or 0,
            )
        except ValidationError as e:
            self._discard_artifact(artifact_path)
            raise InvalidRequestError(f"Invalid model spec: {e}") from e

        try:
            model.image_name = self.builder.build(artifact_path, model.container_name)
        except BuildError as e:
            logger.error(f"Failed to deploy model {name}: {e}")
            self._discard_artifact(artifact_path)
            raise

        self.registry.create(model)
        logger.info(f"Deployed model {model.id} ({model.name}) as {model.image_name}")
        return self.registry.get(model.id)

    def _discard_artifact(self, artifact_path: str) -> None:
        try:
            self.store.delete(artifact_path)
        except OSError as e:
            logger.error(f"Failed to remove artifact {artifact_path}: {e}")

    # ===================== 启停 =====================

    def toggle(self, model_id: str) -> Model:
        """切换模型运行状态

        并发的toggle请求会合并：如果在等待锁期间模型已经被其他请求切换，
        直接返回当前状态，不再重复启动或停止。

        Raises:
            ModelNotFoundError: 模型不存在
            StartError: 容器启动失败，模型保持stopped
            StopError: 容器停止失败，模型保持running
        """
        observed = self._get_or_raise(model_id)
        lock = self.registry.lock_for(model_id)
        if lock is None:
            raise ModelNotFoundError(model_id)

        with lock:
            current = self._get_or_raise(model_id)
            if current.status != observed.status:
                logger.info(f"Model {model_id} already {current.status.value}, skipping toggle")
                return current

            if current.is_running:
                self.controller.stop(current.container_name)
                target = ModelStatus.STOPPED
                updated = self.registry.update(model_id, _set_status(target))
            else:
                self._reserve_port(current)
                try:
                    self.controller.start(current)
                    target = ModelStatus.RUNNING
                    updated = self.registry.update(model_id, _set_status(target))
                finally:
                    self._release_port(current)

        if updated is None:
            raise ModelNotFoundError(model_id)
        logger.info(f"Model {model_id} ({updated.name}) {target.value}")
        return updated

    def _reserve_port(self, model: Model) -> None:
        """启动前占用端口

        端口被其他运行中或正在启动的模型占用时抛出PortConflictError。
        预留在启动结束(成功或失败)后由_release_port释放。
        """
        with self._ports_lock:
            owner = self._starting_ports.get(model.port)
            if owner is not None and owner != model.id:
                raise PortConflictError(model.port, owner)
            for other in self.registry.list():
                if other.id != model.id and other.is_running and other.port == model.port:
                    raise PortConflictError(model.port, other.id)
            self._starting_ports[model.port] = model.id

    def _release_port(self, model: Model) -> None:
        with self._ports_lock:
            if self._starting_ports.get(model.port) == model.id:
                del self._starting_ports[model.port]

    # ===================== 删除 =====================

    def delete(self, model_id: str) -> List[CleanupError]:
        """删除模型

        依次停止容器、删除容器、删除镜像、删除构建上下文，每一步都是尽力而为；
        无论清理结果如何，模型都会从注册表中删除。

        Returns:
            清理过程中的失败记录

        Raises:
            ModelNotFoundError: 模型不存在
        """
        lock = self.registry.lock_for(model_id)
        if lock is None:
            raise ModelNotFoundError(model_id)

        errors: List[CleanupError] = []
        with lock:
            model = self.registry.get(model_id)
            if model is None:
                raise ModelNotFoundError(model_id)
            try:
                if model.is_running:
                    try:
                        self.controller.stop(model.container_name)
                    except StopError as e:
                        logger.error(f"Failed to stop container {model.container_name}: {e}")
                        errors.append(CleanupError("stop container", model.container_name, str(e)))

                for error in (self.controller.remove(model.container_name),
                              self.controller.remove_image(model.image_name)):
                    if error is not None:
                        errors.append(error)

                try:
                    self.store.delete(model.file_path)
                except OSError as e:
                    logger.error(f"Failed to remove artifact {model.file_path}: {e}")
                    errors.append(CleanupError("delete artifact", model.file_path, str(e)))
            finally:
                self.registry.remove(model_id)

        for error in errors:
            error.model_id = model_id
        self._record_cleanup_errors(errors)
        if errors:
            logger.warning(f"Deleted model {model_id} with {len(errors)} cleanup failure(s)")
        else:
            logger.info(f"Deleted model {model_id}")
        return errors

    def _record_cleanup_errors(self, errors: List[CleanupError]) -> None:
        with self._diagnostics_lock:
            self._diagnostics.extend(errors)

    def cleanup_errors(self) -> List[CleanupError]:
        """最近的清理失败记录"""
        with self._diagnostics_lock:
            return list(self._diagnostics)

    # ===================== 测试 =====================

    def run_test(self, model_id: str, inputs: List[TestInput]) -> List[TestResult]:
        """对运行中的模型执行一批推理测试

        结果按输入顺序记录，image_count按批次大小增加(包括失败的输入)

        Raises:
            ModelNotFoundError: 模型不存在
            ModelNotRunningError: 模型未运行
            InvalidRequestError: 没有测试文件
        """
        model = self._get_or_raise(model_id)
        if not model.is_running:
            raise ModelNotRunningError(model_id)
        if not inputs:
            raise InvalidRequestError("No images uploaded for testing")

        results = self.dispatcher.dispatch_batch(model, inputs)
        self.results.extend(results)

        count = len(inputs)

        def add_images(m: Model) -> None:
            m.image_count += count

        if self.registry.update(model_id, add_images) is None:
            logger.warning(f"Model {model_id} was deleted while its test batch was running")
        return results

    # ===================== 查询 =====================

    def get_model(self, model_id: str) -> Model:
        return self._get_or_raise(model_id)

    def list_models(self) -> List[Model]:
        return self.registry.list()

    def list_results(self) -> List[TestResult]:
        return self.results.list()

    def analytics(self) -> dict:
        return get_analytics(self.registry.list(), self.results.list())

    def _get_or_raise(self, model_id: str) -> Model:
        model = self.registry.get(model_id)
        if model is None:
            raise ModelNotFoundError(model_id)
        return model

    # ===================== 关闭 =====================

    def stop_all(self) -> None:
        """停止所有运行中的模型容器，进程退出前调用

        只做停止：持锁后重新读取模型，已被其他请求停止或删除的模型直接跳过
        """
        for snapshot in self.registry.list():
            lock = self.registry.lock_for(snapshot.id)
            if lock is None:
                continue
            with lock:
                model = self.registry.get(snapshot.id)
                if model is None or not model.is_running:
                    continue
                try:
                    self.controller.stop(model.container_name)
                except StopError as e:
                    logger.error(f"Failed to stop model {model.id} on shutdown: {e}")
                    continue
                self.registry.update(model.id, _set_status(ModelStatus.STOPPED))
            logger.info(f"Stopped model {model.id} ({model.name}) on shutdown")


def build_service(settings: Optional[Settings] = None,
                  client: Optional[docker.DockerClient] = None) -> ModelService:
    """根据配置创建服务及其依赖"""
    settings = settings or default_settings
    client = client or init_docker(settings.docker)
    return ModelService(
        builder=ImageBuilder(client, settings),
        controller=ContainerController(client, settings),
        dispatcher=InferenceDispatcher(settings),
        store=ArtifactStore(settings=settings),
        settings=settings,
    )
