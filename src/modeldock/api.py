"""FastAPI应用"""

import logging
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import Settings, settings as default_settings
from .errors import (
    BuildError, InvalidRequestError, ModelDockError, ModelNotFoundError,
    ModelNotRunningError, PortConflictError, StartError, StopError
)
from .models import TestInput
from .services import ModelService, build_service

logger = logging.getLogger(__name__)


def _http_error(e: ModelDockError, error: str) -> HTTPException:
    """将服务异常转换为HTTP错误"""
    if isinstance(e, ModelNotFoundError):
        return HTTPException(status_code=404, detail={"error": "Model not found", "details": str(e)})
    if isinstance(e, (ModelNotRunningError, InvalidRequestError)):
        return HTTPException(status_code=400, detail={"error": str(e)})
    if isinstance(e, PortConflictError):
        return HTTPException(status_code=409, detail={"error": error, "details": str(e)})
    return HTTPException(status_code=500, detail={"error": error, "details": str(e)})


def _service(request: Request) -> ModelService:
    return request.app.state.service


def create_app(service: Optional[ModelService] = None, settings: Optional[Settings] = None) -> FastAPI:
    """创建应用

    Args:
        service: 模型服务，为None时在启动时根据配置创建
        settings: 应用配置
    """
    settings = settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if getattr(app.state, "service", None) is None:
            app.state.service = build_service(settings)
        logger.info(f"{settings.project_name} started")
        yield
        if settings.stop_on_shutdown:
            logger.info("Stopping running models before shutdown")
            app.state.service.stop_all()

    app = FastAPI(
        title=settings.project_name,
        description="Deploy, run and test containerized inference models",
        version=settings.version,
        lifespan=lifespan,
    )
    app.state.service = service

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(HTTPException)
    async def http_error_handler(request: Request, exc: HTTPException):
        """错误响应体为顶层的 {"error", "details"}"""
        content = exc.detail if isinstance(exc.detail, dict) else {"error": exc.detail}
        return JSONResponse(status_code=exc.status_code, content=content, headers=exc.headers)

    prefix = settings.api_prefix

    @app.get("/health")
    def health():
        return {"status": "ok"}

    @app.get(f"{prefix}/models")
    def list_models(request: Request):
        """获取模型列表"""
        return [m.model_dump(mode="json") for m in _service(request).list_models()]

    @app.post(f"{prefix}/models/deploy")
    def deploy_model(
        request: Request,
        modelName: str = Form(...),
        description: Optional[str] = Form(None),
        port: Optional[int] = Form(None),
        endpoint: Optional[str] = Form(None),
        dockerContainer: Optional[UploadFile] = File(None),
    ):
        """上传构建上下文并部署模型"""
        if dockerContainer is None:
            raise HTTPException(status_code=400, detail={"error": "No Docker container file uploaded"})

        service = _service(request)
        try:
            path = service.store.save(dockerContainer.file, dockerContainer.filename)
        except ValueError as e:
            raise HTTPException(status_code=413, detail={"error": str(e)})

        try:
            model = service.deploy(path, modelName, description, port, endpoint)
        except (BuildError, InvalidRequestError) as e:
            raise _http_error(e, "Failed to deploy model")

        return {
            "success": True,
            "model": model.model_dump(mode="json"),
            "message": "Model deployed successfully",
        }

    @app.post(f"{prefix}/models/{{model_id}}/toggle")
    def toggle_model(model_id: str, request: Request):
        """启动或停止模型"""
        try:
            model = _service(request).toggle(model_id)
        except (ModelNotFoundError, StartError, StopError) as e:
            raise _http_error(e, "Failed to toggle model")

        return {
            "success": True,
            "model": model.model_dump(mode="json"),
            "message": f"Model {model.status.value} successfully",
        }

    @app.delete(f"{prefix}/models/{{model_id}}")
    def delete_model(model_id: str, request: Request):
        """删除模型"""
        try:
            errors = _service(request).delete(model_id)
        except ModelNotFoundError as e:
            raise _http_error(e, "Failed to delete model")

        return {
            "success": True,
            "message": "Model deleted successfully",
            "warnings": [e.to_dict() for e in errors],
        }

    @app.post(f"{prefix}/test/{{model_id}}")
    def run_test(model_id: str, request: Request, images: Optional[List[UploadFile]] = File(None)):
        """上传测试图片并执行推理"""
        service = _service(request)
        try:
            model = service.get_model(model_id)
            if not model.is_running:
                raise ModelNotRunningError(model_id)
            if not images:
                raise InvalidRequestError("No images uploaded for testing")

            inputs = [
                TestInput(
                    filename=image.filename or "image",
                    path=service.store.save(image.file, image.filename),
                    content_type=image.content_type or "application/octet-stream",
                )
                for image in images
            ]
            results = service.run_test(model_id, inputs)
        except (ModelNotFoundError, ModelNotRunningError, InvalidRequestError) as e:
            raise _http_error(e, "Failed to run test")
        except ValueError as e:
            raise HTTPException(status_code=413, detail={"error": str(e)})

        return {
            "success": True,
            "results": [r.model_dump(mode="json") for r in results],
            "message": f"Successfully tested {len(results)} images",
        }

    @app.get(f"{prefix}/test-results")
    def list_results(request: Request):
        """获取测试结果"""
        return [r.model_dump(mode="json") for r in _service(request).list_results()]

    @app.get(f"{prefix}/analytics")
    def analytics(request: Request):
        """获取统计信息"""
        return _service(request).analytics()

    @app.get(f"{prefix}/diagnostics")
    def diagnostics(request: Request):
        """获取最近的资源清理失败记录"""
        return [e.to_dict() for e in _service(request).cleanup_errors()]

    return app
