"""推理请求分发

将测试文件发送到运行中模型的HTTP推理接口，并把成功或失败统一记录为TestResult。
分发器从不抛出异常：N个输入总是得到N个结果。
"""

import logging
import math
import time
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional

import requests

from .config import Settings, settings as default_settings
from .errors import DispatchError
from .models import Model, ResultStatus, TestInput, TestResult

logger = logging.getLogger(__name__)


def _parse_prediction(response: requests.Response) -> Dict[str, Any]:
    """校验推理接口响应

    Raises:
        DispatchError: 非2xx响应、响应体不是JSON对象或置信度不合法
    """
    try:
        response.raise_for_status()
    except requests.HTTPError as e:
        raise DispatchError(f"Inference endpoint returned HTTP {response.status_code}") from e

    try:
        payload = response.json()
    except ValueError as e:
        raise DispatchError(f"Malformed inference response: {e}") from e
    if not isinstance(payload, dict):
        raise DispatchError(f"Malformed inference response: expected an object, got {type(payload).__name__}")

    confidence = payload.get("confidence")
    if confidence is None:
        confidence = 0.0
    if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
        raise DispatchError(f"Invalid confidence value: {confidence!r}")
    confidence = float(confidence)
    if math.isnan(confidence) or not 0 <= confidence <= 100:
        raise DispatchError(f"Confidence out of range [0, 100]: {confidence}")

    prediction = payload.get("prediction")
    return {
        "prediction": str(prediction) if prediction is not None else "Unknown",
        "confidence": confidence,
    }


class InferenceDispatcher:
    """推理请求分发器

    调用方负责确认模型处于running状态，分发器不再检查
    """

    def __init__(self, settings: Optional[Settings] = None, session: Optional[requests.Session] = None):
        self.settings = settings or default_settings
        self.session = session

    @contextmanager
    def _open_session(self) -> Iterator[requests.Session]:
        """未注入session时每个批次使用独立的Session

        不同模型的批次在不同线程中并发执行，requests.Session不保证线程安全
        """
        if self.session is not None:
            yield self.session
            return
        with requests.Session() as session:
            yield session

    def endpoint_url(self, model: Model) -> str:
        return f"http://{self.settings.dispatch.host}:{model.port}{model.endpoint}"

    def dispatch(self, model: Model, test_input: TestInput) -> TestResult:
        """发送单个测试文件"""
        with self._open_session() as session:
            return self._send(session, model, test_input)

    def _send(self, session: requests.Session, model: Model, test_input: TestInput) -> TestResult:
        url = self.endpoint_url(model)
        start = time.perf_counter()
        try:
            with open(test_input.path, "rb") as f:
                files = {self.settings.dispatch.file_field: (test_input.filename, f, test_input.content_type)}
                response = session.post(url, files=files, timeout=self.settings.dispatch.timeout)
            outcome = _parse_prediction(response)
        except requests.exceptions.Timeout:
            return self._failed(model, test_input, start, f"Inference timed out after {self.settings.dispatch.timeout}s")
        except (DispatchError, requests.exceptions.RequestException, OSError) as e:
            return self._failed(model, test_input, start, str(e))
        except Exception as e:
            logger.exception(f"Unexpected error dispatching {test_input.filename}")
            return self._failed(model, test_input, start, f"Unexpected dispatch error: {e}")

        return TestResult(
            filename=test_input.filename,
            model=model.name,
            confidence=outcome["confidence"],
            prediction=outcome["prediction"],
            inference_time_ms=_elapsed_ms(start),
            status=ResultStatus.COMPLETED,
        )

    def dispatch_batch(self, model: Model, inputs: List[TestInput]) -> List[TestResult]:
        """按输入顺序依次分发，单个失败不影响后续输入"""
        with self._open_session() as session:
            results = [self._send(session, model, test_input) for test_input in inputs]
        failed = sum(1 for r in results if not r.succeeded)
        logger.info(f"Dispatched {len(results)} inputs to model {model.id} ({failed} failed)")
        return results

    def _failed(self, model: Model, test_input: TestInput, start: float, message: str) -> TestResult:
        logger.warning(f"Inference on {test_input.filename} against model {model.id} failed: {message}")
        return TestResult(
            filename=test_input.filename,
            model=model.name,
            confidence=0.0,
            prediction="Error",
            inference_time_ms=_elapsed_ms(start),
            status=ResultStatus.FAILED,
            error=message,
        )


def _elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000, 3)
