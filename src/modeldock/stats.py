"""测试统计

基于模型列表和测试结果计算:
1. 模型数量和运行数量
2. 平均置信度、平均推理耗时、成功率
3. 每个模型的测试统计(按模型名称关联)
"""

from typing import Any, Dict, List

from .models import Model, ModelStatus, TestResult


def _mean(values: List[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def get_model_stats(model: Model, results: List[TestResult]) -> Dict[str, Any]:
    """单个模型的统计信息

    results按模型名称关联，模型改名或删除后历史结果不会再计入
    """
    own = [r for r in results if r.model == model.name]
    completed = [r for r in own if r.succeeded]
    return {
        "name": model.name,
        "accuracy": round(_mean([r.confidence for r in completed]), 1),
        "tests": len(own),
        "status": model.status.value,
    }


def get_analytics(models: List[Model], results: List[TestResult]) -> Dict[str, Any]:
    """整体统计信息"""
    total_tests = len(results)
    completed = [r for r in results if r.succeeded]
    success_rate = len(completed) / total_tests * 100 if total_tests else 0.0

    return {
        "totalModels": len(models),
        "activeModels": len([m for m in models if m.status == ModelStatus.RUNNING]),
        "totalTests": total_tests,
        "avgAccuracy": round(_mean([r.confidence for r in results]), 1),
        "avgInference": f"{round(_mean([r.inference_time_ms for r in results]))}ms",
        "successRate": round(success_rate, 1),
        "models": [get_model_stats(m, results) for m in models],
    }
