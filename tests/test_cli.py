import pytest
import requests
from click.testing import CliRunner

from conftest import make_response
from modeldock.cli.commands import cli

MODELS = [
    {"id": "a1", "name": "detector", "status": "running", "port": 8080, "endpoint": "/predict",
     "image_count": 3, "created_at": "2024-01-01T00:00:00"},
    {"id": "b2", "name": "classifier", "status": "stopped", "port": 8081, "endpoint": "/predict",
     "image_count": 0, "created_at": "2024-01-02T00:00:00"},
]


@pytest.fixture
def fake_server(monkeypatch):
    routes = {}
    requested = []

    def fake_get(url, timeout=None):
        requested.append(url)
        for path, payload in routes.items():
            if url.endswith(path):
                return make_response(payload=payload)
        raise requests.exceptions.ConnectionError(f"Connection refused: {url}")

    monkeypatch.setattr(requests, "get", fake_get)
    monkeypatch.delenv("MODELDOCK_CONFIG", raising=False)
    return routes, requested


def test_models_filters_by_status(fake_server):
    routes, requested = fake_server
    routes["/api/models"] = MODELS

    result = CliRunner().invoke(cli, ["--server", "http://svc:3001", "models", "--status", "running"], obj={})

    assert result.exit_code == 0
    assert "detector" in result.output
    assert "classifier" not in result.output
    assert requested == ["http://svc:3001/api/models"]


def test_results_without_matches(fake_server):
    routes, _ = fake_server
    routes["/api/test-results"] = [
        {"filename": "a.png", "model": "detector", "prediction": "cat", "confidence": 91.2,
         "inference_time_ms": 12.0, "status": "completed", "timestamp": "2024-01-01T00:00:00"},
    ]

    result = CliRunner().invoke(cli, ["results", "--failed"], obj={})

    assert result.exit_code == 0
    assert "没有找到任何测试结果" in result.output


def test_analytics_summary(fake_server):
    routes, _ = fake_server
    routes["/api/analytics"] = {
        "totalModels": 1, "activeModels": 1, "totalTests": 2, "avgAccuracy": 45.6,
        "avgInference": "12ms", "successRate": 50.0,
        "models": [{"name": "detector", "status": "running", "tests": 2, "accuracy": 91.2}],
    }

    result = CliRunner().invoke(cli, ["analytics"], obj={})

    assert result.exit_code == 0
    assert "成功率: 50.0%" in result.output
    assert "detector" in result.output


def test_unreachable_server_is_reported(fake_server):
    result = CliRunner().invoke(cli, ["models"], obj={})
    assert result.exit_code != 0
    assert "failed" in result.output
