import io
import json
import tarfile
import threading

import pytest
import requests
from docker.errors import APIError, ImageNotFound, NotFound

from modeldock.builder import ImageBuilder
from modeldock.config import DockerSettings, RetryPolicy, RetrySettings, Settings
from modeldock.controller import ContainerController
from modeldock.dispatcher import InferenceDispatcher
from modeldock.models import TestInput
from modeldock.services import ModelService
from modeldock.storage import ArtifactStore


class FakeImage:
    def __init__(self, tag):
        self.tags = [tag]
        self.short_id = f"sha256:{abs(hash(tag)) % 10 ** 10:010d}"


class FakeImages:
    def __init__(self, client):
        self.client = client
        self.tags = set()
        self.build_error = None
        self.remove_error = None
        self.build_kwargs = []

    def build(self, **kwargs):
        self.client.record("build", kwargs["tag"])
        kwargs["fileobj"].read()
        self.build_kwargs.append(kwargs)
        if self.build_error is not None:
            raise self.build_error
        self.tags.add(kwargs["tag"])
        return FakeImage(kwargs["tag"]), iter([])

    def remove(self, image, force=False):
        self.client.record("remove_image", image)
        if self.remove_error is not None:
            raise self.remove_error
        if image not in self.tags:
            raise ImageNotFound(f"No such image: {image}")
        self.tags.discard(image)


class FakeContainer:
    def __init__(self, client, name, image, ports):
        self.client = client
        self.name = name
        self.image = image
        self.ports = ports
        self.status = "created"

    def start(self):
        self.client.record("start", self.name)
        if self.client.start_error is not None:
            raise self.client.start_error
        self.status = self.client.status_after_start

    def reload(self):
        if self.name not in self.client.containers.store:
            raise NotFound(f"No such container: {self.name}")

    def stop(self, timeout=None):
        self.client.record("stop", self.name)
        if self.client.stop_error is not None:
            raise self.client.stop_error
        self.status = "exited"

    def remove(self, force=False):
        self.client.record("remove", self.name)
        if self.client.remove_error is not None:
            raise self.client.remove_error
        self.client.containers.store.pop(self.name, None)


class FakeContainers:
    def __init__(self, client):
        self.client = client
        self.store = {}
        self.list_error = None

    def list(self, all=False, filters=None):
        if self.list_error is not None:
            raise self.list_error
        name = (filters or {}).get("name", "")
        return [
            c for c in self.store.values()
            if name in c.name and (all or c.status == "running")
        ]

    def create(self, image, name, ports):
        self.client.record("create", name)
        if image not in self.client.images.tags:
            raise ImageNotFound(f"No such image: {image}")
        if name in self.store:
            raise APIError(f"Conflict. The container name /{name} is already in use")
        container = FakeContainer(self.client, name, image, ports)
        self.store[name] = container
        return container


class FakeDockerClient:
    """Stands in for docker.DockerClient, raising real docker-py errors."""

    def __init__(self):
        self.calls = []
        self.start_error = None
        self.stop_error = None
        self.remove_error = None
        self.status_after_start = "running"
        self.start_gate = None
        self.start_entered = threading.Event()
        self._lock = threading.Lock()
        self.images = FakeImages(self)
        self.containers = FakeContainers(self)

    def record(self, op, target):
        with self._lock:
            self.calls.append((op, target))
        if op == "create" and self.start_gate is not None:
            self.start_entered.set()
            self.start_gate.wait(timeout=5)

    def count(self, op):
        return len([c for c in self.calls if c[0] == op])

    def ping(self):
        return True

    def version(self):
        return {"Version": "24.0.0"}

    def make_unreachable(self):
        error = requests.exceptions.ConnectionError("Cannot connect to the Docker daemon")
        self.containers.list_error = error
        self.images.remove_error = error
        self.stop_error = error


def make_response(status_code=200, payload=None, body=None):
    response = requests.Response()
    response.status_code = status_code
    response._content = body if body is not None else json.dumps(payload).encode("utf-8")
    response.headers["Content-Type"] = "application/json"
    response.url = "http://localhost/predict"
    return response


class FakeSession:
    """Replays queued responses; an Exception entry is raised instead."""

    def __init__(self, *replies):
        self.replies = list(replies)
        self.calls = []
        self.closed = False

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()

    def close(self):
        self.closed = True

    def queue(self, *replies):
        self.replies.extend(replies)

    def post(self, url, files=None, timeout=None):
        field, (filename, fh, content_type) = next(iter(files.items()))
        self.calls.append({
            "url": url,
            "field": field,
            "filename": filename,
            "content": fh.read(),
            "content_type": content_type,
            "timeout": timeout,
        })
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        if isinstance(reply, requests.Response):
            return reply
        return make_response(payload=reply)


def write_context(path, dockerfile=b"FROM python:3.11-slim\nCMD [\"python\", \"serve.py\"]\n"):
    with tarfile.open(path, "w") as tar:
        info = tarfile.TarInfo("Dockerfile")
        info.size = len(dockerfile)
        tar.addfile(info, io.BytesIO(dockerfile))
    return str(path)


@pytest.fixture
def settings(tmp_path):
    return Settings(
        upload_dir=str(tmp_path / "uploads"),
        docker=DockerSettings(start_timeout=1, stop_timeout=1),
        retry=RetrySettings(
            default=RetryPolicy(max_retries=2, delay=0),
            operations={
                "get": RetryPolicy(max_retries=2, delay=0),
                "delete": RetryPolicy(max_retries=2, delay=0),
            },
        ),
    )


@pytest.fixture
def docker_client():
    return FakeDockerClient()


@pytest.fixture
def session():
    return FakeSession()


@pytest.fixture
def store(settings):
    return ArtifactStore(settings=settings)


@pytest.fixture
def service(settings, docker_client, session, store):
    return ModelService(
        builder=ImageBuilder(docker_client, settings),
        controller=ContainerController(docker_client, settings),
        dispatcher=InferenceDispatcher(settings, session=session),
        store=store,
        settings=settings,
    )


@pytest.fixture
def artifact(tmp_path, store):
    source = write_context(tmp_path / "context.tar")
    with open(source, "rb") as f:
        return store.save(f, "detector.tar")


@pytest.fixture
def make_inputs(tmp_path):
    def factory(*names):
        inputs = []
        for name in names:
            path = tmp_path / name
            path.write_bytes(b"\x89PNG fake image " + name.encode())
            inputs.append(TestInput(filename=name, path=str(path), content_type="image/png"))
        return inputs
    return factory


