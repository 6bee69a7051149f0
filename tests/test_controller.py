import pytest
import requests
from docker.errors import APIError

from modeldock import models
from modeldock.controller import ContainerController
from modeldock.errors import CleanupError, StartError, StopError


@pytest.fixture
def controller(docker_client, settings):
    return ContainerController(docker_client, settings)


@pytest.fixture
def model(docker_client):
    model_id = models.new_id()
    m = models.Model(
        id=model_id,
        name="detector",
        container_name=models.container_name_for(model_id),
        image_name=models.image_name_for(model_id),
        port=8080,
        file_path="/tmp/ctx.tar",
    )
    docker_client.images.tags.add(m.image_name)
    return m


def test_start_creates_container_with_port_binding(controller, docker_client, model):
    container = controller.start(model)

    assert container.name == model.container_name
    assert container.status == "running"
    assert container.ports == {"8080/tcp": 8080}
    assert container.image == model.image_name


def test_start_with_missing_image_raises(controller, docker_client, model):
    docker_client.images.tags.clear()
    with pytest.raises(StartError, match="not found"):
        controller.start(model)
    assert docker_client.containers.store == {}


def test_start_failure_removes_created_container(controller, docker_client, model):
    docker_client.start_error = APIError("port is already allocated")

    with pytest.raises(StartError, match="port is already allocated"):
        controller.start(model)
    assert model.container_name not in docker_client.containers.store


def test_container_exiting_immediately_is_start_error(controller, docker_client, model):
    docker_client.status_after_start = "exited"

    with pytest.raises(StartError, match="stopped right after start"):
        controller.start(model)
    assert docker_client.containers.store == {}


def test_start_replaces_stale_stopped_container(controller, docker_client, model):
    controller.start(model)
    controller.stop(model.container_name)

    container = controller.start(model)

    assert container.status == "running"
    assert len(docker_client.containers.store) == 1
    assert docker_client.count("create") == 2


def test_start_with_unreachable_runtime(controller, docker_client, model):
    docker_client.containers.list_error = requests.exceptions.ConnectionError("unreachable")
    with pytest.raises(StartError):
        controller.start(model)


def test_stop_running_container(controller, docker_client, model):
    controller.start(model)
    controller.stop(model.container_name)
    assert docker_client.containers.store[model.container_name].status == "exited"


def test_stop_missing_container_is_noop(controller, docker_client):
    controller.stop("model-nothing")
    assert docker_client.count("stop") == 0


def test_stop_ignores_similarly_named_containers(controller, docker_client, model):
    controller.start(model)
    controller.stop(model.container_name[:-2])
    assert docker_client.containers.store[model.container_name].status == "running"


def test_stop_failure_raises_stop_error(controller, docker_client, model):
    controller.start(model)
    docker_client.stop_error = APIError("daemon busy")
    with pytest.raises(StopError):
        controller.stop(model.container_name)


def test_lookups_are_retried_on_connection_errors(controller, docker_client, model, settings):
    controller.start(model)
    calls = {"n": 0}
    real_list = docker_client.containers.list

    def flaky(**kwargs):
        calls["n"] += 1
        if calls["n"] == 1:
            raise requests.exceptions.ConnectionError("blip")
        return real_list(**kwargs)

    docker_client.containers.list = flaky
    controller.stop(model.container_name)

    assert calls["n"] == 2
    assert docker_client.containers.store[model.container_name].status == "exited"


def test_remove_is_best_effort(controller, docker_client, model):
    controller.start(model)
    assert controller.remove(model.container_name) is None
    assert docker_client.containers.store == {}
    assert controller.remove(model.container_name) is None


def test_remove_failure_is_returned_not_raised(controller, docker_client, model):
    controller.start(model)
    docker_client.remove_error = APIError("removal in progress")

    error = controller.remove(model.container_name)

    assert isinstance(error, CleanupError)
    assert error.step == "remove container"
    assert error.resource == model.container_name


def test_remove_image(controller, docker_client, model):
    assert controller.remove_image(model.image_name) is None
    assert model.image_name not in docker_client.images.tags
    assert controller.remove_image(model.image_name) is None


def test_remove_image_failure_is_returned(controller, docker_client, model):
    docker_client.images.remove_error = requests.exceptions.ConnectionError("unreachable")
    error = controller.remove_image(model.image_name)
    assert isinstance(error, CleanupError)
    assert error.step == "remove image"
