"""Pytest configuration and shared fixtures."""

import os
from unittest.mock import MagicMock

import docker
import pytest

# Keep the suite independent of the developer's environment
os.environ.setdefault("HOST_ENVIRONMENT", "local")
os.environ.setdefault("REGISTER_SHUTDOWN_GUARD", "false")

from ephemera.config import Settings
from ephemera.core.events import EventBus
from ephemera.models.container import (
    ContainerHandle,
    HostEnvironmentConfig,
    HostEnvironmentKind,
    ImageReference,
)
from ephemera.services.container.interfaces import GenericContainer
from ephemera.services.container.utils import ReadinessProber


CONTAINER_ID = "0123456789abcdef0123456789abcdef"


def make_inspect_info(name="/test-container", ports=None):
    """Build a minimal inspect_container() payload."""
    ports = ports if ports is not None else {"6379/tcp": [{"HostIp": "0.0.0.0", "HostPort": "32768"}]}
    return {
        "Id": CONTAINER_ID,
        "Name": name,
        "NetworkSettings": {"Ports": ports},
    }


@pytest.fixture
def mock_docker_client():
    """Mock low-level Docker API client for testing."""
    client = MagicMock(spec=docker.APIClient)

    client.images.return_value = []
    client.pull.return_value = iter(
        [
            {"status": "Pulling from library/redis", "id": "latest"},
            {"status": "Download complete", "id": "abc123"},
            {"status": "Status: Downloaded newer image for redis:latest"},
        ]
    )
    client.create_host_config.side_effect = lambda **kwargs: dict(kwargs)
    client.create_container.return_value = {"Id": CONTAINER_ID, "Warnings": []}
    client.start.return_value = None
    client.inspect_container.return_value = make_inspect_info()
    client.kill.return_value = None
    client.remove_container.return_value = None
    client.wait.return_value = {"StatusCode": 0}

    return client


@pytest.fixture
def event_bus():
    """Fresh event bus per test."""
    return EventBus()


@pytest.fixture
def test_settings():
    """Settings with the shutdown guard and auto host detection disabled."""
    return Settings(
        host_environment="local",
        register_shutdown_guard=False,
        readiness_max_attempts=3,
        readiness_poll_interval_ms=1,
    )


@pytest.fixture
def local_environment():
    return HostEnvironmentConfig(
        kind=HostEnvironmentKind.LOCAL,
        host_address="127.0.0.1",
    )


@pytest.fixture
def fast_prober():
    """Prober that never sleeps and always connects."""
    return ReadinessProber(
        interval=0.0,
        max_attempts=3,
        connect=MagicMock(return_value=MagicMock()),
        sleep=MagicMock(),
    )


@pytest.fixture
def redis_definition():
    return GenericContainer("redis", exposed_ports=[6379], liveness_port=6379)


@pytest.fixture
def sample_handle():
    return ContainerHandle(image=ImageReference("redis", "latest"))


@pytest.fixture
def container_id():
    return CONTAINER_ID


@pytest.fixture
def inspect_info():
    """Factory for inspect_container() payloads."""
    return make_inspect_info
