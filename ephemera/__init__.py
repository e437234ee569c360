"""Disposable Docker containers for automated tests."""

from .models import (
    ContainerError,
    ContainerLaunchError,
    ContainerStateError,
    HostEnvironmentError,
    ImageNotFoundError,
    ImagePullFailedError,
    LifecycleState,
    ReadinessTimeoutError,
    UnexpectedContainerExitError,
)
from .services.container import (
    ContainerDefinition,
    ContainerManager,
    GenericContainer,
    ReadinessProber,
)

__version__ = "0.1.0"

__all__ = [
    "ContainerManager",
    "ContainerDefinition",
    "GenericContainer",
    "ReadinessProber",
    "LifecycleState",
    "ContainerError",
    "ContainerLaunchError",
    "ContainerStateError",
    "HostEnvironmentError",
    "ImageNotFoundError",
    "ImagePullFailedError",
    "ReadinessTimeoutError",
    "UnexpectedContainerExitError",
]
