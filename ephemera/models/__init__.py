"""Data models for ephemera."""

from .container import (
    ContainerHandle,
    HostEnvironmentConfig,
    HostEnvironmentKind,
    ImageReference,
    LifecycleState,
    PullProgressEvent,
)
from .errors import (
    ErrorType,
    ContainerError,
    ContainerLaunchError,
    ContainerStateError,
    HostEnvironmentError,
    ImageNotFoundError,
    ImagePullFailedError,
    ReadinessTimeoutError,
    UnexpectedContainerExitError,
)

__all__ = [
    # Container
    "ContainerHandle",
    "HostEnvironmentConfig",
    "HostEnvironmentKind",
    "ImageReference",
    "LifecycleState",
    "PullProgressEvent",
    # Errors
    "ErrorType",
    "ContainerError",
    "ContainerLaunchError",
    "ContainerStateError",
    "HostEnvironmentError",
    "ImageNotFoundError",
    "ImagePullFailedError",
    "ReadinessTimeoutError",
    "UnexpectedContainerExitError",
]
