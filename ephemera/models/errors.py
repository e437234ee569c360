"""Error types and exception classes for ephemera."""

from enum import Enum
from typing import Any, Dict, Optional


class ErrorType(str, Enum):
    """Error type enumeration."""

    HOST_ENVIRONMENT = "host_environment"
    IMAGE_NOT_FOUND = "image_not_found"
    IMAGE_PULL_FAILED = "image_pull_failed"
    LAUNCH_FAILED = "launch_failed"
    READINESS_TIMEOUT = "readiness_timeout"
    UNEXPECTED_EXIT = "unexpected_exit"
    INVALID_STATE = "invalid_state"


class ContainerError(Exception):
    """Base exception for container lifecycle errors."""

    def __init__(
        self,
        message: str,
        error_type: ErrorType = ErrorType.LAUNCH_FAILED,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.error_type = error_type
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to a loggable dictionary."""
        data = {"error": self.message, "error_type": self.error_type.value}
        if self.details:
            data["details"] = self.details
        if self.__cause__ is not None:
            data["cause"] = repr(self.__cause__)
        return data


class ContainerLaunchError(ContainerError):
    """The container could not be created, started or made ready."""

    def __init__(self, message: str = "Could not create/start container", **kwargs):
        kwargs.setdefault("error_type", ErrorType.LAUNCH_FAILED)
        super().__init__(message, **kwargs)


class HostEnvironmentError(ContainerLaunchError):
    """Connection parameters for the container engine could not be resolved."""

    def __init__(self, message: str = "Could not resolve container engine host", **kwargs):
        super().__init__(message, error_type=ErrorType.HOST_ENVIRONMENT, **kwargs)


class ImageNotFoundError(ContainerLaunchError):
    """The requested image does not exist in the registry."""

    def __init__(self, image: str, detail: Optional[str] = None):
        self.image = image
        super().__init__(
            f"Image not found: {image}",
            error_type=ErrorType.IMAGE_NOT_FOUND,
            details={"image": image, "detail": detail},
        )


class ImagePullFailedError(ContainerLaunchError):
    """Pulling the image failed for a reason other than it being absent."""

    def __init__(self, image: str, detail: Optional[str] = None):
        self.image = image
        super().__init__(
            f"Failed to pull image {image}: {detail}",
            error_type=ErrorType.IMAGE_PULL_FAILED,
            details={"image": image, "detail": detail},
        )


class ReadinessTimeoutError(ContainerLaunchError):
    """The container port never started accepting connections."""

    def __init__(self, address: str, port: int, attempts: int):
        self.address = address
        self.port = port
        self.attempts = attempts
        super().__init__(
            f"Timed out waiting for container port to open "
            f"({address}:{port} should be listening)",
            error_type=ErrorType.READINESS_TIMEOUT,
            details={"address": address, "port": port, "attempts": attempts},
        )


class UnexpectedContainerExitError(ContainerError):
    """The container exited without being stopped.

    Raised off the caller's stack by the termination watcher, so it is
    delivered through the fault channel rather than propagated.
    """

    def __init__(
        self,
        container_id: str,
        exit_status: Optional[int] = None,
        detail: Optional[str] = None,
    ):
        self.container_id = container_id
        self.exit_status = exit_status
        super().__init__(
            "Container exited unexpectedly",
            error_type=ErrorType.UNEXPECTED_EXIT,
            details={
                "container_id": container_id,
                "exit_status": exit_status,
                "detail": detail,
            },
        )


class ContainerStateError(ContainerError):
    """An operation is not allowed in the current lifecycle state."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, error_type=ErrorType.INVALID_STATE, **kwargs)
