"""Container handle, lifecycle state and related value types.

ContainerHandle is the record one orchestration instance keeps for the
container it owns. It is never shared across instances.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional

from docker.utils import parse_repository_tag

from .errors import ContainerStateError


class LifecycleState(str, Enum):
    """Lifecycle state of a managed container."""

    CREATED = "created"
    STARTING = "starting"
    RUNNING = "running"
    STOPPED = "stopped"
    CRASHED = "crashed"
    FAILED = "failed"


_TRANSITIONS = {
    LifecycleState.CREATED: {LifecycleState.STARTING},
    LifecycleState.STARTING: {LifecycleState.RUNNING, LifecycleState.FAILED},
    LifecycleState.RUNNING: {LifecycleState.STOPPED, LifecycleState.CRASHED},
}


@dataclass(frozen=True)
class ImageReference:
    """Image name plus tag (or digest)."""

    name: str
    tag: str = "latest"

    @classmethod
    def parse(cls, value: str, default_tag: str = "latest") -> "ImageReference":
        """Parse "name[:tag]" into a reference.

        Registry host ports ("localhost:5000/app") are not mistaken for tags.
        """
        name, tag = parse_repository_tag(value)
        return cls(name=name, tag=tag or default_tag)

    @property
    def is_digest(self) -> bool:
        return ":" in self.tag

    def __str__(self) -> str:
        separator = "@" if self.is_digest else ":"
        return f"{self.name}{separator}{self.tag}"


@dataclass
class PullProgressEvent:
    """One decoded message from a streaming image pull."""

    status: Optional[str] = None
    id: Optional[str] = None
    progress: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def from_message(cls, message: Dict[str, Any]) -> "PullProgressEvent":
        error = message.get("error")
        if not error:
            error_detail = message.get("errorDetail") or {}
            error = error_detail.get("message")
        return cls(
            status=message.get("status"),
            id=message.get("id"),
            progress=message.get("progress"),
            error=error or None,
        )

    @property
    def has_error(self) -> bool:
        return self.error is not None

    def __str__(self) -> str:
        parts = [f"{k}={v}" for k, v in vars(self).items() if v is not None]
        return "PullProgressEvent(" + ", ".join(parts) + ")"


class HostEnvironmentKind(str, Enum):
    """How the container engine is reached."""

    LOCAL = "local"
    REMOTE_VM = "remote_vm"


@dataclass(frozen=True)
class HostEnvironmentConfig:
    """Resolved connection parameters for the container engine.

    Resolved once per orchestration instance and immutable thereafter.
    """

    kind: HostEnvironmentKind
    host_address: str
    base_url: Optional[str] = None
    cert_path: Optional[Path] = None
    tls_verify: bool = False


@dataclass
class ContainerHandle:
    """Represents one running (or former) container.

    The engine-assigned id is set at most once, when the container is
    created. The display name is only known after the container starts.
    """

    image: ImageReference
    host_address: str = "127.0.0.1"
    container_id: Optional[str] = None
    name: Optional[str] = None
    state: LifecycleState = LifecycleState.CREATED
    info: Dict[str, Any] = field(default_factory=dict)

    @property
    def short_id(self) -> str:
        return self.container_id[:12] if self.container_id else "none"

    def assign_id(self, container_id: str) -> None:
        if self.container_id is not None:
            raise ContainerStateError(
                "Container id already assigned",
                details={"container_id": self.container_id},
            )
        self.container_id = container_id

    def transition(self, new_state: LifecycleState) -> None:
        """Move to a new lifecycle state, rejecting illegal transitions."""
        if new_state not in _TRANSITIONS.get(self.state, set()):
            raise ContainerStateError(
                f"Illegal state transition {self.state.value} -> {new_state.value}",
                details={"container_id": self.container_id},
            )
        self.state = new_state

    def get_mapped_port(self, container_port) -> Optional[int]:
        """Get the host port published for a container port.

        Args:
            container_port: Port number or "port/proto" string (tcp assumed)

        Returns:
            Host port number, or None if the port is not published
        """
        key = str(container_port)
        if "/" not in key:
            key = f"{key}/tcp"
        ports = (self.info.get("NetworkSettings") or {}).get("Ports") or {}
        bindings = ports.get(key) or []
        for binding in bindings:
            host_port = binding.get("HostPort")
            if host_port:
                return int(host_port)
        return None
