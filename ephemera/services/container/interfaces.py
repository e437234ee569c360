"""Container definitions: the per-image capability supplied to ContainerManager.

A definition says which image to run, how to configure it and how to tell
when it is ready. ContainerManager owns the lifecycle and calls these hooks
at fixed points; definitions never subclass the manager.
"""

import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, Mapping, Optional, Sequence, Union

from ...models.container import ContainerHandle
from ...models.errors import ContainerLaunchError
from .utils import ReadinessProber


class ContainerDefinition(ABC):
    """Capability interface implemented by each container variant."""

    @property
    @abstractmethod
    def image_name(self) -> str:
        """Image name, optionally with a tag ("redis" or "redis:7")."""

    @abstractmethod
    def container_config(self) -> Dict[str, Any]:
        """Keyword arguments for APIClient.create_container (ports, environment, command)."""

    @abstractmethod
    def liveness_check_port(self, handle: ContainerHandle) -> Optional[int]:
        """Host port that accepts connections once the container is alive.

        Return None to opt out of the liveness check.
        """

    def customize_host_config(self, host_config: Dict[str, Any]) -> None:
        """Adjust APIClient.create_host_config kwargs before the container is created."""

    def container_is_starting(self, handle: ContainerHandle) -> None:
        """Called after start with inspect info on the handle, before readiness waiting."""

    def wait_until_ready(
        self,
        handle: ContainerHandle,
        prober: ReadinessProber,
        cancel_event: Optional[threading.Event] = None,
    ) -> None:
        """Block until the container is ready or raise a timeout error.

        The default waits for the liveness port to listen. Overrides must
        still end in success or a ReadinessTimeoutError, and should return
        early with a ContainerLaunchError once cancel_event is set.
        """
        prober.wait_for_listening_port(
            handle.host_address,
            self.liveness_check_port(handle),
            cancel_event=cancel_event,
        )


PortSpec = Union[int, str]


class GenericContainer(ContainerDefinition):
    """Definition for an arbitrary image configured with plain values.

    Args:
        image: Image name, optionally with a tag
        exposed_ports: Container ports to expose ("80", 80 or "53/udp")
        environment: Environment variables
        command: Command override
        liveness_port: Exposed container port whose published host port is probed
        volumes: Host path -> container path bind mounts
        labels: Container labels
    """

    def __init__(
        self,
        image: str,
        exposed_ports: Iterable[PortSpec] = (),
        environment: Optional[Mapping[str, str]] = None,
        command: Optional[Union[str, Sequence[str]]] = None,
        liveness_port: Optional[PortSpec] = None,
        volumes: Optional[Mapping[str, str]] = None,
        labels: Optional[Mapping[str, str]] = None,
    ):
        self._image = image
        self.exposed_ports = [self._normalize_port(p) for p in exposed_ports]
        self.environment = dict(environment or {})
        self.command = command
        self.liveness_port = liveness_port
        self.volumes = dict(volumes or {})
        self.labels = dict(labels or {})

        if liveness_port is not None and self._normalize_port(liveness_port) not in self.exposed_ports:
            self.exposed_ports.append(self._normalize_port(liveness_port))

    @staticmethod
    def _normalize_port(port: PortSpec) -> str:
        value = str(port)
        return value if "/" in value else f"{value}/tcp"

    @property
    def image_name(self) -> str:
        return self._image

    def container_config(self) -> Dict[str, Any]:
        config: Dict[str, Any] = {}
        if self.exposed_ports:
            # create_container takes "port/proto" strings or (port, proto) tuples
            config["ports"] = [
                (int(p.split("/")[0]), p.split("/")[1]) for p in self.exposed_ports
            ]
        if self.environment:
            config["environment"] = self.environment
        if self.command is not None:
            config["command"] = self.command
        if self.volumes:
            config["volumes"] = list(self.volumes.values())
        if self.labels:
            config["labels"] = self.labels
        return config

    def customize_host_config(self, host_config: Dict[str, Any]) -> None:
        if self.volumes:
            host_config["binds"] = {
                host_path: {"bind": container_path, "mode": "rw"}
                for host_path, container_path in self.volumes.items()
            }

    def liveness_check_port(self, handle: ContainerHandle) -> Optional[int]:
        if self.liveness_port is None:
            return None
        port = self._normalize_port(self.liveness_port)
        mapped = handle.get_mapped_port(port)
        if mapped is None:
            raise ContainerLaunchError(
                f"Liveness port {port} is not published",
                details={"container_id": handle.container_id, "port": port},
            )
        return mapped
