"""Container lifecycle management.

ContainerManager owns exactly one container: it resolves the engine host,
ensures the image is present, creates and starts the container, waits for
it to become ready, then watches it in the background until stop() is
called or the process exits.

Typical use in a test::

    with ContainerManager(GenericContainer("redis", liveness_port=6379)) as redis:
        port = redis.get_mapped_port(6379)
        ...
"""

import _thread
import threading
from pathlib import Path
from typing import Callable, Optional

import docker
import structlog
from docker.errors import DockerException
from requests.exceptions import RequestException

from ...config import (
    DEFAULT_IMAGE_TAG,
    Settings,
    check_image_tag,
    settings as default_settings,
)
from ...core.events import (
    ContainerExitedUnexpectedly,
    ContainerStarted,
    ContainerStopped,
    EventBus,
    event_bus as default_event_bus,
)
from ...models.container import (
    ContainerHandle,
    HostEnvironmentConfig,
    ImageReference,
    LifecycleState,
)
from ...models.errors import (
    ContainerLaunchError,
    ContainerStateError,
    HostEnvironmentError,
    UnexpectedContainerExitError,
)
from ...utils.shutdown import ShutdownGuard
from .client import DockerClientFactory, resolve_host_environment
from .images import ImageResolver
from .interfaces import ContainerDefinition
from .launcher import ContainerLauncher
from .utils import ReadinessProber, create_volume_directory
from .watcher import TerminationWatcher

logger = structlog.get_logger(__name__)

FaultCallback = Callable[[UnexpectedContainerExitError], None]


class ContainerManager:
    """Starts, watches and stops a single container.

    start() may be called once per instance; a stopped or failed instance
    cannot be restarted. stop() is idempotent and safe to call from any
    thread, including the termination watcher and the shutdown guard.

    Args:
        definition: Container variant supplying image, configuration and hooks
        tag: Image tag used when the definition's image has none
        config: Settings, defaults to the global settings
        client_factory: Builds the Docker client for the resolved host
        event_bus: Bus receiving lifecycle and fault events
        prober: Readiness prober, defaults to one built from settings
        on_fault: Called once if the container exits without stop()
        resolve_environment: Host environment resolver
    """

    def __init__(
        self,
        definition: ContainerDefinition,
        tag: Optional[str] = None,
        config: Optional[Settings] = None,
        client_factory: Optional[DockerClientFactory] = None,
        event_bus: Optional[EventBus] = None,
        prober: Optional[ReadinessProber] = None,
        on_fault: Optional[FaultCallback] = None,
        resolve_environment: Callable[..., HostEnvironmentConfig] = resolve_host_environment,
    ):
        self._settings = config or default_settings
        self._definition = definition
        self._client_factory = client_factory or DockerClientFactory()
        self._event_bus = event_bus or default_event_bus
        self._prober = prober or ReadinessProber.from_settings(self._settings.readiness)
        self._on_fault = on_fault
        self._resolve_environment = resolve_environment

        self._lock = threading.RLock()
        self._cancel_event = threading.Event()
        self._client: Optional[docker.APIClient] = None
        self._host_environment: Optional[HostEnvironmentConfig] = None
        self._watcher: Optional[TerminationWatcher] = None
        self._shutdown_guard: Optional[ShutdownGuard] = None
        self._normal_termination = False
        self._stopped = False
        self._fault: Optional[UnexpectedContainerExitError] = None

        self._tag = check_image_tag(tag) if tag else self._settings.docker_image_tag
        self._handle = ContainerHandle(
            image=ImageReference.parse(definition.image_name, self._tag)
        )

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def handle(self) -> ContainerHandle:
        return self._handle

    @property
    def state(self) -> LifecycleState:
        return self._handle.state

    @property
    def container_id(self) -> Optional[str]:
        return self._handle.container_id

    @property
    def container_name(self) -> Optional[str]:
        return self._handle.name

    @property
    def host_address(self) -> str:
        return self._handle.host_address

    @property
    def client(self) -> Optional[docker.APIClient]:
        return self._client

    @property
    def normal_termination(self) -> bool:
        with self._lock:
            return self._normal_termination

    @property
    def fault(self) -> Optional[UnexpectedContainerExitError]:
        with self._lock:
            return self._fault

    def raise_for_fault(self) -> None:
        """Re-raise an unexpected container exit on the caller's stack."""
        fault = self.fault
        if fault is not None:
            raise fault

    def set_tag(self, tag: Optional[str]) -> None:
        """Set the image tag; None means "latest". Only allowed before start().

        Raises:
            ValueError: If the tag contains a repository or tag separator
            ContainerStateError: If start() was already called
        """
        tag = check_image_tag(tag) if tag else DEFAULT_IMAGE_TAG
        with self._lock:
            if self._handle.state != LifecycleState.CREATED:
                raise ContainerStateError("Cannot change the image tag after start")
            self._tag = tag
            self._handle = ContainerHandle(
                image=ImageReference.parse(self._definition.image_name, self._tag)
            )

    def get_mapped_port(self, container_port) -> Optional[int]:
        return self._handle.get_mapped_port(container_port)

    def create_volume_directory(self, temporary: bool = True) -> Path:
        """Create a host directory to mount as a volume for this container."""
        return create_volume_directory(temporary, prefix=self._settings.volume_dir_prefix)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> "ContainerManager":
        """Start the container, pulling its image if necessary.

        Blocks until the container is ready.

        Raises:
            ContainerStateError: If start() was already called
            ContainerLaunchError: If any step fails; specific subclasses
                (ImageNotFoundError, ReadinessTimeoutError, ...) are raised as
                is and other causes are chained
        """
        with self._lock:
            if self._handle.state != LifecycleState.CREATED or self._stopped:
                raise ContainerStateError(
                    "start() may only be called once per instance, before stop()",
                    details={"state": self._handle.state.value},
                )
            self._handle.transition(LifecycleState.STARTING)

        image = str(self._handle.image)
        logger.debug("Start for container", image=image)

        try:
            self._connect()
            ImageResolver(self._client, self._event_bus).ensure_image_present(self._handle.image)
            ContainerLauncher(self._client).launch(self._definition, self._handle)
            self._definition.wait_until_ready(
                self._handle, self._prober, cancel_event=self._cancel_event
            )
        except ContainerLaunchError as e:
            if self._cancel_event.is_set():
                self._abort_stopped_start(image, cause=e)
            self._mark_failed(e)
            raise
        except Exception as e:
            if self._cancel_event.is_set():
                self._abort_stopped_start(image, cause=e)
            error = ContainerLaunchError(
                "Could not create/start container",
                details={"image": image, "container_id": self._handle.container_id},
            )
            error.__cause__ = e
            self._mark_failed(error)
            raise error from e

        with self._lock:
            stopped = self._stopped
            if not stopped:
                self._handle.transition(LifecycleState.RUNNING)
        if stopped:
            self._abort_stopped_start(image)

        logger.info(
            "Container started",
            container_id=self._handle.short_id,
            container_name=self._handle.name,
            image=image,
        )

        # If the container stops before stop() is called, its termination was unexpected
        self._watcher = TerminationWatcher(
            self._client, self._handle.container_id, self._on_container_exit
        )
        self._watcher.start()

        # If the process exits without the container being stopped, stop it then
        if self._settings.register_shutdown_guard:
            guard = ShutdownGuard(self.stop, name=f"container-{self._handle.short_id}")
            with self._lock:
                if not self._stopped:
                    self._shutdown_guard = guard
                    guard.register()

        self._event_bus.publish(
            ContainerStarted(
                container_id=self._handle.container_id,
                container_name=self._handle.name,
                image=image,
            )
        )
        return self

    def stop(self) -> None:
        """Kill and remove the container.

        Best-effort and idempotent: engine errors are logged and swallowed
        because the container may already be gone. Only the first call
        talks to the engine.
        """
        with self._lock:
            if self._stopped:
                logger.debug("Container already stopped", container_id=self._handle.short_id)
                return
            self._stopped = True
            # Must be visible to the watcher before the kill is issued
            self._normal_termination = True
            self._cancel_event.set()
            if self._handle.state == LifecycleState.RUNNING:
                self._handle.transition(LifecycleState.STOPPED)
            client = self._client
            container_id = self._handle.container_id
            guard = self._shutdown_guard
            self._shutdown_guard = None

        logger.debug("Stop for container", image=str(self._handle.image))

        self._kill_and_remove(client, container_id)

        if guard is not None:
            guard.unregister()

        if container_id is not None:
            self._event_bus.publish(
                ContainerStopped(container_id=container_id, image=str(self._handle.image))
            )

    def __enter__(self) -> "ContainerManager":
        try:
            return self.start()
        except BaseException:
            # __exit__ does not run when __enter__ raises
            self.stop()
            raise

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.stop()
        return False

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _connect(self) -> None:
        """Resolve the host environment and build the client, once."""
        self._host_environment = self._resolve_environment(self._settings.engine)
        self._handle.host_address = self._host_environment.host_address
        try:
            self._client = self._client_factory.create(self._host_environment)
        except DockerException as e:
            raise HostEnvironmentError(
                f"Could not connect to container engine: {e}",
                details={"kind": self._host_environment.kind.value},
            ) from e

    @staticmethod
    def _kill_and_remove(
        client: Optional[docker.APIClient], container_id: Optional[str]
    ) -> None:
        """Kill then force-remove; engine errors are logged and swallowed."""
        if client is None or container_id is None:
            return

        logger.info("Stopping container", container_id=container_id)
        try:
            client.kill(container_id)
        except (DockerException, RequestException) as e:
            logger.debug(
                "Error encountered killing container - it may already be stopped",
                container_id=container_id,
                error=str(e),
            )
        try:
            client.remove_container(container_id, force=True)
        except (DockerException, RequestException) as e:
            logger.debug(
                "Error encountered removing container - it may already be removed",
                container_id=container_id,
                error=str(e),
            )

    def _abort_stopped_start(self, image: str, cause: Optional[BaseException] = None) -> None:
        """Fail start() because stop() ran before it finished."""
        error = ContainerLaunchError(
            "Container was stopped while starting",
            details={"image": image, "container_id": self._handle.container_id},
        )
        self._mark_failed(error)
        # stop() may have run before the container existed
        self._kill_and_remove(self._client, self._handle.container_id)
        raise error from cause

    def _mark_failed(self, error: ContainerLaunchError) -> None:
        with self._lock:
            if self._handle.state == LifecycleState.STARTING:
                self._handle.transition(LifecycleState.FAILED)
        logger.error(
            "Could not start container",
            image=str(self._handle.image),
            container_id=self._handle.short_id,
            **error.to_dict(),
        )

    def _on_container_exit(
        self, exit_status: Optional[int], error: Optional[BaseException]
    ) -> None:
        """Termination watcher callback; classifies the exit."""
        with self._lock:
            if self._normal_termination:
                logger.debug(
                    "Container exited after stop",
                    container_id=self._handle.short_id,
                    exit_status=exit_status,
                )
                return
            if self._fault is not None:
                return

            fault = UnexpectedContainerExitError(
                self._handle.container_id,
                exit_status=exit_status,
                detail=str(error) if error else None,
            )
            fault.__cause__ = error
            self._fault = fault
            if self._handle.state == LifecycleState.RUNNING:
                self._handle.transition(LifecycleState.CRASHED)

        logger.critical(
            "Container exited unexpectedly",
            container_name=self._handle.name,
            image=str(self._handle.image),
            **fault.to_dict(),
        )
        self._event_bus.publish(
            ContainerExitedUnexpectedly(
                container_id=self._handle.container_id,
                container_name=self._handle.name,
                image=str(self._handle.image),
                exit_status=exit_status,
                error=fault,
            )
        )
        if self._on_fault is not None:
            try:
                self._on_fault(fault)
            except Exception as e:
                logger.error("Fault callback failed", error=str(e))

        if self._settings.unexpected_exit_policy == "interrupt":
            _thread.interrupt_main()
