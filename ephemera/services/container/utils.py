"""Shared utilities for container operations.

ReadinessProber implements the default "wait for a listening port" policy.
create_volume_directory makes host directories for bind mounts.
"""

import socket
import threading
import time
from pathlib import Path
from typing import Callable, Optional

import structlog

from ...config import ReadinessConfig, settings
from ...models.errors import ContainerLaunchError, ReadinessTimeoutError
from ...utils.shutdown import schedule_directory_removal

logger = structlog.get_logger(__name__)


class ReadinessProber:
    """Polls a TCP endpoint until it accepts connections.

    The poll interval, attempt budget, connect function and sleep function
    are injectable so tests can run the loop without wall-clock delays.
    """

    def __init__(
        self,
        interval: float = 0.1,
        max_attempts: int = 6000,
        connect_timeout: float = 1.0,
        connect: Callable[..., socket.socket] = socket.create_connection,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.interval = interval
        self.max_attempts = max_attempts
        self.connect_timeout = connect_timeout
        self._connect = connect
        self._sleep = sleep

    @classmethod
    def from_settings(cls, config: Optional[ReadinessConfig] = None) -> "ReadinessProber":
        config = config or settings.readiness
        return cls(
            interval=config.get_poll_interval_seconds(),
            max_attempts=config.readiness_max_attempts,
            connect_timeout=config.readiness_connect_timeout_seconds,
        )

    def _try_connect(self, address: str, port: int) -> bool:
        try:
            sock = self._connect((address, port), timeout=self.connect_timeout)
        except OSError:
            return False
        sock.close()
        return True

    def wait_for_listening_port(
        self,
        address: str,
        port: Optional[int],
        cancel_event: Optional[threading.Event] = None,
    ) -> int:
        """Wait for a port to start listening for incoming connections.

        Args:
            address: The IP address to attempt to connect to
            port: The port which will start accepting connections; None skips the check
            cancel_event: Optional event that aborts the wait when set

        Returns:
            Number of connection attempts made (0 when no port was given)

        Raises:
            ReadinessTimeoutError: If every attempt in the budget failed
            ContainerLaunchError: If cancel_event was set
        """
        if port is None:
            return 0

        port = int(port)
        for attempt in range(1, self.max_attempts + 1):
            if cancel_event is not None and cancel_event.is_set():
                raise ContainerLaunchError(
                    "Readiness wait cancelled",
                    details={"address": address, "port": port, "attempts": attempt - 1},
                )
            if self._try_connect(address, port):
                logger.debug("Port is listening", address=address, port=port, attempts=attempt)
                return attempt
            if attempt < self.max_attempts:
                self._sleep(self.interval)

        raise ReadinessTimeoutError(address, port, self.max_attempts)


def create_volume_directory(
    temporary: bool,
    base_dir: Optional[Path] = None,
    prefix: Optional[str] = None,
) -> Path:
    """Create a directory on the local filesystem to mount as a container volume.

    Args:
        temporary: If True, the directory is deleted when the process exits
        base_dir: Parent directory, defaults to the current working directory
        prefix: Directory name prefix, defaults to settings.volume_dir_prefix

    Returns:
        Path to the volume directory
    """
    prefix = prefix or settings.volume_dir_prefix
    base_dir = Path(base_dir) if base_dir is not None else Path.cwd()
    directory = base_dir / f"{prefix}{int(time.time() * 1000)}"
    suffix = 0
    while directory.exists():
        suffix += 1
        directory = base_dir / f"{prefix}{int(time.time() * 1000)}-{suffix}"
    directory.mkdir(parents=True)

    if temporary:
        schedule_directory_removal(directory, name=directory.name)

    logger.debug("Created volume directory", path=str(directory), temporary=temporary)
    return directory
