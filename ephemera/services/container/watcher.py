"""Background watcher that notices when a container exits."""

import threading
from typing import Callable, Optional

import docker
import structlog
from docker.errors import DockerException
from requests.exceptions import RequestException

logger = structlog.get_logger(__name__)

ExitCallback = Callable[[Optional[int], Optional[BaseException]], None]


class TerminationWatcher:
    """Blocks on the engine's wait call in a daemon thread.

    When the wait returns, or fails because the transport broke, on_exit is
    called exactly once with the exit status (or None) and the transport
    error (or None). Deciding whether the exit was expected is the
    callback's job.
    """

    def __init__(
        self,
        client: docker.APIClient,
        container_id: str,
        on_exit: ExitCallback,
    ):
        self._client = client
        self._container_id = container_id
        self._on_exit = on_exit
        self._thread: Optional[threading.Thread] = None
        self._notified = False
        self._lock = threading.Lock()

    @property
    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self._thread is not None:
            return
        self._thread = threading.Thread(
            target=self._run,
            name=f"container-watcher-{self._container_id[:12]}",
            daemon=True,
        )
        self._thread.start()

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)

    def _run(self) -> None:
        exit_status: Optional[int] = None
        caught: Optional[BaseException] = None
        try:
            result = self._client.wait(self._container_id)
            if isinstance(result, dict):
                exit_status = result.get("StatusCode")
            else:
                exit_status = result
        except (DockerException, RequestException) as e:
            caught = e
        except Exception as e:
            logger.exception("Container wait failed", container_id=self._container_id[:12])
            caught = e

        logger.debug(
            "Container wait returned",
            container_id=self._container_id[:12],
            exit_status=exit_status,
            error=str(caught) if caught else None,
        )
        self._notify(exit_status, caught)

    def _notify(self, exit_status: Optional[int], error: Optional[BaseException]) -> None:
        with self._lock:
            if self._notified:
                return
            self._notified = True
        try:
            self._on_exit(exit_status, error)
        except Exception as e:
            logger.error(
                "Container exit callback failed",
                container_id=self._container_id[:12],
                error=str(e),
            )
