"""Process-exit failsafe for container cleanup."""

import atexit
import shutil
import threading
from typing import Callable

import structlog

logger = structlog.get_logger(__name__)


class ShutdownGuard:
    """Runs a cleanup callback at interpreter exit unless it already ran.

    The callback fires at most once, whether triggered by atexit or by an
    explicit fire() call. unregister() drops the atexit hook after the
    owner has cleaned up on its own.
    """

    def __init__(self, callback: Callable[[], None], name: str = "container"):
        self._callback = callback
        self._name = name
        self._lock = threading.Lock()
        self._registered = False
        self._fired = False

    @property
    def registered(self) -> bool:
        return self._registered

    @property
    def fired(self) -> bool:
        return self._fired

    def register(self) -> None:
        with self._lock:
            if self._registered or self._fired:
                return
            atexit.register(self.fire)
            self._registered = True
        logger.debug("Registered shutdown guard", name=self._name)

    def unregister(self) -> None:
        with self._lock:
            if not self._registered:
                return
            atexit.unregister(self.fire)
            self._registered = False

    def fire(self) -> None:
        with self._lock:
            if self._fired:
                return
            self._fired = True

        logger.debug("Hit shutdown guard", name=self._name)
        try:
            self._callback()
        except Exception as e:
            logger.warning("Shutdown cleanup failed", name=self._name, error=str(e))


def schedule_directory_removal(path, name: str = "volume") -> ShutdownGuard:
    """Delete a directory tree when the process exits."""
    guard = ShutdownGuard(lambda: shutil.rmtree(str(path), ignore_errors=True), name=name)
    guard.register()
    return guard
