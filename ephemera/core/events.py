"""In-process event bus for container lifecycle events.

Handlers run synchronously on the publishing thread. The termination
watcher publishes ContainerExitedUnexpectedly from its own thread, so
handlers must be thread-safe.
"""

import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Type

import structlog

logger = structlog.get_logger(__name__)


@dataclass
class Event:
    """Base event."""

    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc), kw_only=True)


@dataclass
class ImagePulled(Event):
    image: str


@dataclass
class ContainerStarted(Event):
    container_id: str
    container_name: Optional[str]
    image: str


@dataclass
class ContainerStopped(Event):
    container_id: Optional[str]
    image: str


@dataclass
class ContainerExitedUnexpectedly(Event):
    """Fault signal: a running container exited without stop() being called."""

    container_id: str
    container_name: Optional[str]
    image: str
    exit_status: Optional[int] = None
    error: Optional[BaseException] = None


Handler = Callable[[Event], None]


class EventBus:
    """Synchronous publish/subscribe bus keyed by event type."""

    def __init__(self):
        self._handlers: Dict[Type[Event], List[Handler]] = {}
        self._lock = threading.Lock()

    def register_handler(self, event_type: Type[Event], handler: Handler) -> None:
        with self._lock:
            self._handlers.setdefault(event_type, []).append(handler)

    def unregister_handler(self, event_type: Type[Event], handler: Handler) -> None:
        with self._lock:
            handlers = self._handlers.get(event_type, [])
            if handler in handlers:
                handlers.remove(handler)

    def subscribe(self, event_type: Type[Event]) -> Callable[[Handler], Handler]:
        """Decorator form of register_handler."""

        def decorator(handler: Handler) -> Handler:
            self.register_handler(event_type, handler)
            return handler

        return decorator

    def publish(self, event: Event) -> None:
        """Deliver an event to every handler registered for its type.

        Handler failures are logged and do not stop delivery.
        """
        with self._lock:
            handlers = [
                handler
                for event_type, registered in self._handlers.items()
                if isinstance(event, event_type)
                for handler in registered
            ]

        for handler in handlers:
            try:
                handler(event)
            except Exception as e:
                logger.error(
                    "Event handler failed",
                    event_type=type(event).__name__,
                    handler=getattr(handler, "__name__", repr(handler)),
                    error=str(e),
                )

    def clear(self) -> None:
        with self._lock:
            self._handlers.clear()


# Global event bus instance
event_bus = EventBus()
