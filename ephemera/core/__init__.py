"""Core infrastructure shared by the container services."""

from .events import (
    event_bus,
    EventBus,
    Event,
    ImagePulled,
    ContainerStarted,
    ContainerStopped,
    ContainerExitedUnexpectedly,
)

__all__ = [
    "event_bus",
    "EventBus",
    "Event",
    "ImagePulled",
    "ContainerStarted",
    "ContainerStopped",
    "ContainerExitedUnexpectedly",
]
