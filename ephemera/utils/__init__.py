"""Utility modules for ephemera."""

from .logging import setup_logging, get_logger
from .shutdown import ShutdownGuard, schedule_directory_removal

__all__ = [
    "setup_logging",
    "get_logger",
    "ShutdownGuard",
    "schedule_directory_removal",
]
