"""Container management services.

This package provides Docker container lifecycle functionality split into:
- client.py: Host environment resolution and Docker client factory
- images.py: Image presence checks and pulls
- launcher.py: Container creation and start
- utils.py: Readiness probing and volume directories
- watcher.py: Background termination watcher
- interfaces.py: Container definitions supplied by each variant
- manager.py: Container lifecycle orchestration
"""

from .client import (
    DockerClientFactory,
    resolve_host_environment,
    resolve_local,
    resolve_remote_vm,
)
from .images import ImageResolver
from .interfaces import ContainerDefinition, GenericContainer
from .launcher import ContainerLauncher
from .manager import ContainerManager
from .utils import ReadinessProber, create_volume_directory
from .watcher import TerminationWatcher

__all__ = [
    "ContainerManager",
    "ContainerDefinition",
    "GenericContainer",
    "ContainerLauncher",
    "DockerClientFactory",
    "ImageResolver",
    "ReadinessProber",
    "TerminationWatcher",
    "create_volume_directory",
    "resolve_host_environment",
    "resolve_local",
    "resolve_remote_vm",
]
