"""Services for ephemera."""

from .container import ContainerManager, ContainerDefinition, GenericContainer

__all__ = ["ContainerManager", "ContainerDefinition", "GenericContainer"]
