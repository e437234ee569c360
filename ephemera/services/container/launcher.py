"""Container creation and start."""

from typing import Any, Dict

import docker
import structlog

from ...models.container import ContainerHandle
from .interfaces import ContainerDefinition

logger = structlog.get_logger(__name__)


class ContainerLauncher:
    """Creates and starts a container for a definition.

    Errors from the engine propagate unchanged; ContainerManager wraps them.
    A container that was created but failed to start is NOT removed here.
    Its id is already on the handle, and the owner must call stop() to
    release it, otherwise it is leaked.
    """

    def __init__(self, client: docker.APIClient):
        self._client = client

    def build_host_config(self, definition: ContainerDefinition) -> Dict[str, Any]:
        """Default host config publishes every exposed port to an ephemeral host port."""
        host_config_kwargs: Dict[str, Any] = {"publish_all_ports": True}
        definition.customize_host_config(host_config_kwargs)
        return self._client.create_host_config(**host_config_kwargs)

    def launch(self, definition: ContainerDefinition, handle: ContainerHandle) -> ContainerHandle:
        """Create, start and inspect the container.

        Args:
            definition: Variant supplying configuration and hooks
            handle: Handle to populate with id, name and inspect info

        Returns:
            The same handle, populated
        """
        host_config = self.build_host_config(definition)
        container_config = definition.container_config()

        logger.info("Creating container for image", image=str(handle.image))
        creation = self._client.create_container(
            image=str(handle.image),
            host_config=host_config,
            **container_config,
        )
        handle.assign_id(creation["Id"])
        for warning in creation.get("Warnings") or []:
            logger.warning("Container creation warning", container_id=handle.short_id, warning=warning)

        self._client.start(handle.container_id)
        logger.info("Starting container", container_id=handle.container_id)

        # The name is only known once the engine has started the container
        info = self._client.inspect_container(handle.container_id)
        handle.info = info
        handle.name = (info.get("Name") or "").lstrip("/") or None

        definition.container_is_starting(handle)
        return handle
