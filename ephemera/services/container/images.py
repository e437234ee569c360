"""Image resolution: make sure an image is present locally, pulling if needed."""

from typing import Iterable, Optional

import docker
import structlog
from docker.errors import APIError, NotFound
from requests.exceptions import RequestException

from ...core.events import EventBus, ImagePulled, event_bus as default_event_bus
from ...models.container import ImageReference, PullProgressEvent
from ...models.errors import ImageNotFoundError, ImagePullFailedError

logger = structlog.get_logger(__name__)

NOT_FOUND_MARKERS = ("404", "not found")


def is_not_found_error(text: Optional[str]) -> bool:
    """Check whether a pull error message means the image does not exist."""
    if not text:
        return False
    lowered = text.lower()
    return any(marker in lowered for marker in NOT_FOUND_MARKERS)


class ImageResolver:
    """Ensures an image+tag exists locally before a container is created."""

    def __init__(self, client: docker.APIClient, event_bus: Optional[EventBus] = None):
        self._client = client
        self._event_bus = event_bus or default_event_bus

    def is_image_present(self, image: ImageReference) -> bool:
        """Check the local image list for the exact name:tag."""
        wanted = str(image)
        for entry in self._client.images(name=image.name) or []:
            if wanted in (entry.get("RepoTags") or []):
                return True
            if image.is_digest and wanted in (entry.get("RepoDigests") or []):
                return True
        return False

    def ensure_image_present(self, image: ImageReference) -> bool:
        """Make sure the image is available locally.

        Args:
            image: Image reference to resolve

        Returns:
            True if the image was pulled, False if it was already present

        Raises:
            ImageNotFoundError: The registry does not have the image
            ImagePullFailedError: The pull failed for any other reason
        """
        if self.is_image_present(image):
            logger.debug("Image already present", image=str(image))
            return False

        logger.info(
            "Pulling docker image. Please be patient; this may take some time "
            "but only needs to be done once.",
            image=str(image),
        )
        try:
            stream = self._client.pull(image.name, tag=image.tag, stream=True, decode=True)
            self._consume_progress(image, stream)
        except NotFound as e:
            raise ImageNotFoundError(str(image), str(e)) from e
        except APIError as e:
            if is_not_found_error(str(e)):
                raise ImageNotFoundError(str(image), str(e)) from e
            raise ImagePullFailedError(str(image), str(e)) from e
        except RequestException as e:
            raise ImagePullFailedError(str(image), str(e)) from e

        logger.info("Pulled docker image", image=str(image))
        self._event_bus.publish(ImagePulled(image=str(image)))
        return True

    def _consume_progress(self, image: ImageReference, stream: Iterable[dict]) -> None:
        """Read pull progress until the stream ends; the first error aborts."""
        for message in stream:
            event = PullProgressEvent.from_message(message)
            if not event.has_error:
                continue

            logger.warning("Image pull reported an error", image=str(image), error=event.error)
            close = getattr(stream, "close", None)
            if close is not None:
                close()
            if is_not_found_error(event.error):
                raise ImageNotFoundError(str(image), str(event))
            raise ImagePullFailedError(str(image), str(event))
