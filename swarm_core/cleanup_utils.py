import logging
from typing import List, Optional

from docker.errors import DockerException

from swarm_core.errors import UpdaterError
from swarm_core.metrics_utils import Metrics
from swarm_core.update_utils import repository_of

logger = logging.getLogger(__name__)


def clean_old_images(client, image: str, limit: int, metrics: Optional[Metrics] = None) -> List[str]:
    """Keep the newest `limit` local images of the image's repository.

    Stopped containers are pruned first since they pin image layers.
    Removal failures are logged and skipped. Returns the IDs removed.
    """
    repository = repository_of(image)
    try:
        image_ids = client.list_local_images(repository)
    except UpdaterError as e:
        logger.warning(f"Could not list local images for {repository}: {e}")
        return []

    excess = len(image_ids) - limit
    if excess <= 0:
        logger.debug(f"{len(image_ids)} local images of {repository}, limit {limit}; nothing to clean")
        return []

    logger.info(f"Cleaning up old images of {repository}, leaving last {limit}")
    try:
        client.prune_stopped_containers()
    except (UpdaterError, DockerException) as e:
        logger.warning(f"Container prune failed: {e}")

    removed: List[str] = []
    # newest first listing: the oldest are at the tail, remove those oldest first
    for image_id in reversed(image_ids[limit:]):
        try:
            client.remove_image(image_id)
        except (UpdaterError, DockerException) as e:
            logger.warning(f"Could not remove image {image_id}: {e}")
            continue
        removed.append(image_id)
    if metrics and removed:
        metrics.inc('images_removed', len(removed))
    return removed
