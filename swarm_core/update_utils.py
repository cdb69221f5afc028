import logging
from typing import List, Optional

from swarm_core.config_utils import UpdaterConfig
from swarm_core.errors import CommandError, CommandTimeout
from swarm_core.metrics_utils import Metrics
from swarm_core.models import Capabilities, ServiceInfo, UpdateOutcome

logger = logging.getLogger(__name__)


def strip_digest(image: str) -> str:
    """'repo:tag@sha256:...' -> 'repo:tag'"""
    return image.split('@', 1)[0]


def repository_of(image: str) -> str:
    """Repository name without tag or digest; registry ports are preserved."""
    ref = strip_digest(image)
    slash = ref.rfind('/')
    colon = ref.rfind(':')
    if colon > slash:
        ref = ref[:colon]
    return ref


def probe_image(client, service: ServiceInfo, caps: Capabilities) -> Optional[str]:
    """Return the tag-only image reference if the registry can resolve it, else None."""
    image = strip_digest(service.image)
    if not image:
        logger.error(f"Service {service.name} has no image in its spec")
        return None
    if client.manifest_exists(image, service.auth_config, caps.insecure_registry):
        return image
    return None


def build_update_options(caps: Capabilities, config: UpdaterConfig, running_replicas: int) -> List[str]:
    options: List[str] = []
    if caps.detach:
        # a service scaled to zero is always updated detached
        options.append('--detach=true' if running_replicas == 0 else '--detach=false')
    if caps.registry_auth:
        options.append('--with-registry-auth')
    if caps.no_resolve_image:
        options.append('--no-resolve-image')
    options.extend(config.update_options)
    return options


def rollback(client, service: ServiceInfo, config: UpdaterConfig, metrics: Optional[Metrics] = None) -> bool:
    """Best-effort rollback to the previous spec. Never raises CommandError."""
    logger.info(f"Rolling {service.name} back")
    try:
        client.rollback_service(service.name, config.rollback_options, timeout=config.update_timeout)
    except CommandTimeout:
        logger.error(f"Rollback of {service.name} timed out after {config.update_timeout}s")
        return False
    except CommandError as e:
        logger.error(f"Rollback of {service.name} failed: {e}")
        return False
    finally:
        if metrics:
            metrics.inc('rollbacks')
    return True


def execute_update(
    client,
    service: ServiceInfo,
    image: str,
    caps: Capabilities,
    config: UpdaterConfig,
    notifier,
    metrics: Optional[Metrics] = None,
) -> UpdateOutcome:
    """Apply `image` to the service and classify the result.

    Timeouts and non-zero exits are both FAILED. The timed-out command is
    killed locally; whatever the engine does afterwards is picked up by the
    next pass.
    """
    options = build_update_options(caps, config, client.running_replicas(service.name))
    logger.debug(f"Updating {service.name} with options {options}")
    try:
        client.update_service(
            service.name,
            image,
            options,
            auth_config=service.auth_config,
            timeout=config.update_timeout,
        )
    except CommandError as e:
        if isinstance(e, CommandTimeout):
            logger.error(f"Service {service.name} update timed out after {config.update_timeout}s on {config.hostname}")
        else:
            logger.error(f"Service {service.name} update failed on {config.hostname}: {e.stderr}")
        if metrics:
            metrics.inc('failures')
        if config.rollback_on_failure:
            rollback(client, service, config, metrics)
        notifier.service_failed(service.name, image, str(e))
        return UpdateOutcome.FAILED

    after = client.inspect_service(service.name)
    if after.image == after.previous_image:
        logger.debug(f"No updates to service {service.name}")
        if metrics:
            metrics.inc('no_change')
        return UpdateOutcome.NO_CHANGE

    logger.info(f"Service {service.name} was updated: {after.previous_image} -> {after.image}")
    if metrics:
        metrics.inc('updates')
    notifier.service_updated(service.name, image)
    return UpdateOutcome.UPDATED
