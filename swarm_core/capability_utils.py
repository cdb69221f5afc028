import logging

from swarm_core.config_utils import UpdaterConfig
from swarm_core.models import Capabilities
from swarm_core.version_utils import version_at_least

logger = logging.getLogger(__name__)

# First engine release whose `docker service update` accepts --detach.
MIN_DETACH_VERSION = '17.05'


def detect_capabilities(engine_version: str, config: UpdaterConfig) -> Capabilities:
    """Decide which update modifiers are safe for this engine and config."""
    try:
        detach = version_at_least(engine_version, MIN_DETACH_VERSION)
    except ValueError:
        logger.warning(f"Unrecognised engine version {engine_version!r}; not using --detach=false")
        detach = False

    caps = Capabilities(
        detach=detach,
        registry_auth=bool(config.registry_user) or config.with_registry_auth,
        insecure_registry=config.with_insecure_registry,
        no_resolve_image=config.with_no_resolve_image,
    )
    logger.info(
        f"Engine {engine_version}: detach={caps.detach} registry_auth={caps.registry_auth} "
        f"insecure={caps.insecure_registry} no_resolve_image={caps.no_resolve_image}"
    )
    return caps
