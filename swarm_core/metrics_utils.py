import logging
from dataclasses import dataclass
from typing import Any, Optional

from prometheus_client import Counter, start_http_server

logger = logging.getLogger(__name__)


@dataclass
class Metrics:
    enabled: bool = False
    updates: Optional[Any] = None
    no_change: Optional[Any] = None
    failures: Optional[Any] = None
    rollbacks: Optional[Any] = None
    unavailable: Optional[Any] = None
    images_removed: Optional[Any] = None

    def inc(self, name: str, amount: int = 1) -> None:
        counter = getattr(self, name, None)
        if counter is not None:
            counter.inc(amount)


def init_metrics(port: Optional[str], addr: str = '0.0.0.0') -> Metrics:
    """Start a Prometheus exporter when a port is configured."""
    if not port:
        return Metrics()
    try:
        start_http_server(int(port), addr=addr)
    except (OSError, ValueError) as e:
        logger.warning(f"Failed to start metrics: {e}")
        return Metrics()
    logger.info(f"Prometheus metrics server on {addr}:{port}")
    return Metrics(
        enabled=True,
        updates=Counter('swarm_updater_updates_total', 'Services moved to a new image'),
        no_change=Counter('swarm_updater_no_change_total', 'Updates that left the image unchanged'),
        failures=Counter('swarm_updater_failures_total', 'Failed or timed-out service updates'),
        rollbacks=Counter('swarm_updater_rollbacks_total', 'Rollbacks issued after a failed update'),
        unavailable=Counter('swarm_updater_unavailable_total', 'Images that could not be resolved'),
        images_removed=Counter('swarm_updater_images_removed_total', 'Old local images removed'),
    )
