from dataclasses import dataclass
from enum import Enum
from typing import Optional


@dataclass(frozen=True)
class Capabilities:
    """Update modifiers that are safe for the connected engine.

    Computed once per run and never toggled afterwards.
    """
    detach: bool = False  # engine understands --detach=false
    registry_auth: bool = False  # --with-registry-auth
    insecure_registry: bool = False  # --insecure on manifest inspect
    no_resolve_image: bool = False  # --no-resolve-image


@dataclass
class ServiceInfo:
    """Snapshot of a Swarm service, re-read on every pass."""
    name: str
    image: str
    previous_image: Optional[str] = None
    auth_config: Optional[str] = None  # value of the shepherd.auth.config label


@dataclass(frozen=True)
class RegistryCredential:
    config_scope: str
    host: str
    user: str
    secret: str


class UpdateOutcome(str, Enum):
    SKIPPED = "skipped"  # ignore-listed
    UNAVAILABLE = "unavailable"  # image could not be resolved
    FAILED = "failed"  # update command errored or timed out
    NO_CHANGE = "no_change"
    UPDATED = "updated"
