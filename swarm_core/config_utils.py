import os
import re
import shlex
import socket
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Mapping, Optional, Tuple

from swarm_core.errors import ConfigError

DEFAULT_ENV_FILE = '/etc/swarm-updater/.env'
DEFAULT_PASSWORD_FILE = '/var/run/secrets/shepherd_registry_password'

_TRUE_VALUES = {'1', 'true', 'yes', 'y', 'on'}
_DURATION_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*([smhd]?)\s*$", re.IGNORECASE)
_DURATION_UNITS = {'': 1, 's': 1, 'm': 60, 'h': 3600, 'd': 86400}


@dataclass(frozen=True)
class UpdaterConfig:
    """Process-wide settings, read once at startup and passed explicitly."""
    service_filter: Dict[str, Any] = field(default_factory=dict)
    ignore_services: FrozenSet[str] = frozenset()
    sleep_seconds: float = 300
    update_timeout: float = 300
    image_autoclean_limit: Optional[int] = None
    run_once: bool = False
    registry_user: Optional[str] = None
    registry_host: Optional[str] = None
    registry_password: Optional[str] = None
    registries_file: Optional[str] = None
    rollback_on_failure: bool = False
    update_options: Tuple[str, ...] = ()
    rollback_options: Tuple[str, ...] = ()
    with_registry_auth: bool = False
    with_insecure_registry: bool = False
    with_no_resolve_image: bool = False
    notify_url: Optional[str] = None
    hostname: str = 'localhost'
    verbose: bool = True
    ecr_regions: Tuple[str, ...] = ()
    gcr_login: bool = False
    docker_config_root: Optional[str] = None

    @property
    def has_primary_credential(self) -> bool:
        return bool(self.registry_user and self.registry_password)


def env_bool(environ: Mapping[str, str], name: str, default: bool = False) -> bool:
    raw = environ.get(name)
    if raw is None or raw.strip() == '':
        return default
    return raw.strip().lower() in _TRUE_VALUES


def parse_duration(value: str) -> float:
    """Parse '300', '30s', '5m', '1h' or '1d' into seconds."""
    m = _DURATION_RE.match(value or '')
    if not m:
        raise ConfigError(f"Invalid duration: {value!r}")
    return float(m.group(1)) * _DURATION_UNITS[m.group(2).lower()]


def parse_service_filter(value: Optional[str]) -> Dict[str, Any]:
    """Turn 'label=tier=web name=api' into {'label': 'tier=web', 'name': 'api'}.

    Repeated keys are joined into a list the way the Docker SDK expects.
    """
    filters: Dict[str, Any] = {}
    for token in shlex.split(value or ''):
        key, sep, val = token.partition('=')
        if not sep or not key:
            raise ConfigError(f"Invalid service filter entry: {token!r}")
        if key in filters:
            existing = filters[key]
            filters[key] = (existing if isinstance(existing, list) else [existing]) + [val]
        else:
            filters[key] = val
    return filters


def parse_autoclean_limit(value: Optional[str]) -> Optional[int]:
    # Anything that is not a plain non-negative integer disables cleanup.
    if value is None or not value.strip().isdigit():
        return None
    return int(value.strip())


def read_secret_file(path: Optional[str]) -> Optional[str]:
    if not path or not os.path.isfile(path):
        return None
    with open(path, 'r') as f:
        return f.read().strip() or None


def load_dotenv_file(path: Optional[str], logger=None) -> bool:
    """Load KEY=VALUE pairs from a .env file into os.environ if it exists."""
    if not path or not os.path.exists(path):
        return False
    from dotenv import load_dotenv

    try:
        load_dotenv(path)
    except OSError as e:
        if logger:
            logger.warning(f"Could not read {path}: {e}")
        return False
    return True


def load_config(environ: Optional[Mapping[str, str]] = None) -> UpdaterConfig:
    """Build the immutable configuration from environment variables."""
    env = os.environ if environ is None else environ

    password = env.get('REGISTRY_PASSWORD') or read_secret_file(
        env.get('REGISTRY_PASSWORD_FILE', DEFAULT_PASSWORD_FILE)
    )
    notify_url = env.get('NOTIFY_URL') or env.get('APPRISE_SIDECAR_URL') or None
    ecr_regions = tuple(r.strip() for r in env.get('ECR_REGIONS', '').split(',') if r.strip())

    try:
        return UpdaterConfig(
            service_filter=parse_service_filter(env.get('FILTER_SERVICES')),
            ignore_services=frozenset(env.get('IGNORELIST_SERVICES', '').split()),
            sleep_seconds=parse_duration(env.get('SLEEP_TIME', '5m')),
            update_timeout=parse_duration(env.get('UPDATE_TIMEOUT', '300')),
            image_autoclean_limit=parse_autoclean_limit(env.get('IMAGE_AUTOCLEAN_LIMIT')),
            run_once=env_bool(env, 'RUN_ONCE_AND_EXIT'),
            registry_user=env.get('REGISTRY_USER') or None,
            registry_host=env.get('REGISTRY_HOST') or None,
            registry_password=password,
            registries_file=env.get('REGISTRIES_FILE') or None,
            rollback_on_failure=env_bool(env, 'ROLLBACK_ON_FAILURE'),
            update_options=tuple(shlex.split(env.get('UPDATE_OPTIONS', ''))),
            rollback_options=tuple(shlex.split(env.get('ROLLBACK_OPTIONS', ''))),
            with_registry_auth=env_bool(env, 'WITH_REGISTRY_AUTH'),
            with_insecure_registry=env_bool(env, 'WITH_INSECURE_REGISTRY'),
            with_no_resolve_image=env_bool(env, 'WITH_NO_RESOLVE_IMAGE'),
            notify_url=notify_url,
            hostname=env.get('HOSTNAME_LABEL') or socket.gethostname(),
            verbose=env_bool(env, 'VERBOSE', default=True),
            ecr_regions=ecr_regions,
            gcr_login=env_bool(env, 'GCR_LOGIN'),
            docker_config_root=env.get('DOCKER_CONFIG_ROOT') or None,
        )
    except ValueError as e:
        raise ConfigError(str(e)) from e
