import logging
import os
import subprocess
from typing import Any, Dict, List, Optional, Sequence

import docker
import requests
from docker.errors import APIError, DockerException, NotFound

from swarm_core.errors import CommandError, CommandTimeout, ControlPlaneError
from swarm_core.models import ServiceInfo

logger = logging.getLogger(__name__)

AUTH_CONFIG_LABEL = 'shepherd.auth.config'
PROBE_TIMEOUT_SEC = 60
LOGIN_TIMEOUT_SEC = 60

# engine connection failures surface from the SDK as either of these
ENGINE_ERRORS = (DockerException, requests.RequestException)


def run_docker(
    args: Sequence[str],
    timeout: Optional[float] = None,
    input_text: Optional[str] = None,
    env: Optional[Dict[str, str]] = None,
) -> str:
    """Run a docker CLI command, returning stdout.

    Raises CommandError on a non-zero exit and CommandTimeout when the
    command does not finish in time (the child is killed by subprocess).
    """
    cmd = ['docker', *args]
    try:
        result = subprocess.run(
            cmd,
            input=input_text,
            capture_output=True,
            text=True,
            timeout=timeout,
            env=env,
        )
    except subprocess.TimeoutExpired:
        raise CommandTimeout(cmd, timeout)
    except OSError as e:
        raise CommandError(cmd, None, str(e))
    if result.returncode != 0:
        raise CommandError(cmd, result.returncode, result.stderr)
    return result.stdout


def _service_image(spec: Optional[Dict[str, Any]]) -> Optional[str]:
    if not spec:
        return None
    return spec.get('TaskTemplate', {}).get('ContainerSpec', {}).get('Image')


class SwarmClient:
    """Typed access to the Swarm control plane and the local image store."""

    def __init__(self, docker_client=None, config_root: Optional[str] = None):
        self.docker_client = docker_client
        self.config_root = config_root or os.path.join(os.path.expanduser('~'), '.docker')

    @classmethod
    def from_env(cls, config_root: Optional[str] = None) -> 'SwarmClient':
        try:
            client = docker.from_env()
            client.ping()
        except ENGINE_ERRORS as e:
            raise ControlPlaneError(f"Cannot reach Docker engine: {e}") from e
        return cls(client, config_root)

    def config_dir(self, scope: Optional[str]) -> Optional[str]:
        if not scope:
            return None
        return os.path.join(self.config_root, scope)

    def _config_args(self, scope: Optional[str]) -> List[str]:
        path = self.config_dir(scope)
        return ['--config', path] if path else []

    # Queries

    def get_version(self) -> str:
        try:
            return self.docker_client.version()['Version']
        except ENGINE_ERRORS + (KeyError,) as e:
            raise ControlPlaneError(f"Cannot read engine version: {e}") from e

    def list_services(self, filters: Optional[Dict[str, Any]] = None) -> List[str]:
        try:
            services = self.docker_client.services.list(filters=filters or None)
        except ENGINE_ERRORS as e:
            raise ControlPlaneError(f"Cannot list services: {e}") from e
        # `docker service ls` orders by name
        return sorted(s.name for s in services)

    def inspect_service(self, name: str) -> ServiceInfo:
        try:
            attrs = self.docker_client.services.get(name).attrs
        except ENGINE_ERRORS as e:
            raise ControlPlaneError(f"Cannot inspect service {name}: {e}") from e
        spec = attrs.get('Spec', {})
        return ServiceInfo(
            name=name,
            image=_service_image(spec) or '',
            previous_image=_service_image(attrs.get('PreviousSpec')),
            auth_config=(spec.get('Labels') or {}).get(AUTH_CONFIG_LABEL) or None,
        )

    def running_replicas(self, name: str) -> int:
        """Tasks actually in the running state, not merely scheduled to run."""
        try:
            tasks = self.docker_client.services.get(name).tasks(filters={'desired-state': 'running'})
        except ENGINE_ERRORS as e:
            raise ControlPlaneError(f"Cannot list tasks for {name}: {e}") from e
        return sum(1 for t in tasks if (t.get('Status') or {}).get('State') == 'running')

    def manifest_exists(self, image: str, auth_config: Optional[str] = None, insecure: bool = False) -> bool:
        args = [*self._config_args(auth_config), 'manifest', 'inspect']
        if insecure:
            args.append('--insecure')
        args.append(image)
        try:
            # pre-20.10 CLIs only expose `manifest` in experimental mode
            run_docker(args, timeout=PROBE_TIMEOUT_SEC, env={**os.environ, 'DOCKER_CLI_EXPERIMENTAL': 'enabled'})
        except CommandError as e:
            logger.debug(f"Manifest probe for {image} failed: {e}")
            return False
        return True

    # Commands

    def update_service(
        self,
        name: str,
        image: str,
        options: Sequence[str] = (),
        auth_config: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> None:
        args = [*self._config_args(auth_config), 'service', 'update', name, *options, f'--image={image}']
        run_docker(args, timeout=timeout)

    def rollback_service(self, name: str, options: Sequence[str] = (), timeout: Optional[float] = None) -> None:
        run_docker(['service', 'update', '--rollback', name, *options], timeout=timeout)

    def login(self, host: Optional[str], user: str, secret: str, scope: Optional[str] = None) -> None:
        args = [*self._config_args(scope), 'login', '--username', user, '--password-stdin']
        if host:
            args.append(host)
        run_docker(args, timeout=LOGIN_TIMEOUT_SEC, input_text=secret)

    # Local image store

    def list_local_images(self, repository: str) -> List[str]:
        """Image IDs for a repository, newest first like `docker images`."""
        try:
            images = self.docker_client.images.list(name=repository)
        except ENGINE_ERRORS as e:
            raise ControlPlaneError(f"Cannot list images for {repository}: {e}") from e
        images.sort(key=lambda img: img.attrs.get('Created', ''), reverse=True)
        return [img.id for img in images]

    def prune_stopped_containers(self) -> None:
        try:
            result = self.docker_client.containers.prune()
        except ENGINE_ERRORS as e:
            raise ControlPlaneError(f"Cannot prune stopped containers: {e}") from e
        removed = result.get('ContainersDeleted') or []
        logger.debug(f"Pruned {len(removed)} stopped containers")

    def remove_image(self, image_id: str) -> None:
        try:
            self.docker_client.images.remove(image_id)
        except NotFound:
            logger.debug(f"Image {image_id} already gone")
        except APIError as e:
            raise CommandError(['docker', 'rmi', image_id], getattr(e, 'status_code', None), str(e)) from e
        except requests.RequestException as e:
            raise ControlPlaneError(f"Cannot remove image {image_id}: {e}") from e
