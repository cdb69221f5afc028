import base64
import logging
from typing import List, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from google.auth import default
from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import Request

from swarm_core.config_utils import UpdaterConfig
from swarm_core.errors import CommandError, RegistryLoginError
from swarm_core.models import RegistryCredential

logger = logging.getLogger(__name__)

GCR_REGISTRIES = ['gcr.io', 'us.gcr.io', 'eu.gcr.io', 'asia.gcr.io']


def parse_registries_lines(lines) -> List[RegistryCredential]:
    """Parse tab-separated `scope host user secret` lines.

    Lines containing '#' or not splitting into exactly four fields are skipped.
    """
    entries: List[RegistryCredential] = []
    for lineno, raw in enumerate(lines, start=1):
        line = raw.rstrip('\r\n')
        if not line.strip():
            continue
        if '#' in line:
            logger.debug(f"Skipping comment on registries line {lineno}")
            continue
        fields = line.split('\t')
        if len(fields) != 4:
            logger.debug(f"Skipping malformed registries line {lineno} ({len(fields)} fields)")
            continue
        entries.append(RegistryCredential(*fields))
    return entries


def parse_registries_file(path: Optional[str]) -> List[RegistryCredential]:
    if not path:
        return []
    try:
        with open(path, 'r') as f:
            return parse_registries_lines(f)
    except FileNotFoundError:
        logger.warning(f"Registries file {path} not found; no extra registries configured")
        return []


def _login(client, host: Optional[str], user: str, secret: str, scope: Optional[str] = None) -> None:
    try:
        client.login(host, user, secret, scope=scope)
    except CommandError as e:
        raise RegistryLoginError(host or '', e.stderr) from e
    logger.info(f"Logged in to {host or 'default registry'}" + (f" (config {scope})" if scope else ''))


def ecr_credentials(region: str) -> RegistryCredential:
    """Fetch a short-lived ECR token and return it as a login credential."""
    ecr_client = boto3.client('ecr', region_name=region)
    response = ecr_client.get_authorization_token()
    auth = response['authorizationData'][0]
    username, password = base64.b64decode(auth['authorizationToken']).decode().split(':', 1)
    return RegistryCredential('', auth['proxyEndpoint'], username, password)


def gcr_access_token() -> str:
    credentials, _project = default()
    credentials.refresh(Request())
    return credentials.token


def login_all(client, config: UpdaterConfig) -> int:
    """Log into every configured registry. Returns the number of logins.

    Any failure raises RegistryLoginError; callers treat it as fatal for the pass.
    """
    count = 0
    for entry in parse_registries_file(config.registries_file):
        _login(client, entry.host, entry.user, entry.secret, scope=entry.config_scope)
        count += 1

    if config.has_primary_credential:
        _login(client, config.registry_host, config.registry_user, config.registry_password)
        count += 1

    for region in config.ecr_regions:
        try:
            cred = ecr_credentials(region)
        except (BotoCoreError, ClientError, KeyError, ValueError) as e:
            raise RegistryLoginError(f"ecr:{region}", str(e)) from e
        _login(client, cred.host, cred.user, cred.secret)
        count += 1

    if config.gcr_login:
        try:
            token = gcr_access_token()
        except GoogleAuthError as e:
            raise RegistryLoginError('gcr.io', str(e)) from e
        for registry in GCR_REGISTRIES:
            _login(client, registry, '_token', token)
            count += 1
    return count
