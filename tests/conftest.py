import pytest

from swarm_core.config_utils import UpdaterConfig
from swarm_core.errors import CommandError, CommandTimeout
from swarm_core.models import ServiceInfo
from swarm_core.notify_utils import Notifier


class FakeSwarmClient:
    """In-memory control plane recording every call made against it."""

    def __init__(
        self,
        services=None,
        version='24.0.7',
        missing_images=(),
        failing_updates=None,
        unchanged=(),
        replicas=None,
        local_images=None,
        failing_rollbacks=(),
        rollback_timeouts=(),
        failing_logins=(),
        images_in_use=(),
    ):
        self.services = {s.name: s for s in (services or [])}
        self.version = version
        self.missing_images = set(missing_images)
        self.failing_updates = dict(failing_updates or {})
        self.unchanged = set(unchanged)
        self.replicas = dict(replicas or {})
        self.local_images = dict(local_images or {})
        self.failing_rollbacks = set(failing_rollbacks)
        self.rollback_timeouts = set(rollback_timeouts)
        self.failing_logins = set(failing_logins)
        self.images_in_use = set(images_in_use)
        self.calls = []

    def ops(self, op, name=None):
        return [c for c in self.calls if c[0] == op and (name is None or c[1] == name)]

    def get_version(self):
        return self.version

    def list_services(self, filters=None):
        self.calls.append(('list', filters))
        return list(self.services)

    def inspect_service(self, name):
        s = self.services[name]
        return ServiceInfo(s.name, s.image, s.previous_image, s.auth_config)

    def running_replicas(self, name):
        return self.replicas.get(name, 1)

    def manifest_exists(self, image, auth_config=None, insecure=False):
        self.calls.append(('probe', image, auth_config, insecure))
        return image not in self.missing_images

    def update_service(self, name, image, options=(), auth_config=None, timeout=None):
        self.calls.append(('update', name, image, list(options), auth_config, timeout))
        if name in self.failing_updates:
            raise self.failing_updates[name]
        svc = self.services[name]
        svc.previous_image = svc.image
        if name not in self.unchanged:
            svc.image = f"{image}@sha256:{'f' * 12}"

    def rollback_service(self, name, options=(), timeout=None):
        self.calls.append(('rollback', name, list(options)))
        self.rollback_timeout = timeout
        if name in self.rollback_timeouts:
            raise CommandTimeout(['docker', 'service', 'update', '--rollback', name], timeout)
        if name in self.failing_rollbacks:
            raise CommandError(['docker', 'service', 'update', '--rollback', name], 1, 'rollback failed')

    def login(self, host, user, secret, scope=None):
        self.calls.append(('login', host, user, secret, scope))
        if host in self.failing_logins:
            raise CommandError(['docker', 'login'], 1, 'unauthorized')

    def list_local_images(self, repository):
        self.calls.append(('images', repository))
        return list(self.local_images.get(repository, []))

    def prune_stopped_containers(self):
        self.calls.append(('prune',))

    def remove_image(self, image_id):
        self.calls.append(('rmi', image_id))
        if image_id in self.images_in_use:
            raise CommandError(['docker', 'rmi', image_id], 409, 'image is being used')


class RecordingNotifier(Notifier):
    def __init__(self):
        super().__init__('http://notify.invalid/notify', 'node-1')
        self.sent = []

    def notify(self, title, body, severity):
        self.sent.append((title, body, severity))


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def make_client():
    return FakeSwarmClient


@pytest.fixture
def config():
    return UpdaterConfig(hostname='node-1', update_timeout=300)


def svc(name, image, previous=None, auth_config=None):
    return ServiceInfo(name=name, image=image, previous_image=previous, auth_config=auth_config)


@pytest.fixture
def make_service():
    return svc
