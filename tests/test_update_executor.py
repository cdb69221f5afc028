from dataclasses import replace

from swarm_core.errors import CommandError, CommandTimeout
from swarm_core.metrics_utils import Metrics
from swarm_core.models import Capabilities, UpdateOutcome
from swarm_core.update_utils import (
    build_update_options,
    execute_update,
    probe_image,
    repository_of,
    strip_digest,
)

ALL_CAPS = Capabilities(detach=True, registry_auth=True, insecure_registry=True, no_resolve_image=True)


class CountingCounter:
    def __init__(self):
        self.value = 0

    def inc(self, amount=1):
        self.value += amount


def counting_metrics():
    return Metrics(
        enabled=True,
        updates=CountingCounter(),
        no_change=CountingCounter(),
        failures=CountingCounter(),
        rollbacks=CountingCounter(),
        unavailable=CountingCounter(),
        images_removed=CountingCounter(),
    )


def test_strip_digest_and_repository():
    assert strip_digest('nginx:1.25@sha256:abc') == 'nginx:1.25'
    assert strip_digest('nginx') == 'nginx'
    assert repository_of('nginx:1.25@sha256:abc') == 'nginx'
    assert repository_of('registry.local:5000/team/app:v2') == 'registry.local:5000/team/app'
    assert repository_of('registry.local:5000/team/app') == 'registry.local:5000/team/app'


def test_probe_strips_digest_and_uses_auth_scope(make_client, make_service):
    client = make_client()
    service = make_service('web', 'corp.example/web:stable@sha256:old', auth_config='corp')
    assert probe_image(client, service, ALL_CAPS) == 'corp.example/web:stable'
    assert client.ops('probe') == [('probe', 'corp.example/web:stable', 'corp', True)]


def test_probe_unavailable(make_client, make_service):
    client = make_client(missing_images={'web:stable'})
    assert probe_image(client, make_service('web', 'web:stable@sha256:x'), Capabilities()) is None


def test_options_follow_capabilities(config):
    cfg = replace(config, update_options=('--update-parallelism=2',))
    assert build_update_options(ALL_CAPS, cfg, running_replicas=3) == [
        '--detach=false',
        '--with-registry-auth',
        '--no-resolve-image',
        '--update-parallelism=2',
    ]
    assert build_update_options(Capabilities(), config, running_replicas=3) == []


def test_zero_replicas_forces_detached_mode(config):
    opts = build_update_options(ALL_CAPS, config, running_replicas=0)
    assert '--detach=true' in opts
    assert '--detach=false' not in opts
    assert '--detach=false' not in build_update_options(Capabilities(), config, running_replicas=0)


def test_updated_outcome_notifies_success(make_client, make_service, config, notifier):
    client = make_client(services=[make_service('web', 'web:stable@sha256:old')])
    metrics = counting_metrics()
    outcome = execute_update(client, client.inspect_service('web'), 'web:stable', ALL_CAPS, config, notifier, metrics)
    assert outcome is UpdateOutcome.UPDATED
    assert len(notifier.sent) == 1
    title, body, severity = notifier.sent[0]
    assert severity == 'success'
    assert 'web' in title and 'node-1' in body
    assert metrics.updates.value == 1
    update = client.ops('update', 'web')[0]
    assert update[2] == 'web:stable'
    assert update[5] == 300


def test_no_change_is_silent(make_client, make_service, config, notifier):
    client = make_client(services=[make_service('web', 'web:stable@sha256:same')], unchanged={'web'})
    metrics = counting_metrics()
    outcome = execute_update(client, client.inspect_service('web'), 'web:stable', ALL_CAPS, config, notifier, metrics)
    assert outcome is UpdateOutcome.NO_CHANGE
    assert notifier.sent == []
    assert metrics.no_change.value == 1


def test_failure_with_rollback(make_client, make_service, config, notifier):
    client = make_client(
        services=[make_service('web', 'web:stable')],
        failing_updates={'web': CommandError(['docker', 'service', 'update'], 1, 'no such image')},
    )
    cfg = replace(config, rollback_on_failure=True, rollback_options=('--rollback-parallelism=1',))
    metrics = counting_metrics()
    outcome = execute_update(client, client.inspect_service('web'), 'web:stable', ALL_CAPS, cfg, notifier, metrics)
    assert outcome is UpdateOutcome.FAILED
    assert client.ops('rollback') == [('rollback', 'web', ['--rollback-parallelism=1'])]
    assert [n[2] for n in notifier.sent] == ['failure']
    assert metrics.failures.value == 1
    assert metrics.rollbacks.value == 1


def test_failed_rollback_still_single_failure_notification(make_client, make_service, config, notifier):
    client = make_client(
        services=[make_service('web', 'web:stable')],
        failing_updates={'web': CommandTimeout(['docker', 'service', 'update'], 300)},
        failing_rollbacks={'web'},
    )
    cfg = replace(config, rollback_on_failure=True)
    outcome = execute_update(client, client.inspect_service('web'), 'web:stable', ALL_CAPS, cfg, notifier)
    assert outcome is UpdateOutcome.FAILED
    assert len(client.ops('rollback')) == 1
    assert len(notifier.sent) == 1
    assert notifier.sent[0][2] == 'failure'


def test_failure_without_rollback(make_client, make_service, config, notifier):
    client = make_client(
        services=[make_service('web', 'web:stable')],
        failing_updates={'web': CommandTimeout(['docker', 'service', 'update'], 300)},
    )
    outcome = execute_update(client, client.inspect_service('web'), 'web:stable', ALL_CAPS, config, notifier)
    assert outcome is UpdateOutcome.FAILED
    assert client.ops('rollback') == []
    assert len(notifier.sent) == 1


def test_update_uses_service_auth_scope(make_client, make_service, config, notifier):
    client = make_client(services=[make_service('web', 'corp.example/web:1', auth_config='corp')])
    execute_update(client, client.inspect_service('web'), 'corp.example/web:1', Capabilities(), config, notifier)
    assert client.ops('update', 'web')[0][4] == 'corp'


def test_timed_out_rollback_still_single_failure_notification(make_client, make_service, config, notifier):
    client = make_client(
        services=[make_service('web', 'web:stable')],
        failing_updates={'web': CommandError(['docker', 'service', 'update'], 1, 'task failed')},
        rollback_timeouts={'web'},
    )
    cfg = replace(config, rollback_on_failure=True, update_timeout=45)
    metrics = counting_metrics()
    outcome = execute_update(client, client.inspect_service('web'), 'web:stable', ALL_CAPS, cfg, notifier, metrics)
    assert outcome is UpdateOutcome.FAILED
    assert len(client.ops('rollback')) == 1
    assert client.rollback_timeout == 45
    assert [n[2] for n in notifier.sent] == ['failure']
    assert metrics.rollbacks.value == 1
