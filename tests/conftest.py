"""Shared fixtures: a scripted command service, a fake clock and a wired orchestrator."""

from datetime import datetime, timedelta

import pytest

from fleetdeploy.deployment.commands import RemoteCommandExecutor
from fleetdeploy.deployment.errors import CommandDispatchFailed
from fleetdeploy.deployment.health import HealthVerifier
from fleetdeploy.deployment.models import CANCELLED, IN_PROGRESS, SUCCEEDED
from fleetdeploy.deployment.orchestrator import DeploymentOrchestrator
from fleetdeploy.deployment.publisher import ArtifactPublisher
from fleetdeploy.deployment.resolver import FleetResolver
from fleetdeploy.deployment.rollback import BACKUP_CREATED, BackupController, BackupStore
from fleetdeploy.deployment.runs import RunLedger
from fleetdeploy.executors.base import CommandService
from fleetdeploy.registry.static import StaticRegistry
from fleetdeploy.storage.local import LocalStorage

LIVE_DIR = '/srv/app/live'
BACKUP_DIR = '/srv/app/backups'

DEFAULT_OUTPUT = {
    'backup': BACKUP_CREATED,
    'health': 'hello\n200',
    'deploy': 'deployed',
    'restore': 'restored',
    'prune': '',
}


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeClock:
    """Every now() call moves time forward a millisecond; sleep() only advances time."""

    def __init__(self, start=datetime(2025, 1, 1, 12, 0, 0)):
        self.current = start
        self.sleeps = []

    def now(self):
        self.current += timedelta(milliseconds=1)
        return self.current

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.current += timedelta(seconds=seconds)


class FakeCommandService(CommandService):
    """
    Records every dispatch and answers polls from a script.

    outcomes maps a command kind (backup, deploy, health, restore, prune) to
    {target: (status, output)}; unlisted targets succeed with DEFAULT_OUTPUT.
    Kinds in slow_kinds stay in progress until cancelled; with stuck set,
    cancel() is accepted but never takes effect.
    """

    def __init__(self):
        self.calls = []
        self.outcomes = {}
        self.send_failures = 0
        self.pending_polls = 0
        self.slow_kinds = set()
        self.stuck = False
        self.cancels = []
        self._invocations = {}

    def classify(self, commands):
        script = ' && '.join(commands)
        if BACKUP_CREATED in script:
            return 'backup'
        if script.startswith('curl '):
            return 'health'
        if 'echo deploying' in script:
            return 'deploy'
        if 'test -d' in script or f'rm -rf {LIVE_DIR}' in script:
            return 'restore'
        return 'prune'

    def send(self, targets, commands, timeout):
        if self.send_failures:
            self.send_failures -= 1
            raise CommandDispatchFailed("connection refused", targets=targets)
        kind = self.classify(commands)
        invocation_id = f"{kind}-{len(self.calls)}"
        self.calls.append({'id': invocation_id, 'kind': kind, 'targets': list(targets),
                           'commands': list(commands), 'timeout': timeout})
        self._invocations[invocation_id] = {'kind': kind, 'targets': list(targets), 'polls': 0,
                                            'cancelled': set()}
        return invocation_id

    def get_status(self, invocation_id):
        invocation = self._invocations[invocation_id]
        invocation['polls'] += 1
        kind = invocation['kind']
        running = invocation['polls'] <= self.pending_polls or kind in self.slow_kinds

        scripted = self.outcomes.get(kind, {})
        statuses = {}
        for target in invocation['targets']:
            if target in invocation['cancelled'] and not self.stuck:
                statuses[target] = {'status': CANCELLED, 'output': ''}
                continue
            if running:
                statuses[target] = {'status': IN_PROGRESS, 'output': ''}
                continue
            status, output = scripted.get(target, (SUCCEEDED, DEFAULT_OUTPUT[kind]))
            statuses[target] = {'status': status, 'output': output}
        return statuses

    def cancel(self, invocation_id, targets):
        self.cancels.append({'id': invocation_id, 'targets': list(targets), 'after_calls': len(self.calls)})
        self._invocations[invocation_id]['cancelled'].update(targets)

    def kinds(self):
        return [call['kind'] for call in self.calls]

    def calls_of(self, kind):
        return [call for call in self.calls if call['kind'] == kind]


class RecordingNotifier:

    def __init__(self):
        self.records = []

    def notify(self, record):
        self.records.append(record)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


def _group(targets):
    return {
        'registry': {'targets': targets},
        'live_dir': LIVE_DIR,
        'backup_dir': BACKUP_DIR,
        'restart_command': 'systemctl restart app',
        'stop_command': 'systemctl stop app',
        'deploy': {
            'commands': ['echo deploying {version} from {artifact_url}'],
            'timeout': 2, 'poll_interval': 1, 'max_attempts': 3,
        },
        'backup': {'timeout': 2, 'poll_interval': 1, 'max_attempts': 3},
        'restore': {'timeout': 2, 'poll_interval': 1, 'max_attempts': 3},
        'health': {
            'url': 'http://localhost/', 'expect_body': 'hello', 'timeout': 5,
            'settle_seconds': 2, 'poll_interval': 5, 'max_attempts': 5,
        },
    }


@pytest.fixture
def config(tmp_path):
    return {
        'deployment': {
            'storage_backend': 'local',
            'command_backend': 'local',
            'fleet_backend': 'static',
            'state_dir': str(tmp_path / 'state'),
            'on_conflict': 'reject',
            'dispatch_retries': 2,
            'dispatch_retry_delay': 1,
        },
        'storage': {'root': str(tmp_path / 'store')},
        'local': {'workspace_root': str(tmp_path / 'fleet')},
        'groups': {
            'web': _group(['web-2', 'web-1', {'id': 'web-3', 'state': 'not-ready'}]),
            'empty': _group([]),
        },
    }


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def service():
    return FakeCommandService()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def executor(service, clock):
    return RemoteCommandExecutor(service, sleep=clock.sleep, now=clock.now,
                                 dispatch_retries=2, retry_delay=1)


@pytest.fixture
def storage(config):
    return LocalStorage(config['storage'])


@pytest.fixture
def publisher(storage, clock):
    return ArtifactPublisher(storage, now=clock.now)


@pytest.fixture
def backup_store(config):
    return BackupStore(config['deployment']['state_dir'])


@pytest.fixture
def backups(executor, backup_store, clock):
    return BackupController(executor, backup_store, now=clock.now)


@pytest.fixture
def ledger(config):
    return RunLedger(config['deployment']['state_dir'])


@pytest.fixture
def orchestrator(config, publisher, executor, backups, ledger, notifier, clock):
    return DeploymentOrchestrator(
        config,
        publisher=publisher,
        resolver=FleetResolver(StaticRegistry(config)),
        executor=executor,
        backups=backups,
        health=HealthVerifier(executor, sleep=clock.sleep),
        ledger=ledger,
        notifier=notifier,
        sleep=clock.sleep,
        now=clock.now,
    )
