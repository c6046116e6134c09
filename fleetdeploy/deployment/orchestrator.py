#!/usr/bin/env python3
"""
Deployment Orchestrator - the per-group deployment state machine.

    idle -> gated -> resolving -> backing_up -> deploying -> verifying -> succeeded
                         |             |            |            |
                       no_op         failed         +-> rolling_back -> rolled_back | failed

One parametric machine serves every tier; command sets and probe specs come
from groups.<name> in the deployment config. Runs for one group are
serialized through the ledger lock.
"""

import time
import uuid
from datetime import datetime

from .commands import RemoteCommandExecutor
from .errors import (
    ArtifactNotFound, BackupFailed, DeploymentError, DeploymentInProgress,
    GateRejected, HealthCheckFailed, NoEligibleTargets, RollbackFailed
)
from .health import HealthVerifier
from .models import (
    DeploymentRun, GateSignal, VERDICT_SUCCESS, VERDICT_FAILED,
    VERDICT_ROLLED_BACK, VERDICT_NO_OP
)
from .notify import build_notification, get_notifier
from .publisher import ArtifactPublisher
from .resolver import FleetResolver
from .rollback import BackupController, BackupStore
from .runs import RunLedger
from .utils import get_budget, get_group_config, render_commands
from ..executors import get_command_service
from ..registry import get_fleet_registry
from ..storage import get_storage_backend

IDLE = 'idle'
GATED = 'gated'
RESOLVING = 'resolving'
BACKING_UP = 'backing_up'
DEPLOYING = 'deploying'
VERIFYING = 'verifying'
SUCCEEDED = 'succeeded'
ROLLING_BACK = 'rolling_back'
ROLLED_BACK = 'rolled_back'
FAILED = 'failed'
NO_OP = 'no_op'

TRANSITIONS = {
    IDLE: (GATED,),
    GATED: (RESOLVING, FAILED),
    RESOLVING: (BACKING_UP, NO_OP, FAILED),
    BACKING_UP: (DEPLOYING, FAILED),
    DEPLOYING: (VERIFYING, ROLLING_BACK),
    VERIFYING: (SUCCEEDED, ROLLING_BACK),
    ROLLING_BACK: (ROLLED_BACK, FAILED),
}

VERDICTS = {
    SUCCEEDED: VERDICT_SUCCESS,
    ROLLED_BACK: VERDICT_ROLLED_BACK,
    FAILED: VERDICT_FAILED,
    NO_OP: VERDICT_NO_OP,
}


class DeploymentOrchestrator:

    def __init__(self, config, publisher, resolver, executor, backups, health,
                 ledger, notifier, sleep=time.sleep, now=datetime.now):
        self.config = config
        self.publisher = publisher
        self.resolver = resolver
        self.executor = executor
        self.backups = backups
        self.health = health
        self.ledger = ledger
        self.notifier = notifier
        self.sleep = sleep
        self.now = now

    # -- gate and single-flight -------------------------------------------

    def check_gate(self, group, trigger):
        """Raise GateRejected unless the trigger licenses a deployment under the gate policy."""
        gate = self.config.get('gate', {})
        if trigger.status == 'success':
            return
        if trigger.status == 'manual' and gate.get('allow_manual', True):
            return
        if trigger.status == 'failure' and gate.get('allow_failure', False):
            return
        raise GateRejected(
            f"Build signal '{trigger.status}' for {trigger.run_ref or 'unknown run'} "
            f"does not permit deploying '{group}'"
        )

    def _acquire(self, group, holder_id):
        deployment = self.config.get('deployment', {})
        policy = deployment.get('on_conflict', 'reject')
        queue_timeout = deployment.get('queue_timeout', 1800)
        interval = deployment.get('queue_poll_interval', 10)

        waited = 0
        while not self.ledger.try_acquire(group, holder_id):
            active = self.ledger.active_run(group)
            if policy != 'wait' or waited >= queue_timeout:
                raise DeploymentInProgress(f"Run {active} is already active for '{group}'")
            print(f"Waiting for active run {active} on '{group}' ({waited}s/{queue_timeout}s)...")
            self.sleep(interval)
            waited += interval

    # -- state bookkeeping ------------------------------------------------

    def _transition(self, run, state):
        if state not in TRANSITIONS.get(run.state, ()):
            raise RuntimeError(f"Illegal transition {run.state} -> {state} for run {run.run_id}")
        at = self.now()
        run.transitions.append({'state': state, 'at': at.isoformat()})
        print(f"[{run.group}] {run.state} -> {state}")
        run.state = state
        if state in VERDICTS:
            run.verdict = VERDICTS[state]
            run.completed_at = at

    def _record_failure(self, run, error):
        run.failed_stage = getattr(error, 'stage', None) or run.state
        run.failed_targets = sorted(getattr(error, 'targets', []) or [])
        run.error = str(error)
        print(f"ERROR: {run.failed_stage} failed: {error}")

    def _fail(self, run, error):
        self._record_failure(run, error)
        self._transition(run, FAILED)

    # -- stages -----------------------------------------------------------

    def _stage_artifact(self, run, artifact, version):
        if artifact is not None:
            run.artifact_version = self.publisher.stage(run.group, artifact)
            return
        if not self.publisher.storage.exists(self.publisher.version_key(run.group, version)):
            raise ArtifactNotFound(f"No artifact for '{run.group}' version {version}")
        run.artifact_version = version

    def _deploy(self, run, group_config):
        deploy = group_config['deploy']
        budget = get_budget(deploy, 'deploy')
        commands = render_commands(
            deploy['commands'],
            group=run.group,
            version=run.artifact_version,
            artifact_url=self.publisher.artifact_url(run.group, run.artifact_version),
            artifact_name=self.publisher.artifact_name,
            live_dir=group_config['live_dir'],
        )
        try:
            invocation = self.executor.run(
                run.targets, commands,
                timeout=budget['timeout'],
                poll_interval=budget['poll_interval'],
                max_attempts=budget['max_attempts'],
                label='deploy',
            )
        except DeploymentError as e:
            if getattr(e, 'invocation', None) is not None:
                run.invocations.append(e.invocation)
            raise
        run.invocations.append(invocation)

    def _verify(self, run, group_config):
        representative = run.targets[0]
        run.health = self.health.probe(representative, group_config['health'])
        if not run.health.passed:
            raise HealthCheckFailed(run.health.detail, targets=[representative])

    def _rollback(self, run, group_config, error):
        self._record_failure(run, error)
        self._transition(run, ROLLING_BACK)

        # A target whose command could not be stopped would race its own restore
        unstopped = sorted({t for inv in run.invocations for t in inv.unstopped})
        stuck = list(unstopped)
        restorable = [t for t in run.targets if t not in unstopped]
        if restorable:
            try:
                self.backups.restore_all(run.group, restorable, group_config, run.backups)
            except RollbackFailed as e:
                stuck.extend(e.targets)
                run.error = f"{run.error}; {e}"

        if stuck:
            run.escalation = f"Rollback incomplete on {', '.join(sorted(set(stuck)))}; manual intervention required"
            if unstopped:
                run.escalation += f" (commands may still be running on {', '.join(unstopped)})"
            self._transition(run, FAILED)
            return
        self._transition(run, ROLLED_BACK)

    def _execute(self, run, group_config, artifact, version):
        self._transition(run, GATED)
        try:
            self._stage_artifact(run, artifact, version)
        except (DeploymentError, OSError) as e:
            return self._fail(run, e)

        self._transition(run, RESOLVING)
        try:
            targets = self.resolver.resolve(run.group)
            if not targets:
                raise NoEligibleTargets(f"No eligible targets in '{run.group}'", stage=RESOLVING)
        except NoEligibleTargets as e:
            print(f"{e}; nothing to do")
            return self._transition(run, NO_OP)
        except Exception as e:
            return self._fail(run, e)
        run.targets = targets

        self._transition(run, BACKING_UP)
        try:
            run.backups = self.backups.backup_all(run.group, targets, group_config)
        except BackupFailed as e:
            return self._fail(run, e)

        # From here on the fleet may be mutated: every failure goes through rollback
        self._transition(run, DEPLOYING)
        try:
            self._deploy(run, group_config)
            self._transition(run, VERIFYING)
            self._verify(run, group_config)
            self.publisher.promote(run.group, run.artifact_version)
        except Exception as e:
            return self._rollback(run, group_config, e)

        self._transition(run, SUCCEEDED)

    # -- entry points -----------------------------------------------------

    def deploy(self, group, artifact=None, version=None, trigger=None):
        """
        Run one deployment of `group` to completion.

        Pass either the artifact bytes (staged as a new version) or the id of
        an already staged version. Returns the finalized DeploymentRun.

        Raises:
            GateRejected: trigger does not permit a deployment (no run is created)
            DeploymentInProgress: another run holds the group (no run is created)
        """
        if (artifact is None) == (version is None):
            raise ValueError("Pass exactly one of artifact or version")
        trigger = trigger or GateSignal()
        group_config = get_group_config(self.config, group)
        self.check_gate(group, trigger)

        run = DeploymentRun(run_id=uuid.uuid4().hex[:12], group=group, trigger=trigger, started_at=self.now())
        self._acquire(group, run.run_id)
        print("=" * 60)
        print(f"DEPLOYMENT {run.run_id} ({group.upper()})")
        print("=" * 60)

        try:
            self.ledger.save(run)
            self._execute(run, group_config, artifact, version)
        except Exception as e:
            if not run.is_terminal:
                print(f"ERROR: run {run.run_id} aborted in {run.state}: {e}")
                run.failed_stage = run.failed_stage or run.state
                run.error = str(e)
                run.state = FAILED
                run.verdict = VERDICT_FAILED
                run.completed_at = self.now()
        finally:
            try:
                self.ledger.save(run)
            finally:
                try:
                    self.ledger.release(group, run.run_id)
                finally:
                    self.notifier.notify(build_notification(run))

        return run

    def rollback(self, group):
        """Manual rollback: restore every healthy target in `group` from its newest backup."""
        group_config = get_group_config(self.config, group)
        holder_id = f"rollback-{uuid.uuid4().hex[:8]}"
        self._acquire(group, holder_id)
        try:
            targets = self.resolver.resolve(group)
            if not targets:
                print(f"No eligible targets in '{group}'; nothing to roll back")
                return {}
            return self.backups.restore_all(group, targets, group_config)
        finally:
            self.ledger.release(group, holder_id)

    def prune_backups(self, group, keep):
        group_config = get_group_config(self.config, group)
        holder_id = f"prune-{uuid.uuid4().hex[:8]}"
        self._acquire(group, holder_id)
        try:
            return self.backups.prune(self.resolver.resolve(group), group_config, keep)
        finally:
            self.ledger.release(group, holder_id)


def build_orchestrator(config, sleep=time.sleep, now=datetime.now):
    """Wire the configured backends into an orchestrator."""
    deployment = config['deployment']
    state_dir = deployment.get('state_dir', './state')

    executor = RemoteCommandExecutor(
        get_command_service(config), sleep=sleep, now=now,
        dispatch_retries=deployment.get('dispatch_retries', 3),
        retry_delay=deployment.get('dispatch_retry_delay', 5),
    )
    publisher = ArtifactPublisher(
        get_storage_backend(config), deployment.get('artifact_name', 'build.tar.gz'), now=now
    )
    return DeploymentOrchestrator(
        config,
        publisher=publisher,
        resolver=FleetResolver(get_fleet_registry(config)),
        executor=executor,
        backups=BackupController(executor, BackupStore(state_dir), now=now),
        health=HealthVerifier(executor, sleep=sleep),
        ledger=RunLedger(state_dir),
        notifier=get_notifier(config),
        sleep=sleep,
        now=now,
    )
