#!/usr/bin/env python3
"""
Records passed between the deployment components.

Everything here serializes to plain dicts so it can be written to the
YAML state directory and read back for audit.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

# Per-target command status
PENDING = 'pending'
IN_PROGRESS = 'in_progress'
SUCCEEDED = 'succeeded'
FAILED = 'failed'
CANCELLED = 'cancelled'
TIMED_OUT = 'timed_out'

COMMAND_STATUSES = (PENDING, IN_PROGRESS, SUCCEEDED, FAILED, CANCELLED, TIMED_OUT)
ACTIVE_STATUSES = (PENDING, IN_PROGRESS)
FAILURE_STATUSES = (FAILED, CANCELLED, TIMED_OUT)
TERMINAL_STATUSES = (SUCCEEDED,) + FAILURE_STATUSES

# Target liveness
HEALTHY = 'healthy'
NOT_READY = 'not-ready'

# Run verdicts
VERDICT_SUCCESS = 'success'
VERDICT_FAILED = 'failed'
VERDICT_ROLLED_BACK = 'rolled_back'
VERDICT_NO_OP = 'no-op'


def aggregate_status(statuses):
    """
    Collapse per-target statuses into one.

    Any failed, cancelled or timed-out target fails the whole invocation;
    anything still pending keeps it in progress.
    """
    values = list(statuses)
    if not values:
        return PENDING
    if any(status in FAILURE_STATUSES for status in values):
        return FAILED
    if all(status == SUCCEEDED for status in values):
        return SUCCEEDED
    return IN_PROGRESS


@dataclass
class GateSignal:
    """Upstream build/test result that triggered the run."""
    status: str = 'manual'
    run_ref: Optional[str] = None
    identity: Optional[str] = None

    def to_dict(self):
        return asdict(self)


@dataclass
class CommandInvocation:
    invocation_id: str
    label: str
    targets: List[str]
    commands: List[str]
    statuses: Dict[str, str] = field(default_factory=dict)
    outputs: Dict[str, str] = field(default_factory=dict)
    dispatched_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    poll_attempts: int = 0
    unstopped: List[str] = field(default_factory=list)

    @property
    def status(self):
        return aggregate_status(self.statuses.get(t, PENDING) for t in self.targets)

    @property
    def is_terminal(self):
        return all(self.statuses.get(t) in TERMINAL_STATUSES for t in self.targets)

    @property
    def failed_targets(self):
        return sorted(t for t in self.targets if self.statuses.get(t) in FAILURE_STATUSES)

    def to_dict(self):
        return {
            'invocation_id': self.invocation_id,
            'label': self.label,
            'targets': list(self.targets),
            'status': self.status,
            'statuses': dict(self.statuses),
            'dispatched_at': self.dispatched_at.isoformat() if self.dispatched_at else None,
            'completed_at': self.completed_at.isoformat() if self.completed_at else None,
            'poll_attempts': self.poll_attempts,
            'unstopped': list(self.unstopped),
        }


@dataclass
class BackupRef:
    """
    Pointer to a snapshot of one target's live directory.

    empty=True confirms there was nothing to back up (first deployment);
    restoring it clears the live directory.
    """
    target: str
    backup_id: str
    group: str
    path: Optional[str]
    created_at: str
    empty: bool = False

    def to_dict(self):
        return asdict(self)

    @classmethod
    def from_dict(cls, data):
        return cls(**data)


@dataclass
class HealthResult:
    target: str
    passed: bool
    status_code: Optional[int] = None
    detail: str = ''

    def to_dict(self):
        return asdict(self)


@dataclass
class DeploymentRun:
    run_id: str
    group: str
    trigger: GateSignal
    started_at: datetime
    artifact_version: Optional[str] = None
    state: str = 'idle'
    verdict: Optional[str] = None
    targets: List[str] = field(default_factory=list)
    invocations: List[CommandInvocation] = field(default_factory=list)
    backups: Dict[str, BackupRef] = field(default_factory=dict)
    health: Optional[HealthResult] = None
    failed_stage: Optional[str] = None
    failed_targets: List[str] = field(default_factory=list)
    error: Optional[str] = None
    escalation: Optional[str] = None
    transitions: List[dict] = field(default_factory=list)
    completed_at: Optional[datetime] = None

    @property
    def is_terminal(self):
        return self.verdict is not None

    def to_dict(self):
        return {
            'run_id': self.run_id,
            'group': self.group,
            'artifact_version': self.artifact_version,
            'state': self.state,
            'verdict': self.verdict,
            'trigger': self.trigger.to_dict(),
            'targets': list(self.targets),
            'invocations': [inv.to_dict() for inv in self.invocations],
            'backups': {t: ref.to_dict() for t, ref in self.backups.items()},
            'health': self.health.to_dict() if self.health else None,
            'failed_stage': self.failed_stage,
            'failed_targets': list(self.failed_targets),
            'error': self.error,
            'escalation': self.escalation,
            'transitions': list(self.transitions),
            'started_at': self.started_at.isoformat(),
            'completed_at': self.completed_at.isoformat() if self.completed_at else None,
        }
