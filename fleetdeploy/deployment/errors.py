#!/usr/bin/env python3
"""
Deployment error taxonomy.

Errors raised before the Deploying stage abort the run without touching the
fleet. Errors raised during or after Deploying send the run through rollback.
"""


class DeploymentError(RuntimeError):
    """Base class for all orchestration failures."""

    def __init__(self, message, targets=None, stage=None):
        super().__init__(message)
        self.targets = list(targets or [])
        self.stage = stage


class ConfigError(DeploymentError):
    """Configuration is missing or fails schema validation."""


class GateRejected(DeploymentError):
    """Upstream build/test signal did not license a deployment."""


class DeploymentInProgress(DeploymentError):
    """Another run for the same group is still active."""


class NoEligibleTargets(DeploymentError):
    """Fleet resolved to zero healthy targets (terminal no-op, not a failure)."""


class ArtifactNotFound(DeploymentError):
    """Requested artifact key does not exist in the object store."""


class ArtifactPublishFailed(DeploymentError):
    """A versioned or "current" artifact write failed."""


class BackupFailed(DeploymentError):
    """At least one target could not be snapshotted."""


class CommandDispatchFailed(DeploymentError):
    """Transport-level failure sending a command set."""


class PartialFleetFailure(DeploymentError):
    """At least one target reported failed or cancelled."""


class CommandTimeout(PartialFleetFailure):
    """Targets were still pending or in progress after the polling budget."""


class HealthCheckFailed(DeploymentError):
    """Representative target did not pass the functional probe."""


class RollbackFailed(DeploymentError):
    """Restore failed; manual intervention required."""
