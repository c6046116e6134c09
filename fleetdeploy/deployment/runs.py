#!/usr/bin/env python3
"""
Run ledger: single-flight locks and DeploymentRun history.

Layout under the state directory:
    locks/<group>.lock                        id of the active run, if any
    runs/<group>/<startedAt>-<runId>.yaml     one record per run
"""

import os
from pathlib import Path

from .utils import load_yaml, save_yaml


class RunLedger:

    def __init__(self, state_dir):
        self.state_dir = Path(state_dir)
        self.runs_dir = self.state_dir / "runs"
        self.locks_dir = self.state_dir / "locks"

    def _lock_path(self, group):
        return self.locks_dir / f"{group}.lock"

    def try_acquire(self, group, run_id):
        """Take the group's lock. Returns False if another run holds it."""
        self.locks_dir.mkdir(parents=True, exist_ok=True)
        # The lock appears with its holder id already written: no reader sees it empty
        temp_path = self.locks_dir / f"{group}.{run_id}.tmp"
        temp_path.write_text(run_id)
        try:
            os.link(str(temp_path), str(self._lock_path(group)))
        except FileExistsError:
            return False
        finally:
            temp_path.unlink()
        return True

    def active_run(self, group):
        lock_path = self._lock_path(group)
        try:
            return lock_path.read_text().strip() or None
        except FileNotFoundError:
            return None

    def release(self, group, run_id):
        """Drop the lock if run_id still holds it."""
        if self.active_run(group) == run_id:
            self._lock_path(group).unlink()

    def force_release(self, group):
        """Manual recovery after a crashed orchestrator. Returns the run id that held the lock."""
        holder = self.active_run(group)
        if holder is not None:
            self._lock_path(group).unlink()
        return holder

    def _run_path(self, run):
        started = run.started_at.strftime('%Y%m%dT%H%M%S%f')
        return self.runs_dir / run.group / f"{started}-{run.run_id}.yaml"

    def save(self, run):
        return save_yaml(run.to_dict(), self._run_path(run))

    def history(self, group, limit=None):
        """Run records for a group, newest first."""
        group_dir = self.runs_dir / group
        if not group_dir.exists():
            return []
        paths = sorted(group_dir.glob('*.yaml'), reverse=True)
        if limit:
            paths = paths[:limit]
        return [load_yaml(path) for path in paths]

    def load(self, group, run_id):
        group_dir = self.runs_dir / group
        for path in group_dir.glob(f'*-{run_id}.yaml'):
            return load_yaml(path)
        return None
