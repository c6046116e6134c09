#!/usr/bin/env python3
"""
Backup & Rollback Controller.

Snapshots a target's live directory before it is overwritten and copies the
snapshot back on rollback. Snapshots live on the targets themselves; the
references to them are kept in the state directory, newest first.
"""

import shlex
from collections import defaultdict
from datetime import datetime
from pathlib import Path

from .errors import BackupFailed, CommandDispatchFailed, PartialFleetFailure, RollbackFailed
from .models import BackupRef, SUCCEEDED
from .utils import get_budget, load_yaml, save_yaml, new_timestamp

BACKUP_CREATED = 'BACKUP_CREATED'
BACKUP_EMPTY = 'BACKUP_EMPTY'


class BackupStore:
    """Backup references keyed by (target, created_at), stored one YAML file per target."""

    def __init__(self, state_dir):
        self.backup_dir = Path(state_dir) / "backups"

    def _path_for(self, target):
        safe_name = target.replace('/', '_').replace('\\', '_')
        return self.backup_dir / f"{safe_name}.yaml"

    def list(self, target):
        """All references for a target, newest first."""
        path = self._path_for(target)
        if not path.exists():
            return []
        entries = load_yaml(path) or []
        refs = [BackupRef.from_dict(entry) for entry in entries]
        return sorted(refs, key=lambda ref: (ref.created_at, ref.backup_id), reverse=True)

    def latest(self, target):
        refs = self.list(target)
        return refs[0] if refs else None

    def record(self, ref):
        refs = [r for r in self.list(ref.target) if r.backup_id != ref.backup_id]
        refs.append(ref)
        refs.sort(key=lambda r: (r.created_at, r.backup_id), reverse=True)
        save_yaml([r.to_dict() for r in refs], self._path_for(ref.target))

    def remove(self, target, backup_ids):
        remaining = [r for r in self.list(target) if r.backup_id not in set(backup_ids)]
        save_yaml([r.to_dict() for r in remaining], self._path_for(target))


class BackupController:

    def __init__(self, executor, store, now=datetime.now):
        self.executor = executor
        self.store = store
        self.now = now

    def _budget(self, group_config, operation):
        return get_budget(group_config.get(operation), operation)

    def _backup_command(self, live_dir, backup_root, backup_path):
        live, root, dest = shlex.quote(live_dir), shlex.quote(backup_root), shlex.quote(backup_path)
        return (
            f'mkdir -p {root} && '
            f'if [ -d {live} ] && [ -n "$(ls -A {live})" ]; '
            f'then cp -a {live} {dest} && echo {BACKUP_CREATED}; '
            f'else echo {BACKUP_EMPTY}; fi'
        )

    def _restore_commands(self, group_config, ref):
        live = shlex.quote(group_config['live_dir'])
        if ref.empty:
            commands = [f'rm -rf {live}']
            if group_config.get('stop_command'):
                commands.append(group_config['stop_command'])
            return commands

        backup = shlex.quote(ref.path)
        commands = [f'test -d {backup}', f'rm -rf {live}', f'cp -a {backup} {live}']
        if group_config.get('restart_command'):
            commands.append(group_config['restart_command'])
        return commands

    def backup_all(self, group, targets, group_config):
        """
        Snapshot every target in one invocation.

        Returns {target: BackupRef} only when every target confirmed either a
        snapshot or that it had nothing to back up; otherwise BackupFailed.
        """
        backup_id = new_timestamp(self.now())
        backup_path = f"{group_config['backup_dir'].rstrip('/')}/{backup_id}"
        command = self._backup_command(group_config['live_dir'], group_config['backup_dir'], backup_path)
        budget = self._budget(group_config, 'backup')

        try:
            invocation = self.executor.run(targets, [command], label='backup', **budget)
        except CommandDispatchFailed as e:
            raise BackupFailed(f"Backup dispatch failed: {e}", targets=targets, stage='backing_up')
        except PartialFleetFailure as e:
            invocation = e.invocation

        created_at = self.now().isoformat()
        refs, unconfirmed = {}, []
        for target in targets:
            output = invocation.outputs.get(target, '')
            if invocation.statuses.get(target) != SUCCEEDED:
                unconfirmed.append(target)
            elif BACKUP_CREATED in output:
                refs[target] = BackupRef(target, backup_id, group, backup_path, created_at)
            elif BACKUP_EMPTY in output:
                refs[target] = BackupRef(target, backup_id, group, None, created_at, empty=True)
            else:
                unconfirmed.append(target)

        for ref in refs.values():
            self.store.record(ref)

        if unconfirmed:
            raise BackupFailed(
                f"Backup not confirmed on {', '.join(sorted(unconfirmed))}",
                targets=sorted(unconfirmed), stage='backing_up'
            )

        print(f"[OK] Backed up {len(refs)} target(s) as {backup_id}")
        return refs

    def backup(self, group, target, group_config):
        return self.backup_all(group, [target], group_config)[target]

    def restore_all(self, group, targets, group_config, refs=None):
        """
        Restore every target from its backup (refs, or the newest stored one).

        Every target is attempted; if any cannot be restored RollbackFailed
        lists them all. Returns {target: 'restored'}.
        """
        refs = dict(refs or {})
        unresolved = []
        batches = defaultdict(list)
        for target in targets:
            ref = refs.get(target) or self.store.latest(target)
            if ref is None:
                print(f"ERROR: No backup reference for {target}")
                unresolved.append(target)
                continue
            batches[(ref.path, ref.empty)].append((target, ref))

        budget = self._budget(group_config, 'restore')
        outcomes, failed = {}, list(unresolved)
        for batch in batches.values():
            batch_targets = [target for target, _ in batch]
            commands = self._restore_commands(group_config, batch[0][1])
            try:
                self.executor.run(batch_targets, commands, label='restore', **budget)
            except PartialFleetFailure as e:
                failed.extend(e.targets)
                batch_targets = [t for t in batch_targets if t not in e.targets]
            except CommandDispatchFailed as e:
                print(f"ERROR: {e}")
                failed.extend(batch_targets)
                batch_targets = []
            except Exception as e:
                print(f"ERROR: restore on {', '.join(batch_targets)} aborted: {e}")
                failed.extend(batch_targets)
                batch_targets = []
            for target in batch_targets:
                outcomes[target] = 'restored'

        if failed:
            raise RollbackFailed(
                f"Restore failed on {', '.join(sorted(failed))}; manual intervention required",
                targets=sorted(failed), stage='rolling_back'
            )

        print(f"[OK] Restored {len(outcomes)} target(s) in '{group}'")
        return outcomes

    def restore(self, group, target, group_config, ref=None):
        refs = {target: ref} if ref else None
        return self.restore_all(group, [target], group_config, refs)[target]

    def prune(self, targets, group_config, keep):
        """Delete all but the newest `keep` snapshots per target. Returns the number removed."""
        budget = self._budget(group_config, 'restore')
        removed = 0
        for target in targets:
            stale = self.store.list(target)[keep:]
            if not stale:
                continue
            paths = [shlex.quote(ref.path) for ref in stale if ref.path]
            if paths:
                self.executor.run([target], [f"rm -rf {' '.join(paths)}"], label='prune', **budget)
            self.store.remove(target, [ref.backup_id for ref in stale])
            removed += len(stale)
            print(f"Pruned {len(stale)} backup(s) on {target}")
        return removed
