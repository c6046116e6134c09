#!/usr/bin/env python3
"""
Base interface for remote command services.

A command service accepts a command set for a list of targets, returns an
invocation id immediately and reports per-target status when polled.
"""

import os
import signal
import subprocess
import threading
import uuid
from concurrent.futures import ThreadPoolExecutor, wait

from ..deployment.errors import CommandDispatchFailed
from ..deployment.models import (
    PENDING, IN_PROGRESS, SUCCEEDED, FAILED, CANCELLED, TIMED_OUT
)


class CommandService:
    """Interface for remote command services (local mock, SSH or SSM)."""

    def send(self, targets, commands, timeout):
        """
        Dispatch a command set to every target.

        Args:
            targets: List of target ids
            commands: List of shell commands, run in order, stopping at the first failure
            timeout: Execution budget in seconds per target

        Returns:
            Invocation id to pass to get_status()
        """
        raise NotImplementedError("Subclasses must implement send()")

    def get_status(self, invocation_id):
        """Return {target_id: {'status': ..., 'output': ...}} for an invocation."""
        raise NotImplementedError("Subclasses must implement get_status()")

    def cancel(self, invocation_id, targets):
        """Ask the targets to stop running an invocation. Poll get_status() to see them stop."""
        raise NotImplementedError("Subclasses must implement cancel()")

    def shutdown(self):
        """Release local resources (thread pools)."""


class ThreadedCommandService(CommandService):
    """
    Fans a command set out to targets on a thread pool.

    Subclasses only implement command_for(); send() never blocks on it.
    Each command runs in its own process group so cancel() can kill
    everything it started.
    """

    def __init__(self, max_workers=10):
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix='fleetdeploy')
        self._invocations = {}
        self._processes = {}
        self._cancelled = set()
        self._lock = threading.Lock()

    def check_transport(self, targets):
        """Raise before anything is queued if the transport cannot be used."""

    def command_for(self, target, script):
        """Return (argv, env, cwd) that runs script on one target."""
        raise NotImplementedError("Subclasses must implement command_for()")

    def _kill(self, process):
        try:
            os.killpg(process.pid, signal.SIGKILL)
        except ProcessLookupError:
            pass

    def _execute(self, invocation_id, target, script, timeout):
        key = (invocation_id, target)
        try:
            argv, env, cwd = self.command_for(target, script)
            with self._lock:
                if invocation_id in self._cancelled:
                    return CANCELLED, "Cancelled before start"
                process = subprocess.Popen(
                    argv, env=env, cwd=cwd, stdout=subprocess.PIPE, stderr=subprocess.PIPE,
                    text=True, start_new_session=True
                )
                self._processes[key] = process
        except (OSError, ValueError, RuntimeError) as e:
            return FAILED, str(e)

        try:
            stdout, stderr = process.communicate(timeout=timeout)
        except subprocess.TimeoutExpired:
            self._kill(process)
            process.communicate()
            return TIMED_OUT, f"Timed out after {timeout}s"
        finally:
            with self._lock:
                self._processes.pop(key, None)

        if invocation_id in self._cancelled:
            return CANCELLED, (stdout + stderr).strip()
        if process.returncode != 0:
            return FAILED, (stdout + stderr).strip()
        return SUCCEEDED, stdout.strip()

    def send(self, targets, commands, timeout):
        try:
            self.check_transport(targets)
        except (OSError, ValueError) as e:
            raise CommandDispatchFailed(f"Cannot dispatch commands: {e}", targets=targets)

        script = ' && '.join(commands)
        invocation_id = uuid.uuid4().hex
        self._invocations[invocation_id] = {
            target: self._pool.submit(self._execute, invocation_id, target, script, timeout)
            for target in targets
        }
        return invocation_id

    def get_status(self, invocation_id):
        """Per-target status. An invocation is forgotten once every target has finished."""
        if invocation_id not in self._invocations:
            raise KeyError(f"Unknown invocation: {invocation_id}")

        futures = self._invocations[invocation_id]
        statuses = {}
        for target, future in futures.items():
            if future.cancelled():
                statuses[target] = {'status': CANCELLED, 'output': 'Cancelled before start'}
            elif future.done():
                status, output = future.result()
                statuses[target] = {'status': status, 'output': output}
            elif future.running():
                statuses[target] = {'status': IN_PROGRESS, 'output': ''}
            else:
                statuses[target] = {'status': PENDING, 'output': ''}

        if all(future.done() for future in futures.values()):
            del self._invocations[invocation_id]
            with self._lock:
                self._cancelled.discard(invocation_id)
        return statuses

    def cancel(self, invocation_id, targets):
        """Kill the targets' processes and block until their workers have returned."""
        futures = self._invocations.get(invocation_id)
        if futures is None:
            return
        with self._lock:
            self._cancelled.add(invocation_id)
            processes = [p for (inv, target), p in self._processes.items()
                         if inv == invocation_id and target in targets]
        for target in targets:
            futures[target].cancel()
        for process in processes:
            self._kill(process)
        wait([futures[target] for target in targets])

    def shutdown(self):
        self._pool.shutdown(wait=True)
