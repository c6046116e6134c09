#!/usr/bin/env python3
"""
Remote Command Executor.

Wraps a command service (local, SSH or SSM) with bounded dispatch retries
and a bounded polling loop. The wait is a plain blocking call; sleep and
now are injectable so tests drive it with a fake clock.
"""

import time
from collections import Counter
from datetime import datetime

from .errors import CommandDispatchFailed, CommandTimeout, PartialFleetFailure
from .models import (
    CommandInvocation, COMMAND_STATUSES, PENDING, TERMINAL_STATUSES,
    ACTIVE_STATUSES, TIMED_OUT, SUCCEEDED
)


class RemoteCommandExecutor:

    def __init__(self, service, sleep=time.sleep, now=datetime.now, dispatch_retries=3, retry_delay=5):
        self.service = service
        self.sleep = sleep
        self.now = now
        self.dispatch_retries = dispatch_retries
        self.retry_delay = retry_delay
        self._invocations = {}

    def dispatch(self, targets, commands, timeout, label='command'):
        """Send a command set without waiting for it. Returns the CommandInvocation."""
        attempts = self.dispatch_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                invocation_id = self.service.send(list(targets), list(commands), timeout)
                break
            except CommandDispatchFailed as e:
                print(f"ERROR: Dispatch of {label} failed (attempt {attempt}/{attempts}): {e}")
                if attempt == attempts:
                    raise CommandDispatchFailed(
                        f"Dispatch of {label} failed after {attempts} attempts: {e}",
                        targets=targets
                    )
                self.sleep(self.retry_delay)

        invocation = CommandInvocation(
            invocation_id=invocation_id,
            label=label,
            targets=list(targets),
            commands=list(commands),
            statuses={t: PENDING for t in targets},
            dispatched_at=self.now(),
        )
        self._invocations[invocation_id] = invocation
        print(f"Dispatched {label} to {len(targets)} target(s) (invocation {invocation_id})")
        return invocation

    def poll(self, invocation_id):
        """Refresh and return {target: status}. Terminal statuses never change once seen."""
        invocation = self._invocations[invocation_id]
        reported = self.service.get_status(invocation_id)

        for target in invocation.targets:
            if invocation.statuses.get(target) in TERMINAL_STATUSES:
                continue
            result = reported.get(target, {})
            status = result.get('status', PENDING)
            if status not in COMMAND_STATUSES:
                raise ValueError(f"Command service reported unknown status '{status}' for {target}")
            invocation.statuses[target] = status
            if result.get('output'):
                invocation.outputs[target] = result['output']

        return dict(invocation.statuses)

    def wait(self, invocation, poll_interval, max_attempts):
        """
        Poll until every target is terminal or the attempt budget runs out.
        Targets still pending or in progress after the budget are cancelled,
        then marked timed_out; any the service cannot confirm stopped are
        listed in invocation.unstopped.
        """
        for attempt in range(1, max_attempts + 1):
            self.poll(invocation.invocation_id)
            invocation.poll_attempts = attempt
            counts = Counter(invocation.statuses.values())
            summary = ', '.join(f"{n} {s}" for s, n in sorted(counts.items()))
            print(f"  [{invocation.label} {attempt}/{max_attempts}] {summary}")
            if invocation.is_terminal:
                break
            if attempt < max_attempts:
                self.sleep(poll_interval)
        else:
            active = [t for t in invocation.targets if invocation.statuses.get(t) in ACTIVE_STATUSES]
            invocation.unstopped = self.cancel(invocation, active, poll_interval, max_attempts)
            for target in active:
                invocation.statuses[target] = TIMED_OUT

        invocation.completed_at = self.now()
        return invocation

    def cancel(self, invocation, targets, poll_interval, max_attempts):
        """Stop targets still running an invocation. Returns the ones not confirmed stopped."""
        print(f"  Cancelling {invocation.label} on {', '.join(targets)}")
        try:
            self.service.cancel(invocation.invocation_id, targets)
        except CommandDispatchFailed as e:
            print(f"ERROR: {e}")
            return sorted(targets)

        remaining = list(targets)
        for attempt in range(1, max_attempts + 1):
            reported = self.service.get_status(invocation.invocation_id)
            remaining = [t for t in remaining
                         if reported.get(t, {}).get('status', PENDING) in ACTIVE_STATUSES]
            if not remaining:
                break
            if attempt < max_attempts:
                self.sleep(poll_interval)

        if remaining:
            print(f"ERROR: {invocation.label} may still be running on {', '.join(remaining)}")
        return sorted(remaining)

    def run(self, targets, commands, timeout, poll_interval, max_attempts, label='command'):
        """
        Dispatch, wait, and enforce all-or-nothing success.

        Raises:
            CommandDispatchFailed: transport failure after retries
            CommandTimeout: a target never reached a terminal status
            PartialFleetFailure: any target failed or was cancelled
        """
        invocation = self.dispatch(targets, commands, timeout, label=label)
        self.wait(invocation, poll_interval, max_attempts)

        if invocation.status == SUCCEEDED:
            return invocation

        failed = invocation.failed_targets
        timed_out = [t for t in failed if invocation.statuses[t] == TIMED_OUT]
        details = ', '.join(f"{t}={invocation.statuses[t]}" for t in failed)
        if timed_out and len(timed_out) == len(failed):
            error = CommandTimeout(f"{label} timed out on {details}", targets=failed)
        else:
            error = PartialFleetFailure(f"{label} failed on {details}", targets=failed)
        error.invocation = invocation
        raise error
