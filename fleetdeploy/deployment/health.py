#!/usr/bin/env python3
"""
Health Verifier - functional probe against one representative target.

The probe runs curl on the target itself through the command service, so it
exercises the freshly restarted process behind its local web server.
"""

import shlex
import time

from .errors import CommandDispatchFailed, PartialFleetFailure
from .models import HealthResult
from .utils import PROBE_GRACE, get_budget


def parse_probe_output(output):
    """Split curl output ending in '\\n<http_code>' into (status_code, body)."""
    body, _, code = (output or '').rstrip().rpartition('\n')
    try:
        return int(code.strip()), body
    except ValueError:
        return None, output or ''


class HealthVerifier:

    def __init__(self, executor, sleep=time.sleep):
        self.executor = executor
        self.sleep = sleep

    def probe_command(self, endpoint_spec):
        timeout = int(get_budget(endpoint_spec, 'health')['timeout'])
        url = shlex.quote(endpoint_spec['url'])
        return f"curl -sS --max-time {timeout} -w '\\n%{{http_code}}' {url}"

    def probe(self, target, endpoint_spec):
        """Wait for the settle delay, then probe. Returns HealthResult (passed or failed)."""
        settle = endpoint_spec.get('settle_seconds', 10)
        if settle:
            print(f"Waiting {settle}s for services to settle before probing {target}...")
            self.sleep(settle)

        expect_status = int(endpoint_spec.get('expect_status', 200))
        expect_body = endpoint_spec.get('expect_body')

        budget = get_budget(endpoint_spec, 'health')
        try:
            invocation = self.executor.run(
                [target], [self.probe_command(endpoint_spec)],
                timeout=int(budget['timeout']) + PROBE_GRACE,
                poll_interval=budget['poll_interval'],
                max_attempts=budget['max_attempts'],
                label='health',
            )
        except (PartialFleetFailure, CommandDispatchFailed) as e:
            result = HealthResult(target, False, detail=f"Probe could not run: {e}")
            print(f"✗ Health check failed on {target}: {result.detail}")
            return result

        status_code, body = parse_probe_output(invocation.outputs.get(target, ''))
        if status_code != expect_status:
            result = HealthResult(target, False, status_code,
                                  f"Expected HTTP {expect_status}, got {status_code}")
        elif expect_body and expect_body not in body:
            result = HealthResult(target, False, status_code,
                                  f"Response body does not contain {expect_body!r}")
        else:
            result = HealthResult(target, True, status_code, 'OK')

        if result.passed:
            print(f"✓ Health check passed on {target} (HTTP {status_code})")
        else:
            print(f"✗ Health check failed on {target}: {result.detail}")
        return result
