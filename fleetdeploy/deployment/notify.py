#!/usr/bin/env python3
"""
Notification sinks - one record per terminal DeploymentRun.
"""

import json
import os
import subprocess
import sys

from .models import VERDICT_SUCCESS, VERDICT_NO_OP


def build_notification(run):
    """Structured record describing a finished run."""
    record = {
        'run_id': run.run_id,
        'group': run.group,
        'artifact_version': run.artifact_version,
        'verdict': run.verdict,
        'target_count': len(run.targets),
        'triggering_identity': run.trigger.identity,
        'trigger_ref': run.trigger.run_ref,
        'started_at': run.started_at.isoformat(),
        'completed_at': run.completed_at.isoformat() if run.completed_at else None,
    }
    if run.verdict not in (VERDICT_SUCCESS, VERDICT_NO_OP):
        record['failed_stage'] = run.failed_stage
        record['failed_targets'] = list(run.failed_targets)
        record['error'] = run.error
    if run.escalation:
        record['escalation'] = run.escalation
    return record


def format_summary(record):
    lines = [
        f"Deployment {record['verdict'].upper()}: {record['group']} "
        f"version {record['artifact_version'] or 'n/a'} "
        f"({record['target_count']} target(s))",
        f"  - Run: {record['run_id']}",
        f"  - Triggered by: {record['triggering_identity'] or 'unknown'}"
        + (f" ({record['trigger_ref']})" if record.get('trigger_ref') else ""),
    ]
    if record.get('failed_stage'):
        lines.append(f"  - Failed stage: {record['failed_stage']}")
    if record.get('failed_targets'):
        lines.append(f"  - Failed targets: {', '.join(record['failed_targets'])}")
    if record.get('error'):
        lines.append(f"  - Error: {record['error']}")
    if record.get('escalation'):
        lines.append(f"  - ESCALATION: {record['escalation']}")
    return '\n'.join(lines)


class ConsoleNotifier:
    """Prints the summary block to stdout (CI job log)."""

    def notify(self, record):
        print("=" * 60)
        print(format_summary(record))
        print("=" * 60)


class WebhookNotifier:
    """Posts the record as JSON to a chat/webhook endpoint using curl."""

    def __init__(self, config):
        self.url_env = config.get('webhook_url_env', 'DEPLOY_WEBHOOK_URL')
        self.timeout = config.get('timeout', 10)

    def notify(self, record):
        webhook_url = os.environ.get(self.url_env)
        if not webhook_url:
            print(f"ERROR: {self.url_env} not set; notification not sent")
            print(format_summary(record))
            return False

        payload = json.dumps({'text': format_summary(record), 'deployment': record})
        cmd = [
            'curl', '-sS', '--fail', '--max-time', str(self.timeout),
            '-X', 'POST', '-H', 'Content-Type: application/json',
            '--data', payload, webhook_url
        ]
        result = subprocess.run(cmd, capture_output=True, text=True)
        if result.returncode != 0:
            print(f"ERROR: Webhook notification failed: {result.stderr.strip()}")
            print(format_summary(record))
            return False

        print(f"[OK] Notification sent ({record['verdict']})")
        return True


def get_notifier(config):
    """Factory function to get the configured notification sink."""
    notifications = config.get('notifications', {})
    backend = notifications.get('backend', 'console')

    if backend == 'console':
        return ConsoleNotifier()
    elif backend == 'webhook':
        return WebhookNotifier(notifications)
    else:
        print(f"ERROR: Unknown notification backend: {backend}")
        sys.exit(1)
