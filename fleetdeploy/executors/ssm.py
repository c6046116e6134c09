#!/usr/bin/env python3
"""
AWS Systems Manager command service.

Targets are EC2 instance ids; command sets run through the
AWS-RunShellScript document and are polled with ListCommandInvocations.
"""

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .base import CommandService
from ..deployment.errors import CommandDispatchFailed
from ..deployment.models import (
    PENDING, IN_PROGRESS, SUCCEEDED, FAILED, CANCELLED, TIMED_OUT
)

SSM_STATUS_MAP = {
    'Pending': PENDING,
    'Delayed': PENDING,
    'InProgress': IN_PROGRESS,
    'Cancelling': IN_PROGRESS,
    'Success': SUCCEEDED,
    'Failed': FAILED,
    'Undeliverable': FAILED,
    'Terminated': FAILED,
    'Cancelled': CANCELLED,
    'TimedOut': TIMED_OUT,
    'DeliveryTimedOut': TIMED_OUT,
    'ExecutionTimedOut': TIMED_OUT,
}

# SSM rejects delivery timeouts below 30 seconds
MIN_DELIVERY_TIMEOUT = 30


def map_ssm_status(ssm_status):
    """Translate an SSM invocation status into a command status (unknown -> in_progress)."""
    return SSM_STATUS_MAP.get(ssm_status, IN_PROGRESS)


class SSMCommandService(CommandService):
    """Sends command sets to EC2 instances through SSM Run Command."""

    def __init__(self, config, client=None):
        self.region = config.get('region', 'us-east-1')
        self.document_name = config.get('document_name', 'AWS-RunShellScript')
        self.comment = config.get('comment', 'fleetdeploy')
        self._client = client
        self._targets = {}

    def _get_client(self):
        if self._client is None:
            self._client = boto3.client('ssm', region_name=self.region)
        return self._client

    def send(self, targets, commands, timeout):
        try:
            response = self._get_client().send_command(
                InstanceIds=list(targets),
                DocumentName=self.document_name,
                Comment=self.comment,
                TimeoutSeconds=max(MIN_DELIVERY_TIMEOUT, int(timeout)),
                Parameters={
                    'commands': list(commands),
                    'executionTimeout': [str(int(timeout))],
                },
            )
        except (BotoCoreError, ClientError) as e:
            raise CommandDispatchFailed(f"SSM send_command failed: {e}", targets=targets)

        command_id = response['Command']['CommandId']
        self._targets[command_id] = list(targets)
        print(f"SSM command {command_id} sent to {len(targets)} instance(s)")
        return command_id

    def get_status(self, invocation_id):
        statuses = {t: {'status': PENDING, 'output': ''} for t in self._targets.get(invocation_id, [])}

        paginator = self._get_client().get_paginator('list_command_invocations')
        for page in paginator.paginate(CommandId=invocation_id, Details=True):
            for invocation in page.get('CommandInvocations', []):
                plugins = invocation.get('CommandPlugins') or [{}]
                statuses[invocation['InstanceId']] = {
                    'status': map_ssm_status(invocation.get('Status')),
                    'output': (plugins[0].get('Output') or '').strip(),
                }
        return statuses

    def cancel(self, invocation_id, targets):
        try:
            self._get_client().cancel_command(CommandId=invocation_id, InstanceIds=list(targets))
        except (BotoCoreError, ClientError) as e:
            raise CommandDispatchFailed(f"SSM cancel_command failed: {e}", targets=targets)
        print(f"SSM command {invocation_id} cancel requested on {len(targets)} instance(s)")
