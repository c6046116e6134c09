#!/usr/bin/env python3
"""
EC2 Auto Scaling fleet registry.

A target group maps to one Auto Scaling group (groups.<name>.registry.asg_name);
members are its instance ids.
"""

import boto3

from .base import FleetRegistry
from ..deployment.errors import ConfigError
from ..deployment.models import HEALTHY, NOT_READY
from ..deployment.utils import get_group_config


def instance_state(instance):
    """Only in-service instances that pass health checks are eligible."""
    if instance.get('LifecycleState') == 'InService' and instance.get('HealthStatus') == 'Healthy':
        return HEALTHY
    return NOT_READY


class AutoScalingRegistry(FleetRegistry):

    def __init__(self, config, client=None):
        self.config = config
        self.region = config.get('aws', {}).get('region', 'us-east-1')
        self._client = client

    def _get_client(self):
        if self._client is None:
            self._client = boto3.client('autoscaling', region_name=self.region)
        return self._client

    def list_targets(self, group):
        asg_name = get_group_config(self.config, group).get('registry', {}).get('asg_name')
        if not asg_name:
            raise ConfigError(f"Group '{group}' has no registry.asg_name configured")

        response = self._get_client().describe_auto_scaling_groups(AutoScalingGroupNames=[asg_name])
        targets = []
        for asg in response.get('AutoScalingGroups', []):
            for instance in asg.get('Instances', []):
                targets.append({'id': instance['InstanceId'], 'state': instance_state(instance)})
        return targets
