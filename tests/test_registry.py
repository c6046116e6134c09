"""Tests for fleet registries and the resolver."""

from unittest.mock import MagicMock

import pytest
import yaml

from fleetdeploy.deployment.errors import ConfigError
from fleetdeploy.deployment.resolver import FleetResolver
from fleetdeploy.registry import AutoScalingRegistry, StaticRegistry, get_fleet_registry
from fleetdeploy.registry.autoscaling import instance_state


# ---------------------------------------------------------------------------
# Static registry
# ---------------------------------------------------------------------------


class TestStaticRegistry:

    def test_inline_targets(self, config):
        targets = StaticRegistry(config).list_targets('web')
        assert targets == [
            {'id': 'web-2', 'state': 'healthy'},
            {'id': 'web-1', 'state': 'healthy'},
            {'id': 'web-3', 'state': 'not-ready'},
        ]

    def test_targets_file_reread_each_call(self, config, tmp_path):
        targets_file = tmp_path / 'targets.yaml'
        targets_file.write_text(yaml.safe_dump(['a']))
        config['groups']['web']['registry'] = {'targets_file': str(targets_file)}
        resolver = FleetResolver(StaticRegistry(config))

        assert resolver.resolve('web') == ['a']
        targets_file.write_text(yaml.safe_dump(['a', {'id': 'b', 'state': 'healthy'}]))
        assert resolver.resolve('web') == ['a', 'b']

    def test_missing_targets_file(self, config, tmp_path):
        config['groups']['web']['registry'] = {'targets_file': str(tmp_path / 'nope.yaml')}
        with pytest.raises(ConfigError):
            StaticRegistry(config).list_targets('web')

    def test_unknown_group(self, config):
        with pytest.raises(ConfigError, match="Unknown target group 'nope'"):
            StaticRegistry(config).list_targets('nope')


# ---------------------------------------------------------------------------
# Resolver
# ---------------------------------------------------------------------------


class TestResolver:

    def test_healthy_sorted_unique(self, config):
        config['groups']['web']['registry']['targets'].append('web-1')
        assert FleetResolver(StaticRegistry(config)).resolve('web') == ['web-1', 'web-2']

    def test_empty_group(self, config):
        assert FleetResolver(StaticRegistry(config)).resolve('empty') == []


# ---------------------------------------------------------------------------
# Auto Scaling registry
# ---------------------------------------------------------------------------


class TestAutoScalingRegistry:

    def test_instance_state(self):
        assert instance_state({'LifecycleState': 'InService', 'HealthStatus': 'Healthy'}) == 'healthy'
        assert instance_state({'LifecycleState': 'Pending', 'HealthStatus': 'Healthy'}) == 'not-ready'
        assert instance_state({'LifecycleState': 'InService', 'HealthStatus': 'Unhealthy'}) == 'not-ready'

    def test_lists_group_members(self, config):
        config['groups']['web']['registry'] = {'asg_name': 'web-asg'}
        client = MagicMock()
        client.describe_auto_scaling_groups.return_value = {
            'AutoScalingGroups': [{
                'Instances': [
                    {'InstanceId': 'i-b', 'LifecycleState': 'InService', 'HealthStatus': 'Healthy'},
                    {'InstanceId': 'i-a', 'LifecycleState': 'InService', 'HealthStatus': 'Healthy'},
                    {'InstanceId': 'i-c', 'LifecycleState': 'Terminating', 'HealthStatus': 'Healthy'},
                ]
            }]
        }
        registry = AutoScalingRegistry(config, client=client)

        assert FleetResolver(registry).resolve('web') == ['i-a', 'i-b']
        client.describe_auto_scaling_groups.assert_called_once_with(AutoScalingGroupNames=['web-asg'])

    def test_requires_asg_name(self, config):
        registry = AutoScalingRegistry(config, client=MagicMock())
        with pytest.raises(ConfigError):
            registry.list_targets('web')


class TestRegistryFactory:

    def test_static(self, config):
        assert isinstance(get_fleet_registry(config), StaticRegistry)

    def test_autoscaling(self, config):
        config['deployment']['fleet_backend'] = 'autoscaling'
        assert isinstance(get_fleet_registry(config), AutoScalingRegistry)

    def test_unknown(self, config):
        config['deployment']['fleet_backend'] = 'consul'
        with pytest.raises(SystemExit):
            get_fleet_registry(config)
