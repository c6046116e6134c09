#!/usr/bin/env python3
"""
Deployment config validation.
Validates the merged configuration against the bundled JSON schema plus a
few cross-field rules the schema cannot express.
"""

import json
from pathlib import Path

import jsonschema

from ..deployment.errors import ConfigError
from ..deployment.utils import PROBE_GRACE, get_budget, load_config, polling_window

SCHEMA_FILE = Path(__file__).parent.parent / 'schemas' / 'deployment-config-schema.json'


def load_schema():
    with open(SCHEMA_FILE, 'r') as f:
        return json.load(f)


def _format_error(error):
    error_path = ' -> '.join(str(p) for p in error.path) if error.path else 'root'
    return f"Schema validation failed at '{error_path}': {error.message}"


def check_rules(config):
    """Cross-field rules. Returns list of errors."""
    errors = []
    deployment = config.get('deployment', {})

    # RULE 1: Backend sections must exist for the selected backends
    if deployment.get('storage_backend') == 's3' and 's3' not in config:
        errors.append("storage_backend 's3' requires an 's3' section")
    if deployment.get('command_backend') == 'ssh' and 'ssh_env_vars' not in config.get('ssh', {}):
        errors.append("command_backend 'ssh' requires ssh.ssh_env_vars")

    # RULE 2: Every group needs a membership source for the selected registry
    fleet_backend = deployment.get('fleet_backend', 'static')
    for name, group in config.get('groups', {}).items():
        registry = group.get('registry', {})
        if fleet_backend == 'autoscaling' and 'asg_name' not in registry:
            errors.append(f"Group '{name}': fleet_backend 'autoscaling' requires registry.asg_name")
        if fleet_backend == 'static' and not ('targets' in registry or 'targets_file' in registry):
            errors.append(f"Group '{name}': fleet_backend 'static' requires registry.targets or registry.targets_file")

        # RULE 3: Snapshots must not live inside the directory they snapshot
        live_dir = group.get('live_dir', '').rstrip('/')
        backup_dir = group.get('backup_dir', '').rstrip('/')
        if live_dir and backup_dir and (backup_dir == live_dir or backup_dir.startswith(live_dir + '/')):
            errors.append(f"Group '{name}': backup_dir must be outside live_dir")

        # RULE 4: Polling must outlast the command it waits on
        for operation in ('deploy', 'backup', 'restore', 'health'):
            budget = get_budget(group.get(operation), operation)
            timeout = budget['timeout'] + (PROBE_GRACE if operation == 'health' else 0)
            window = polling_window(budget)
            if window < timeout:
                errors.append(
                    f"Group '{name}': {operation} polling window ({window}s) is shorter than its timeout ({timeout}s)"
                )

    return errors


def validate_config(config):
    """
    Validate a loaded config dict.
    Returns (is_valid, errors_list)
    """
    if not config:
        return False, ["Configuration is empty"]

    validator = jsonschema.Draft7Validator(load_schema())
    schema_errors = sorted(validator.iter_errors(config), key=lambda e: [str(p) for p in e.path])
    if schema_errors:
        return False, [_format_error(e) for e in schema_errors]

    errors = check_rules(config)
    return len(errors) == 0, errors


def load_validated_config(config_path=None):
    """Load config (with local overrides) and raise ConfigError if it is invalid."""
    config = load_config(config_path)
    is_valid, errors = validate_config(config)
    if not is_valid:
        raise ConfigError("Invalid deployment configuration:\n" + '\n'.join(f"  - {e}" for e in errors))
    return config
