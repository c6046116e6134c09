#!/usr/bin/env python3
"""
Deployment utilities - shared helper functions.
"""

import os
import shlex
from datetime import datetime
from pathlib import Path

import yaml

from .errors import ConfigError


TIMESTAMP_FORMAT = '%Y%m%d%H%M%S%f'


def load_yaml(file_path):
    with open(file_path, 'r') as f:
        return yaml.safe_load(f)


def save_yaml(data, output_path):
    """Write a YAML record, creating parent directories as needed."""
    Path(output_path).parent.mkdir(exist_ok=True, parents=True)
    with open(output_path, 'w') as f:
        yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)
    return Path(output_path)


def deep_merge(base, override):
    result = base.copy()

    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value

    return result


def default_config_path():
    env_path = os.environ.get('FLEETDEPLOY_CONFIG', '').strip()
    if env_path:
        return Path(env_path)
    return Path.cwd() / "config" / "deployment-config.yaml"


def load_config(config_path=None):
    """
    Load configuration with optional local overrides.
    - Default: config/deployment-config.yaml (production mode)
    - DEPLOYMENT_ENV=local: merges deployment-config.local.yaml from the same directory
    """
    base_path = Path(config_path) if config_path else default_config_path()
    if not base_path.exists():
        raise ConfigError(f"Configuration file not found: {base_path}")
    base_config = load_yaml(base_path) or {}

    env = os.environ.get('DEPLOYMENT_ENV', '').strip()
    if env == 'local':
        override_path = base_path.with_name(base_path.stem + ".local" + base_path.suffix)
        if override_path.exists():
            override_config = load_yaml(override_path) or {}
            return deep_merge(base_config, override_config)

    return base_config


def get_group_config(config, group):
    groups = config.get('groups', {})
    if group not in groups:
        known = ', '.join(sorted(groups)) or 'none'
        raise ConfigError(f"Unknown target group '{group}' (configured: {known})")
    return groups[group]


def render_commands(templates, **values):
    """
    Fill {placeholder} fields in a command set.
    Values are shell-quoted so paths and URLs survive word splitting.
    """
    quoted = {key: shlex.quote(str(value)) for key, value in values.items()}
    rendered = []
    for template in templates:
        try:
            rendered.append(template.format(**quoted))
        except KeyError as e:
            raise ConfigError(f"Unknown placeholder {e} in command: {template}")
    return rendered


def new_timestamp(now=None):
    return (now or datetime.now()).strftime(TIMESTAMP_FORMAT)


# Seconds added to a probe's curl --max-time for the command wrapped around it
PROBE_GRACE = 15

DEFAULT_BUDGETS = {
    'deploy': {'timeout': 600, 'poll_interval': 10, 'max_attempts': 61},
    'backup': {'timeout': 300, 'poll_interval': 5, 'max_attempts': 61},
    'restore': {'timeout': 300, 'poll_interval': 5, 'max_attempts': 61},
    'health': {'timeout': 30, 'poll_interval': 5, 'max_attempts': 12},
}


def get_budget(section, operation):
    """Timeout and polling budget for one operation, with defaults filled in."""
    section = section or {}
    return {key: section.get(key, default) for key, default in DEFAULT_BUDGETS[operation].items()}


def polling_window(budget):
    """Seconds between the first and the last poll."""
    return budget['poll_interval'] * (budget['max_attempts'] - 1)
