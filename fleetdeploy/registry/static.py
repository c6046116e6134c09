#!/usr/bin/env python3
"""
Static fleet registry (mock/development mode).

Members come from the group's registry section, either inline or from a
YAML file that is re-read on every call so edits show up between runs.
"""

from pathlib import Path

from .base import FleetRegistry
from ..deployment.errors import ConfigError
from ..deployment.models import HEALTHY
from ..deployment.utils import load_yaml, get_group_config


class StaticRegistry(FleetRegistry):

    def __init__(self, config):
        self.config = config

    def _normalize(self, entry):
        if isinstance(entry, str):
            return {'id': entry, 'state': HEALTHY}
        return {'id': str(entry['id']), 'state': entry.get('state', HEALTHY)}

    def list_targets(self, group):
        registry = get_group_config(self.config, group).get('registry', {})

        if 'targets_file' in registry:
            targets_file = Path(registry['targets_file'])
            if not targets_file.exists():
                raise ConfigError(f"Targets file not found for group '{group}': {targets_file}")
            entries = load_yaml(targets_file) or []
        else:
            entries = registry.get('targets', [])

        return [self._normalize(entry) for entry in entries]
