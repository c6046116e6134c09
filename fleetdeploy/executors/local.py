#!/usr/bin/env python3
"""
Local command service (mock mode).

Each target is simulated by a workspace directory on this machine; commands
run there through bash with TARGET_ID exported.
"""

import os
from pathlib import Path

from .base import ThreadedCommandService


class LocalCommandService(ThreadedCommandService):
    """Runs command sets with subprocess, one workspace directory per target."""

    def __init__(self, config=None):
        config = config or {}
        super().__init__(max_workers=config.get('max_workers', 10))
        self.workspace_root = Path(config.get('workspace_root', './local-fleet'))

    def workspace_for(self, target):
        workspace = self.workspace_root / target
        workspace.mkdir(parents=True, exist_ok=True)
        return workspace

    def command_for(self, target, script):
        env = os.environ.copy()
        env['TARGET_ID'] = target
        return ['bash', '-c', script], env, str(self.workspace_for(target))
