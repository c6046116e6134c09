#!/usr/bin/env python3
"""
Command service factory and package exports.
"""

import sys

from .base import CommandService, ThreadedCommandService
from .local import LocalCommandService
from .ssh import SSHCommandService
from .ssm import SSMCommandService


def get_command_service(config):
    """
    Factory function to create the configured command service.

    Args:
        config: Deployment configuration dict

    Returns:
        LocalCommandService, SSHCommandService or SSMCommandService instance
    """
    backend = config['deployment'].get('command_backend', 'local')

    if backend == 'local':
        return LocalCommandService(config.get('local', {}))
    elif backend == 'ssh':
        return SSHCommandService(config.get('ssh', {}))
    elif backend == 'ssm':
        return SSMCommandService(config.get('ssm', {}))
    else:
        print(f"ERROR: Unknown command backend: {backend}")
        sys.exit(1)


# Package exports
__all__ = [
    'CommandService', 'ThreadedCommandService', 'LocalCommandService',
    'SSHCommandService', 'SSMCommandService', 'get_command_service'
]
