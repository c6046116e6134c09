"""
Fleet registry package.

Registries answer "which members of this target group are healthy right
now". Nothing here caches membership between calls.
"""

import sys

from .base import FleetRegistry
from .static import StaticRegistry
from .autoscaling import AutoScalingRegistry


def get_fleet_registry(config):
    """Factory function to get the configured fleet registry."""
    backend = config['deployment'].get('fleet_backend', 'static')

    if backend == 'static':
        return StaticRegistry(config)
    elif backend == 'autoscaling':
        return AutoScalingRegistry(config)
    else:
        print(f"ERROR: Unknown fleet backend: {backend}")
        sys.exit(1)


__all__ = ['FleetRegistry', 'StaticRegistry', 'AutoScalingRegistry', 'get_fleet_registry']
