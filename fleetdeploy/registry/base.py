#!/usr/bin/env python3
"""
Base fleet registry interface.
"""


class FleetRegistry:
    """Reports which members of a target group are currently alive."""

    def list_targets(self, group):
        """Return [{'id': ..., 'state': 'healthy' | 'not-ready'}] for every member."""
        raise NotImplementedError("Subclasses must implement list_targets()")

    def list_healthy(self, group):
        """Return ids of members in the healthy state."""
        return [t['id'] for t in self.list_targets(group) if t.get('state') == 'healthy']
