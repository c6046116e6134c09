#!/usr/bin/env python3
"""
Fleet Resolver - asks the registry for healthy members of a target group.
"""


class FleetResolver:
    """Membership is looked up on every call; targets are replaced out-of-band."""

    def __init__(self, registry):
        self.registry = registry

    def resolve(self, group):
        """
        Return sorted, de-duplicated ids of healthy targets.

        An empty list is a valid answer: there is nothing to deploy to.
        """
        targets = sorted(set(self.registry.list_healthy(group)))
        print(f"Resolved {len(targets)} healthy target(s) in '{group}'"
              + (f": {', '.join(targets)}" if targets else ""))
        return targets
