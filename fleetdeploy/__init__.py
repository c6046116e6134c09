"""
fleetdeploy - ships versioned build artifacts to service fleets, verifies the
rollout and reverts automatically on failure.
"""

__version__ = '0.1.0'
