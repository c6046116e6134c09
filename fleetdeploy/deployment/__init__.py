"""
Deployment and orchestration package.

This package contains the components of a fleet deployment: artifact
publishing, fleet resolution, remote commands, backup/rollback, health
verification, run bookkeeping and the orchestrating state machine.
"""

__all__ = [
    'commands', 'errors', 'health', 'models', 'notify', 'orchestrator',
    'publisher', 'resolver', 'rollback', 'runs', 'utils'
]
