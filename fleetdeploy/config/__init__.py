"""
Configuration validation package.

Validates deployment-config.yaml against the bundled JSON schema and the
cross-field governance rules.
"""

from .validation import validate_config, load_validated_config

__all__ = ['validate_config', 'load_validated_config']
