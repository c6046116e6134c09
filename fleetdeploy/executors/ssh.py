#!/usr/bin/env python3
"""
SSH command service.
Provides simple wrappers around sshpass + ssh, fanned out per target.
"""

import os

from .base import ThreadedCommandService


class SSHCommandService(ThreadedCommandService):
    """SSH command service using sshpass. Target ids are host names unless mapped in ssh.hosts."""

    def __init__(self, ssh_config):
        super().__init__(max_workers=ssh_config.get('max_workers', 10))
        self.ssh_config = ssh_config
        self.ssh_port = ssh_config.get('ssh_port', 22)
        self.hosts = ssh_config.get('hosts', {})

    def _get_credentials(self):
        """Returns (username, password, username_env_name, password_env_name)."""
        ssh_vars = self.ssh_config.get('ssh_env_vars', {})
        username_env = ssh_vars.get('username')
        password_env = ssh_vars.get('password')

        if not username_env or not password_env:
            raise ValueError(
                "Missing ssh_env_vars in ssh config. "
                "Add to deployment-config.yaml: ssh_env_vars: {username: 'ENV_VAR', password: 'ENV_VAR'}"
            )

        username = os.environ.get(username_env)
        password = os.environ.get(password_env)

        return username, password, username_env, password_env

    def check_transport(self, targets):
        ssh_user, ssh_password, username_env, password_env = self._get_credentials()
        if not ssh_user or not ssh_password:
            raise ValueError(f"SSH credentials not found: {username_env} and {password_env} required")

    def build_ssh_cmd(self, target, remote_command):
        """Build sshpass + ssh command list."""
        ssh_host = self.hosts.get(target, target)
        ssh_user, _, username_env, _ = self._get_credentials()

        if not ssh_user:
            raise ValueError(f"SSH user not found: {username_env} required")

        return [
            'sshpass', '-e',
            'ssh',
            '-o', 'StrictHostKeyChecking=no',
            '-o', 'UserKnownHostsFile=/dev/null',
            '-o', 'BatchMode=no',
            '-tt',
            '-p', str(self.ssh_port),
            f'{ssh_user}@{ssh_host}',
            remote_command
        ]

    def command_for(self, target, script):
        """
        Command set on one host via SSH.
        Cancelling kills the local ssh client; -tt gives the remote shell a terminal so
        it is hung up with the session instead of running on.
        """
        _, ssh_password, _, _ = self._get_credentials()
        env = os.environ.copy()
        env['SSHPASS'] = ssh_password or ''
        return self.build_ssh_cmd(target, script), env, None
