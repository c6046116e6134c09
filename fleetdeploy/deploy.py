#!/usr/bin/env python3
"""
Fleet Deployment CLI
Publishes build artifacts and rolls them out to target groups
"""

import argparse
import os
import sys
from pathlib import Path

from .config.validation import load_validated_config, validate_config
from .deployment.errors import DeploymentError
from .deployment.models import GateSignal, VERDICT_SUCCESS, VERDICT_NO_OP
from .deployment.orchestrator import build_orchestrator
from .deployment.runs import RunLedger
from .deployment.utils import get_group_config, load_config


def _print_phase(name):
    print(f"\n{'='*60}")
    print(name)
    print(f"{'='*60}")


def _trigger_from_args(args):
    return GateSignal(
        status=args.gate_status,
        run_ref=args.run_ref or os.environ.get('CI_PIPELINE_ID', os.environ.get('GITHUB_RUN_ID')),
        identity=args.identity or os.environ.get(
            'GITHUB_ACTOR', os.environ.get('GITLAB_USER_LOGIN', os.environ.get('USER', 'unknown'))
        ),
    )


def deploy_command(config, args):
    """Full run: gate -> resolve -> backup -> deploy -> verify (-> rollback)."""
    artifact = Path(args.artifact).read_bytes() if args.artifact else None
    orchestrator = build_orchestrator(config)
    try:
        run = orchestrator.deploy(args.group, artifact=artifact, version=args.version,
                                  trigger=_trigger_from_args(args))
    finally:
        orchestrator.executor.service.shutdown()
    print(f"Run {run.run_id} finished: {run.verdict}")
    return 0 if run.verdict in (VERDICT_SUCCESS, VERDICT_NO_OP) else 1


def publish_command(config, args):
    """Publish an artifact as both a new version and "current" without deploying it."""
    _print_phase(f"PUBLISH ({args.group.upper()})")
    get_group_config(config, args.group)
    orchestrator = build_orchestrator(config)
    version = orchestrator.publisher.publish(args.group, Path(args.artifact).read_bytes())
    print(f"✓ Published {args.group} version {version}")
    return 0


def fetch_current_command(config, args):
    orchestrator = build_orchestrator(config)
    data = orchestrator.publisher.fetch_current(args.group)
    Path(args.output).write_bytes(data)
    version = orchestrator.publisher.current_version(args.group)
    print(f"✓ Wrote current {args.group} artifact (version {version}) to {args.output}")
    return 0


def rollback_command(config, args):
    """Restore every healthy target in the group from its newest backup."""
    _print_phase(f"MANUAL ROLLBACK ({args.group.upper()})")
    orchestrator = build_orchestrator(config)
    try:
        outcomes = orchestrator.rollback(args.group)
    finally:
        orchestrator.executor.service.shutdown()
    print(f"\n=== ROLLBACK COMPLETE ({len(outcomes)} target(s)) ===")
    return 0


def history_command(config, args):
    ledger = RunLedger(config['deployment'].get('state_dir', './state'))
    records = ledger.history(args.group, limit=args.limit)
    active = ledger.active_run(args.group)
    if active:
        print(f"Active: {active}")
    if not records:
        print(f"No runs recorded for '{args.group}'")
        return 0
    for record in records:
        verdict = record.get('verdict') or f"({record.get('state')})"
        print(f"{record['started_at']}  {record['run_id']}  "
              f"v{record.get('artifact_version') or '-'}  {verdict}  "
              f"{len(record.get('targets', []))} target(s)")
    return 0


def prune_command(config, args):
    keep = args.keep or config['deployment'].get('backup_retention', 5)
    orchestrator = build_orchestrator(config)
    try:
        removed = orchestrator.prune_backups(args.group, keep)
    finally:
        orchestrator.executor.service.shutdown()
    print(f"✓ Pruned {removed} backup(s), kept newest {keep} per target")
    return 0


def validate_command(config_path):
    _print_phase("VALIDATING DEPLOYMENT CONFIGURATION")
    config = load_config(config_path)
    is_valid, errors = validate_config(config)
    if not is_valid:
        print("[FAILED] Configuration validation failed")
        for error in errors:
            print(f"  - {error}")
        return 1
    print("[OK] Configuration is valid")
    for name in sorted(config['groups']):
        print(f"  - group '{name}'")
    return 0


def unlock_command(config, args):
    ledger = RunLedger(config['deployment'].get('state_dir', './state'))
    holder = ledger.force_release(args.group)
    if holder:
        print(f"Released lock held by {holder} on '{args.group}'")
    else:
        print(f"'{args.group}' was not locked")
    return 0


COMMANDS = {
    'deploy': deploy_command,
    'publish': publish_command,
    'fetch-current': fetch_current_command,
    'rollback': rollback_command,
    'history': history_command,
    'prune-backups': prune_command,
    'unlock': unlock_command,
}


def build_parser():
    parser = argparse.ArgumentParser(
        description='Fleet Deployment Orchestrator',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # CI/CD deployment after a green build
  fleetdeploy deploy --group backend --artifact build.tar.gz --gate-status success

  # Redeploy an already published version
  fleetdeploy deploy --group frontend --version 20250101120000000000

  # Publish without deploying (bootstrap for new instances)
  fleetdeploy publish --group frontend --artifact build.tar.gz

  # Manual rollback and housekeeping
  fleetdeploy rollback --group backend
  fleetdeploy prune-backups --group backend --keep 3
  fleetdeploy history --group backend
        """
    )
    parser.add_argument('command', choices=list(COMMANDS) + ['validate'], help='Command to run')
    parser.add_argument('--config', help='Path to deployment-config.yaml')
    parser.add_argument('--group', help='Target group (e.g., frontend, backend)')
    parser.add_argument('--artifact', help='Build artifact file to publish/deploy')
    parser.add_argument('--version', help='Already published version id to deploy')
    parser.add_argument('--output', help='Output file for fetch-current')
    parser.add_argument('--gate-status', default='manual', choices=['success', 'failure', 'manual'],
                        help='Upstream build/test result (default: manual)')
    parser.add_argument('--run-ref', help='Upstream pipeline/run reference')
    parser.add_argument('--identity', help='Who triggered the deployment')
    parser.add_argument('--limit', type=int, default=20, help='Number of runs for history')
    parser.add_argument('--keep', type=int, help='Backups to keep per target for prune-backups')
    return parser


def main(argv=None):
    """Main entry point - parse command line and run the command."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command != 'validate' and not args.group:
        parser.error(f"{args.command} requires --group argument")
    if args.command == 'deploy' and bool(args.artifact) == bool(args.version):
        parser.error("deploy requires exactly one of --artifact or --version")
    if args.command == 'publish' and not args.artifact:
        parser.error("publish requires --artifact argument")
    if args.command == 'fetch-current' and not args.output:
        parser.error("fetch-current requires --output argument")

    if args.command == 'validate':
        try:
            sys.exit(validate_command(args.config))
        except DeploymentError as e:
            print(f"ERROR: {e}")
            sys.exit(1)

    try:
        config = load_validated_config(args.config)
        sys.exit(COMMANDS[args.command](config, args))
    except DeploymentError as e:
        print(f"ERROR: {e}")
        sys.exit(1)


if __name__ == '__main__':
    main()
