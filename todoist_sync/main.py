#!/usr/bin/env python3
"""
todoist-sync - reconcile Obsidian checkbox tasks with Todoist.
"""

import argparse
import logging
import sys

from todoist_sync.core.config import load_config, get_default_config_path
from todoist_sync.commands import (
    SyncCommand,
    HealCommand,
    StatsCommand,
    ValidateCommand,
    BackupsCommand,
    TombstonesCommand,
    ResetCommand,
)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="todoist-sync",
        description="Reconcile task completion between an Obsidian vault and Todoist",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  todoist-sync sync                      # Run one reconciliation cycle
  todoist-sync sync --json               # Emit the change set as JSON
  todoist-sync heal --force              # Repair journal gaps now
  todoist-sync validate                  # Check the journal covers the vault
  todoist-sync tombstones cleanup --older-than 60
        """
    )

    default_config = get_default_config_path()
    parser.add_argument(
        '--config',
        help=f'Path to configuration file (default: {default_config})',
        default=None
    )
    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Verbose output'
    )

    subparsers = parser.add_subparsers(dest='command', help='Commands')

    sync_parser = subparsers.add_parser('sync', help='Run one sync cycle')
    sync_parser.add_argument(
        '--json',
        action='store_true',
        help='Print the change set as JSON'
    )

    heal_parser = subparsers.add_parser('heal', help='Bring every linked task into the journal')
    heal_parser.add_argument(
        '--force',
        action='store_true',
        help='Ignore the minimum interval between heals'
    )

    stats_parser = subparsers.add_parser('stats', help='Show journal statistics')
    stats_parser.add_argument(
        '--json',
        action='store_true',
        help='Print statistics as JSON'
    )

    subparsers.add_parser('validate', help='Check the journal against the vault')

    backups_parser = subparsers.add_parser('backups', help='Manage journal backups')
    backups_sub = backups_parser.add_subparsers(dest='action')
    backups_sub.add_parser('list', help='List backups')
    backups_sub.add_parser('create', help='Create a manual backup')
    restore_parser = backups_sub.add_parser('restore', help='Restore a backup')
    restore_parser.add_argument('path', help='Backup file to restore')

    tombstones_parser = subparsers.add_parser('tombstones', help='Manage tombstoned tasks')
    tombstones_sub = tombstones_parser.add_subparsers(dest='action')
    tombstones_sub.add_parser('list', help='List tombstones')
    cleanup_parser = tombstones_sub.add_parser('cleanup', help='Remove old tombstones')
    cleanup_parser.add_argument(
        '--older-than',
        type=float,
        default=90,
        metavar='DAYS',
        help='Age threshold in days (default: 90)'
    )
    tomb_restore = tombstones_sub.add_parser('restore', help='Forget a tombstone')
    tomb_restore.add_argument('task_id', help='Task ID to restore')

    reset_parser = subparsers.add_parser('reset', help='Back up and empty the journal')
    reset_parser.add_argument(
        '--yes',
        action='store_true',
        help='Confirm the reset'
    )

    return parser


def main(argv=None):
    """Main entry point for todoist-sync."""
    parser = build_parser()
    args = parser.parse_args(argv)

    # Configure logging if verbose mode is enabled
    if args.verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )

    if not args.command:
        parser.print_help()
        return 1

    config = load_config(args.config)

    if args.verbose:
        actual_config_path = args.config if args.config else get_default_config_path()
        print(f"Using config: {actual_config_path}")

    try:
        if args.command == 'sync':
            success = SyncCommand(config, verbose=args.verbose).run(as_json=args.json)

        elif args.command == 'heal':
            success = HealCommand(config, verbose=args.verbose).run(force=args.force)

        elif args.command == 'stats':
            success = StatsCommand(config, verbose=args.verbose).run(as_json=args.json)

        elif args.command == 'validate':
            success = ValidateCommand(config, verbose=args.verbose).run()

        elif args.command == 'backups':
            success = BackupsCommand(config, verbose=args.verbose).run(
                action=args.action or 'list',
                path=getattr(args, 'path', None)
            )

        elif args.command == 'tombstones':
            success = TombstonesCommand(config, verbose=args.verbose).run(
                action=args.action or 'list',
                older_than_days=getattr(args, 'older_than', 90),
                task_id=getattr(args, 'task_id', None)
            )

        elif args.command == 'reset':
            success = ResetCommand(config, verbose=args.verbose).run(confirmed=args.yes)

        else:
            print(f"Unknown command '{args.command}'.")
            return 1

        return 0 if success else 1

    except KeyboardInterrupt:
        print("\nOperation cancelled by user.")
        return 130
    except Exception as e:
        print(f"Error: {e}")
        if not args.verbose:
            print("Re-run with --verbose for more detail.")
        else:
            import traceback
            traceback.print_exc()
        return 1


if __name__ == '__main__':
    sys.exit(main())
