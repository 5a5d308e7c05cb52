"""Main CLI entry point for statecraft."""

import argparse
import sys
from typing import Optional

from .commands import run_playbook


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the statecraft CLI."""
    parser = argparse.ArgumentParser(
        prog='statecraft',
        description='Declarative host state automation'
    )

    subparsers = parser.add_subparsers(dest='command', help='Commands')

    run_parser = subparsers.add_parser('run', help='Run a playbook')
    run_parser.add_argument(
        'playbook',
        type=str,
        help='Path to playbook YAML file'
    )
    run_parser.add_argument(
        '--var',
        action='append',
        metavar='KEY=VALUE',
        help='Run variables (can be specified multiple times)'
    )
    run_parser.add_argument(
        '--vars-file',
        type=str,
        help='Path to JSON or YAML file containing run variables'
    )
    run_parser.add_argument(
        '--forks',
        type=int,
        default=5,
        help='Maximum targets processed concurrently per task'
    )
    run_parser.add_argument(
        '--check',
        action='store_true',
        help='Report changes without applying them'
    )
    run_parser.add_argument(
        '--dry-run',
        action='store_true',
        help='Validate without execution'
    )
    run_parser.add_argument(
        '--debug',
        action='store_true',
        help='Enable debug logging'
    )
    run_parser.add_argument(
        '--quiet',
        action='store_true',
        help='Suppress non-error output'
    )
    run_parser.add_argument(
        '--log-level',
        choices=['debug', 'info', 'warn', 'error'],
        default='info',
        help='Set log level'
    )

    return parser


def main(args: Optional[list] = None) -> int:
    """Main entry point for the CLI."""
    parser = create_parser()
    parsed_args = parser.parse_args(args)

    if parsed_args.command == 'run':
        return run_playbook(parsed_args)

    parser.print_help()
    return 1


if __name__ == '__main__':
    sys.exit(main())
