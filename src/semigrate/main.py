#!/usr/bin/env python3
"""
semigrate command line interface

Examples:
  semigrate --database postgresql://localhost/app
  semigrate --database sqlite:///app.db --directory db/migrations --dry-run
  semigrate --database postgresql://localhost/app --no-migrate --load seed.sql
  semigrate --config semigrate.yml --status
"""

import argparse
import logging
import sys
from typing import List, Optional

from colorama import Fore, Style, just_fix_windows_console
from dotenv import load_dotenv

from . import __version__
from .database.config import DEFAULT_DIRECTORY, MigrationConfig, load_yaml_options
from .database.orchestrator import Orchestrator
from .error_handling import LoggingManager, MigrationError

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='semigrate',
        description='Apply semantically versioned migrations to a database',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="Examples:" + __doc__.split("Examples:", 1)[1],
    )

    parser.add_argument(
        '--database',
        help='Specify database to migrate (defaults to SEMIGRATE_DATABASE or DATABASE_URL)'
    )
    parser.add_argument(
        '--directory',
        help=f'Specify where to locate the migrations (default: {DEFAULT_DIRECTORY})'
    )
    parser.add_argument(
        '-r', '--reset',
        action='store_true',
        default=None,
        help='Reset the migration information in the database'
    )
    parser.add_argument(
        '--migrate',
        action=argparse.BooleanOptionalAction,
        default=None,
        help='Apply the migration scripts (default: on)'
    )
    parser.add_argument(
        '-n', '--dry-run',
        action='store_true',
        default=None,
        help='Show the steps but do not commit changes to the database'
    )
    parser.add_argument(
        '-l', '--load',
        action='append',
        metavar='FILE',
        help='Load a file after the migration is completed (repeatable)'
    )
    parser.add_argument(
        '--colors',
        action=argparse.BooleanOptionalAction,
        default=None,
        help='Use colors in the output (default: on)'
    )
    parser.add_argument(
        '-q', '--quiet',
        action='store_true',
        default=None,
        help='Do not report progress'
    )
    parser.add_argument(
        '--config',
        metavar='FILE',
        help='Read options from a YAML file; command line flags take precedence'
    )
    parser.add_argument('--schema', help='Schema holding the bookkeeping table (default: semigrate)')
    parser.add_argument('--table', help='Bookkeeping table name (default: migrations)')
    parser.add_argument(
        '--status',
        action='store_true',
        help='Show current and pending versions without changing anything'
    )
    parser.add_argument(
        '--log-level',
        default='WARNING',
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
        help='Logging level (default: WARNING)'
    )
    parser.add_argument('--log-file', help='Also write logs to this file')
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')
    return parser


def load_config(args: argparse.Namespace) -> MigrationConfig:
    """Environment, then YAML file, then command line flags"""
    config = MigrationConfig.from_env(dotenv=False)
    if args.config:
        config = config.merged(load_yaml_options(args.config))
    return config.merged({
        'database': args.database,
        'directory': args.directory,
        'reset': args.reset,
        'migrate': args.migrate,
        'dry_run': args.dry_run,
        'load': args.load,
        'colors': args.colors,
        'quiet': args.quiet,
        'schema': args.schema,
        'table': args.table,
    })


def print_status(status: dict):
    print(f"Current version: {status['current_version'] or '-'}")
    print(f"Target version:  {status['target_version'] or '-'}")
    if status['pending_migrations']:
        print("Pending migrations:")
        for migration in status['pending_migrations']:
            print(f"   {migration['version']:>8}: {migration['title']}")
    else:
        print("No pending migrations")


def fatal(message: str, colors: bool = True) -> int:
    text = f"{Style.BRIGHT}{Fore.RED}{message}{Style.RESET_ALL}" if colors else message
    print("\n" + text, file=sys.stderr)
    return 1


def main(argv: Optional[List[str]] = None) -> int:
    """
    Entry point of the ``semigrate`` command

    Returns:
        Process exit code: 0 on success, 1 on any failure
    """
    load_dotenv()
    just_fix_windows_console()
    args = build_parser().parse_args(argv)
    LoggingManager.setup_logging(log_level=args.log_level, log_file=args.log_file)

    try:
        config = load_config(args)
    except (OSError, ValueError) as e:
        return fatal(f"Invalid configuration: {e}", args.colors is not False)

    if not config.database:
        return fatal("No database given: use --database or set SEMIGRATE_DATABASE", config.colors)

    try:
        orchestrator = Orchestrator(config)
        if args.status:
            print_status(orchestrator.status())
        else:
            orchestrator.run()
    except (MigrationError, ValueError) as e:
        logger.debug("Migration run failed", exc_info=True)
        return fatal(str(e), config.colors)
    return 0


if __name__ == '__main__':
    sys.exit(main())
