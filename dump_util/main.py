#!/usr/bin/env python3
"""
dump_util - CLI Entry Point
===========================
Create a single-file backup of a PostgreSQL, MySQL or MongoDB database with
support for:
- Batched, memory-bounded reads
- Concurrent workers
- Table/collection exclusion
- Gzip compression
"""

import argparse
import logging
import signal
import sys
import threading
from typing import Any, Optional

import yaml

from .config import ConfigLoader
from .dumper import dump_database
from .errors import ConfigurationError, DumpError
from .models import BackupOptions, DbType
from .source import create_adapter
from .utils import parse_exclude_list, print_dry_run_info, resolve_output_path, setup_logging
from .version import __version__

DEFAULT_OUTPUT = 'backup.sql'
DEFAULT_BATCH_SIZE = 5000
DEFAULT_WORKERS = 5


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='dumper',
        description='Create database backups for PostgreSQL, MySQL, or MongoDB'
    )
    parser.add_argument(
        '-t', '--type',
        help='Database type (postgres, mysql, mongodb)'
    )
    parser.add_argument(
        '-c', '--conn',
        help='Database connection string'
    )
    parser.add_argument(
        '-o', '--output',
        help=f'Output file path for the dump (default: {DEFAULT_OUTPUT})'
    )
    parser.add_argument(
        '-z', '--compress',
        action='store_true',
        default=None,
        help='Enable gzip compression for the output file'
    )
    parser.add_argument(
        '-b', '--batch-size',
        type=int,
        help=f'Number of rows to process per batch (default: {DEFAULT_BATCH_SIZE}, min: 1)'
    )
    parser.add_argument(
        '-w', '--workers',
        type=int,
        help=f'Maximum number of concurrent workers (default: {DEFAULT_WORKERS}, min: 1, max: 50)'
    )
    parser.add_argument(
        '--exclude',
        help='Comma-separated list of tables/collections to exclude'
    )
    parser.add_argument(
        '--config',
        help='Path to a YAML configuration file; flags override its values'
    )
    parser.add_argument(
        '-v', '--verbose',
        action='store_true',
        help='Enable verbose output'
    )
    parser.add_argument(
        '--dry-run',
        action='store_true',
        help='List what would be dumped without writing anything'
    )
    parser.add_argument(
        '--version',
        action='version',
        version=f'%(prog)s {__version__}'
    )
    return parser


def resolve_settings(args: argparse.Namespace, config: Optional[ConfigLoader]) -> dict[str, Any]:
    """Merge command line flags over config file values and defaults."""
    database = config.get_database_settings() if config else {}
    output = config.get_output_settings() if config else {}
    options = config.get_options() if config else {}

    def pick(flag, section, key, default=None):
        return flag if flag is not None else section.get(key, default)

    db_type = pick(args.type, database, 'type')
    connection = pick(args.conn, database, 'connection')
    if not db_type:
        raise ConfigurationError("database type is required (--type)")
    if not connection:
        raise ConfigurationError("connection string is required (--conn)")

    compress = bool(pick(args.compress, output, 'compress', False))
    output_path = pick(args.output, output, 'path', DEFAULT_OUTPUT)
    if not output_path:
        raise ConfigurationError("output file path cannot be empty")

    return {
        'db_type': DbType.parse(db_type),
        'connection': connection,
        'output_path': resolve_output_path(output_path, compress),
        'options': BackupOptions(
            compress=compress,
            batch_size=pick(args.batch_size, options, 'batch_size', DEFAULT_BATCH_SIZE),
            max_workers=pick(args.workers, options, 'workers', DEFAULT_WORKERS),
            exclude=parse_exclude_list(pick(args.exclude, options, 'exclude')),
        ),
    }


def run_dry_run(settings: dict[str, Any]) -> None:
    """Connect, discover units and log them without dumping."""
    logging.info("DRY RUN MODE - No data will be dumped")
    options: BackupOptions = settings['options']
    with create_adapter(settings['db_type'], settings['connection'], max_connections=1) as adapter:
        units = adapter.list_units(options.exclude)
    print_dry_run_info(units, options)


def install_cancel_handler() -> threading.Event:
    """Turn SIGINT/SIGTERM into a cancellation request for the running dump."""
    cancel_event = threading.Event()

    def signal_handler(sig, frame):
        if cancel_event.is_set():
            raise KeyboardInterrupt
        logging.warning("Interrupted, stopping the dump (press again to abort)")
        cancel_event.set()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)
    return cancel_event


def main(argv: Optional[list[str]] = None):
    """Main entry point."""
    args = build_parser().parse_args(argv)

    # Load configuration
    config = None
    if args.config:
        try:
            config = ConfigLoader(args.config)
        except FileNotFoundError:
            print(f"Error: Configuration file '{args.config}' not found")
            sys.exit(1)
        except (yaml.YAMLError, ValueError) as e:
            print(f"Error: Invalid configuration file: {e}")
            sys.exit(1)

    # Setup logging
    log_settings = dict(config.get_logging_settings()) if config else {}
    if args.verbose:
        log_settings['level'] = 'DEBUG'
    setup_logging(log_settings)

    try:
        settings = resolve_settings(args, config)
    except ConfigurationError as e:
        logging.error(f"Error: {e}")
        sys.exit(1)

    try:
        if args.dry_run:
            run_dry_run(settings)
            sys.exit(0)

        result = dump_database(
            settings['db_type'],
            settings['connection'],
            settings['output_path'],
            settings['options'],
            cancel_event=install_cancel_handler()
        )

        # Print summary
        logging.info("=" * 50)
        logging.info("DUMP COMPLETE")
        logging.info(f"Output: {settings['output_path']}")
        logging.info(f"Units: {result.units_processed}")
        logging.info(f"Total Rows: {result.rows_written}")
        logging.info(f"Bytes Written: {result.bytes_written}")

        if result.units_failed:
            logging.warning(f"Errors: {len(result.units_failed)}")
            for name in sorted(result.units_failed):
                logging.warning(f"  - {name}: {result.errors.get(name, '')}")
        if result.cancelled:
            logging.warning(f"Cancelled: {len(result.units_cancelled)} unit(s) not written")
        if not result.success:
            sys.exit(1)

    except DumpError as e:
        logging.error(f"Failed to dump database: {e}")
        sys.exit(1)


if __name__ == '__main__':
    main()
