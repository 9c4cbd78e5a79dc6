"""
Utility functions for the dumper command line.
"""

import logging
import sys
from pathlib import Path
from typing import Any, Iterable

from .models import BackupOptions, DumpableUnit, TableStructure


def setup_logging(log_settings: dict[str, Any]) -> None:
    """Setup logging configuration."""
    log_level = getattr(logging, log_settings.get('level', 'INFO').upper())
    log_file = log_settings.get('file')

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(levelname)s - %(message)s',
        handlers=handlers
    )


def parse_exclude_list(value: str | Iterable[str] | None) -> frozenset[str]:
    """Turn a comma-separated string or a list into a set of names.

    Entries are trimmed and blank entries dropped.
    """
    if not value:
        return frozenset()
    items = value.split(',') if isinstance(value, str) else value
    return frozenset(str(item).strip() for item in items if str(item).strip())


def resolve_output_path(output_path: str, compress: bool) -> str:
    """Append .gz to the output path when compressing."""
    if compress and not output_path.endswith('.gz'):
        return output_path + '.gz'
    return output_path


def format_options_display(options: BackupOptions) -> list[str]:
    """Format options for display in dry-run mode."""
    parts = [
        f"batch_size={options.batch_size}",
        f"workers={options.max_workers}",
    ]
    if options.compress:
        parts.append("compress")
    if options.exclude:
        parts.append(f"exclude={','.join(sorted(options.exclude))}")
    return parts


def print_dry_run_info(units: list[DumpableUnit], options: BackupOptions) -> None:
    """Log what would be dumped in dry-run mode."""
    logging.info(f"Would dump {len(units)} unit(s) ({', '.join(format_options_display(options))})")
    for unit in units:
        if isinstance(unit.structure, TableStructure):
            logging.info(f"  - {unit.name} ({len(unit.structure.columns)} columns)")
        else:
            logging.info(f"  - {unit.name} ({unit.kind.value})")
