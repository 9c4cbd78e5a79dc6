"""
dump_util
=========
A multi-database backup engine that writes one portable dump file per run:
- PostgreSQL and MySQL tables as SQL statements
- MongoDB collections as Extended JSON lines
- Batched, memory-bounded reads
- Concurrent workers with per-table failure isolation
- Streaming gzip compression
"""

from .batch_reader import BatchReader
from .config import ConfigLoader
from .dumper import DatabaseDumper, dump_database
from .errors import (
    ConfigurationError,
    DatabaseConnectionError,
    DiscoveryError,
    DumpError,
    FragmentOrderError,
    ReadError,
    SerializationError,
    UnitCancelledError,
    UnitError,
    UnitOpenError,
    WriteError,
)
from .main import main
from .models import (
    BackupOptions,
    Batch,
    CollectionStructure,
    ColumnInfo,
    DbType,
    DumpableUnit,
    DumpResult,
    RunState,
    SerializedFragment,
    TableStructure,
    UnitKind,
    UnitOutcome,
    UnitStatus,
)
from .pool import WorkerPool, dump_unit
from .serializer import DocumentSerializer, MySQLDialect, PostgresDialect, SQLSerializer, create_serializer
from .source import SourceAdapter, UnitCursor, create_adapter
from .utils import setup_logging
from .version import __version__
from .writer import OutputWriter

__all__ = [
    # Main entry points
    "main",
    "dump_database",
    # Core classes
    "BatchReader",
    "ConfigLoader",
    "DatabaseDumper",
    "DocumentSerializer",
    "MySQLDialect",
    "OutputWriter",
    "PostgresDialect",
    "SQLSerializer",
    "SourceAdapter",
    "UnitCursor",
    "WorkerPool",
    "create_adapter",
    "create_serializer",
    "dump_unit",
    # Models
    "BackupOptions",
    "Batch",
    "CollectionStructure",
    "ColumnInfo",
    "DbType",
    "DumpableUnit",
    "DumpResult",
    "RunState",
    "SerializedFragment",
    "TableStructure",
    "UnitKind",
    "UnitOutcome",
    "UnitStatus",
    # Errors
    "ConfigurationError",
    "DatabaseConnectionError",
    "DiscoveryError",
    "DumpError",
    "FragmentOrderError",
    "ReadError",
    "SerializationError",
    "UnitCancelledError",
    "UnitError",
    "UnitOpenError",
    "WriteError",
    # Utilities
    "setup_logging",
    "__version__",
]
