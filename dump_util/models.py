"""
Data models and enums for the database dump engine.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from .errors import ConfigurationError

MAX_WORKERS_LIMIT = 50

Record = dict[str, Any]


class DbType(Enum):
    """Supported source database families."""
    POSTGRES = "postgres"
    MYSQL = "mysql"
    MONGODB = "mongodb"

    @classmethod
    def parse(cls, value: "str | DbType") -> "DbType":
        """Parse a database type name, case-insensitively."""
        if isinstance(value, cls):
            return value
        name = str(value).strip().lower()
        if name == "postgresql":
            name = "postgres"
        try:
            return cls(name)
        except ValueError:
            valid = ", ".join(t.value for t in cls)
            raise ConfigurationError(
                f"Invalid database type: {value} (must be {valid})"
            ) from None

    @property
    def is_relational(self) -> bool:
        return self is not DbType.MONGODB


class UnitKind(Enum):
    """Kind of dumpable unit."""
    TABLE = "table"
    COLLECTION = "collection"


class UnitStatus(Enum):
    """Final status of a unit within a run."""
    DONE = "done"
    FAILED = "failed"
    CANCELLED = "cancelled"


class RunState(Enum):
    """Orchestrator states."""
    IDLE = "idle"
    CONNECTED = "connected"
    DISCOVERING = "discovering"
    DUMPING = "dumping"
    FINALIZING = "finalizing"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True)
class BackupOptions:
    """Options for one dump run. Validated on construction."""
    compress: bool = False
    batch_size: int = 5000
    max_workers: int = 5
    exclude: frozenset[str] = frozenset()

    def __post_init__(self):
        if isinstance(self.batch_size, bool) or not isinstance(self.batch_size, int) or self.batch_size < 1:
            raise ConfigurationError(f"batch-size must be at least 1, got {self.batch_size}")
        if (
            isinstance(self.max_workers, bool)
            or not isinstance(self.max_workers, int)
            or not 1 <= self.max_workers <= MAX_WORKERS_LIMIT
        ):
            raise ConfigurationError(
                f"workers must be between 1 and {MAX_WORKERS_LIMIT}, got {self.max_workers}"
            )
        if isinstance(self.exclude, str):
            raise ConfigurationError("exclude must be a collection of names, not a string")
        object.__setattr__(self, 'exclude', frozenset(self.exclude))


@dataclass
class ColumnInfo:
    """Database column metadata."""
    name: str
    type: str
    nullable: str
    key: str
    default: Any
    extra: str
    generated: bool = False


@dataclass
class TableStructure:
    """Structure of a relational table."""
    columns: list[ColumnInfo] = field(default_factory=list)
    primary_key: list[str] = field(default_factory=list)
    create_statement: Optional[str] = None

    @property
    def insert_columns(self) -> list[str]:
        """Columns that take a value on INSERT; generated columns are computed."""
        return [col.name for col in self.columns if not col.generated]

    def column_type(self, name: str) -> Optional[str]:
        for col in self.columns:
            if col.name == name:
                return col.type
        return None


@dataclass
class CollectionStructure:
    """Structure hints of a document collection."""
    indexes: list[dict[str, Any]] = field(default_factory=list)
    options: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class DumpableUnit:
    """A table or collection subject to dump."""
    name: str
    kind: UnitKind
    structure: Any = field(default=None, compare=False, hash=False)


@dataclass(frozen=True)
class Batch:
    """An ordered slice of a unit's records."""
    unit: DumpableUnit
    rows: list[Record]
    sequence_index: int

    def __len__(self) -> int:
        return len(self.rows)


@dataclass(frozen=True)
class SerializedFragment:
    """Serialized bytes of one batch."""
    unit_name: str
    sequence_index: int
    payload: bytes


@dataclass
class UnitOutcome:
    """Report a worker sends back after finishing with a unit."""
    unit_name: str
    status: UnitStatus
    rows: int = 0
    batches: int = 0
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.status is UnitStatus.DONE


@dataclass(frozen=True)
class DumpResult:
    """Aggregate result of a dump run."""
    units_processed: int = 0
    units_failed: frozenset[str] = frozenset()
    bytes_written: int = 0
    duration: float = 0.0
    rows_written: int = 0
    errors: dict[str, str] = field(default_factory=dict)
    units_cancelled: frozenset[str] = frozenset()
    cancelled: bool = False

    @property
    def success(self) -> bool:
        return not self.units_failed and not self.cancelled
