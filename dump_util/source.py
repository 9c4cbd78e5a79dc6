"""
Source adapter interface shared by all database backends.
"""

import logging
from typing import Any, Callable, Iterable, Optional

from sqlalchemy.pool import QueuePool

from .models import DbType, DumpableUnit, Record

POOL_TIMEOUT = 60


class UnitCursor:
    """An open read cursor over one unit.

    Holds whatever driver objects the adapter needs; adapters subclass it
    or fill in ``handle``/``connection``.
    """

    def __init__(self, unit: DumpableUnit, handle: Any = None, connection: Any = None):
        self.unit = unit
        self.handle = handle
        self.connection = connection
        self.closed = False
        self.exhausted = False


class SourceAdapter:
    """Capability set every backend implements.

    ``connect`` and ``close`` bracket a run; ``close`` is idempotent. Cursor
    methods are called from worker threads, one cursor per thread.
    """

    db_type: DbType

    def __enter__(self) -> "SourceAdapter":
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def connect(self) -> None:
        raise NotImplementedError

    def list_units(self, exclude: Iterable[str] = ()) -> list[DumpableUnit]:
        raise NotImplementedError

    def open_unit_cursor(self, unit: DumpableUnit) -> UnitCursor:
        raise NotImplementedError

    def fetch_next_batch(self, cursor: UnitCursor, batch_size: int) -> Optional[list[Record]]:
        """Return up to ``batch_size`` records, or None at end of unit."""
        raise NotImplementedError

    def close_unit_cursor(self, cursor: UnitCursor) -> None:
        raise NotImplementedError

    def close(self) -> None:
        raise NotImplementedError


def filter_excluded(names: Iterable[str], exclude: Iterable[str]) -> list[str]:
    """Drop names present in ``exclude``. Matching is exact and case-sensitive."""
    exclude = set(exclude)
    kept = []
    excluded_count = 0
    for name in names:
        if name in exclude:
            logging.debug(f"Unit '{name}' excluded")
            excluded_count += 1
            continue
        kept.append(name)
    if excluded_count:
        logging.info(f"Excluded {excluded_count} unit(s) from the dump")
    return kept


def create_connection_pool(creator: Callable[[], Any], max_connections: int) -> QueuePool:
    """Bounded pool of driver connections.

    At most ``max_connections`` connections exist at once; a caller waits up
    to ``POOL_TIMEOUT`` seconds while all of them are leased. Idle
    connections are reused most-recent first and rolled back when returned.
    """
    return QueuePool(
        creator,
        pool_size=max_connections,
        max_overflow=0,
        timeout=POOL_TIMEOUT,
        use_lifo=True,
        reset_on_return='rollback',
    )


def release_connection(conn, discard: bool = False) -> None:
    """Give a leased connection back. Broken connections are closed, not reused."""
    if discard:
        conn.invalidate()
    else:
        conn.close()


def create_adapter(
    db_type: DbType | str,
    connection_string: str,
    max_connections: int = 1
):
    """Return the source adapter for a database type.

    The set of backends is fixed; unknown types fail before any connection
    attempt.
    """
    db_type = DbType.parse(db_type)
    if not db_type.is_relational:
        from .mongo_source import MongoAdapter
        return MongoAdapter(connection_string, max_connections=max_connections)
    if db_type is DbType.MYSQL:
        from .mysql_source import MySQLAdapter
        return MySQLAdapter(connection_string, max_connections=max_connections)
    from .postgres_source import PostgresAdapter
    return PostgresAdapter(connection_string, max_connections=max_connections)
