"""
PostgreSQL source adapter.

Uses psycopg (v3). Rows are streamed through named (server-side) cursors,
one connection per open cursor.
"""

import itertools
import logging
from typing import Iterable, Optional

import psycopg
from psycopg import sql
from psycopg.rows import dict_row
from psycopg.types.string import TextLoader
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import QueuePool

from .errors import DatabaseConnectionError, DiscoveryError, ReadError, UnitOpenError
from .models import ColumnInfo, DbType, DumpableUnit, Record, TableStructure, UnitKind
from .source import (
    SourceAdapter, UnitCursor, create_connection_pool, filter_excluded, release_connection
)

TABLES_QUERY = """
    SELECT c.oid, c.relname
    FROM pg_class c
    JOIN pg_namespace n ON n.oid = c.relnamespace
    WHERE n.nspname = current_schema()
      AND c.relkind IN ('r', 'p')
      AND NOT c.relispartition
    ORDER BY c.relname
"""

COLUMNS_QUERY = """
    SELECT a.attname,
           format_type(a.atttypid, a.atttypmod),
           a.attnotnull,
           pg_get_expr(d.adbin, d.adrelid),
           a.attidentity::text,
           a.attgenerated::text
    FROM pg_attribute a
    LEFT JOIN pg_attrdef d ON d.adrelid = a.attrelid AND d.adnum = a.attnum
    WHERE a.attrelid = %s
      AND a.attnum > 0
      AND NOT a.attisdropped
    ORDER BY a.attnum
"""

PRIMARY_KEY_QUERY = """
    SELECT a.attname
    FROM pg_index i
    JOIN pg_attribute a ON a.attrelid = i.indrelid AND a.attnum = ANY(i.indkey)
    WHERE i.indrelid = %s AND i.indisprimary
    ORDER BY array_position(i.indkey::int2[], a.attnum)
"""

SERIAL_TYPES = {
    'smallint': 'smallserial',
    'integer': 'serial',
    'bigint': 'bigserial',
}

IDENTITY_CLAUSES = {
    'a': 'GENERATED ALWAYS AS IDENTITY',
    'd': 'GENERATED BY DEFAULT AS IDENTITY',
}


class PostgresAdapter(SourceAdapter):
    """Reads tables of the connection's current schema."""

    db_type = DbType.POSTGRES
    CONNECT_TIMEOUT = 10

    def __init__(self, connection_string: str, max_connections: int = 1):
        self.connection_string = connection_string
        self.max_connections = max_connections
        self.pool: Optional[QueuePool] = None
        self._cursor_ids = itertools.count(1)

    def connect(self) -> None:
        """Open the first connection to validate credentials."""
        self.pool = create_connection_pool(self._new_connection, self.max_connections)
        try:
            conn = self.pool.connect()
        except (psycopg.Error, SQLAlchemyError) as e:
            logging.error(f"Failed to connect to database: {e}")
            raise DatabaseConnectionError(f"Failed to connect to PostgreSQL: {e}") from e
        info = conn.dbapi_connection.info
        release_connection(conn)
        logging.info(f"Connected to PostgreSQL database '{info.dbname}' on {info.host}")

    def _new_connection(self) -> psycopg.Connection:
        conn = psycopg.connect(self.connection_string, connect_timeout=self.CONNECT_TIMEOUT)
        conn.read_only = True
        # json/jsonb arrive as their text so JSON null stays apart from SQL NULL
        conn.adapters.register_loader("json", TextLoader)
        conn.adapters.register_loader("jsonb", TextLoader)
        return conn

    def list_units(self, exclude: Iterable[str] = ()) -> list[DumpableUnit]:
        """List ordinary and partitioned tables with their structure."""
        conn = self._lease(DiscoveryError)
        broken = False
        try:
            with conn.cursor() as cur:
                tables = dict((name, oid) for oid, name in cur.execute(TABLES_QUERY).fetchall())
                return [
                    DumpableUnit(
                        name=name,
                        kind=UnitKind.TABLE,
                        structure=self.get_table_structure(cur, tables[name]),
                    )
                    for name in filter_excluded(list(tables), exclude)
                ]
        except psycopg.Error as e:
            broken = True
            raise DiscoveryError(f"Failed to read PostgreSQL table metadata: {e}") from e
        finally:
            release_connection(conn, discard=broken)

    def get_table_structure(self, cur: psycopg.Cursor, table_oid: int) -> TableStructure:
        """Read columns and primary key of a table by oid."""
        columns = []
        for name, type_name, not_null, default, identity, generated in cur.execute(
            COLUMNS_QUERY, (table_oid,)
        ).fetchall():
            extra = ''
            if generated == 's':
                # The stored expression lives in pg_attrdef like a default
                extra, default = f"GENERATED ALWAYS AS ({default}) STORED", None
            elif identity in IDENTITY_CLAUSES:
                extra = IDENTITY_CLAUSES[identity]
            elif default and default.startswith('nextval(') and type_name in SERIAL_TYPES:
                # Sequences are not dumped, so owned sequences become serial columns
                type_name, default = SERIAL_TYPES[type_name], None
            columns.append(ColumnInfo(
                name=name,
                type=type_name,
                nullable='NO' if not_null else 'YES',
                key='',
                default=default,
                extra=extra,
                generated=generated == 's',
            ))
        primary_key = [row[0] for row in cur.execute(PRIMARY_KEY_QUERY, (table_oid,)).fetchall()]
        for col in columns:
            if col.name in primary_key:
                col.key = 'PRI'
        return TableStructure(columns=columns, primary_key=primary_key)

    def build_select_query(self, unit: DumpableUnit) -> sql.Composed:
        """Build a SELECT in primary key order."""
        structure: TableStructure = unit.structure or TableStructure()
        if structure.insert_columns:
            columns = sql.SQL(', ').join(sql.Identifier(c) for c in structure.insert_columns)
        else:
            columns = sql.SQL('*')
        query = sql.SQL("SELECT {} FROM {}").format(columns, sql.Identifier(unit.name))
        if structure.primary_key:
            query += sql.SQL(" ORDER BY {}").format(
                sql.SQL(', ').join(sql.Identifier(k) for k in structure.primary_key)
            )
        return query

    def open_unit_cursor(self, unit: DumpableUnit) -> UnitCursor:
        """Declare a server-side cursor inside a read-only transaction."""
        conn = self._lease(lambda message: UnitOpenError(unit.name, message))
        try:
            cursor = conn.cursor(name=f"dump_util_{next(self._cursor_ids)}", row_factory=dict_row)
            cursor.execute(self.build_select_query(unit))
        except psycopg.Error as e:
            release_connection(conn, discard=True)
            raise UnitOpenError(unit.name, str(e)) from e
        logging.debug(f"Opened cursor for table '{unit.name}'")
        return UnitCursor(unit, handle=cursor, connection=conn)

    def fetch_next_batch(self, cursor: UnitCursor, batch_size: int) -> Optional[list[Record]]:
        if cursor.exhausted:
            return None
        try:
            rows = cursor.handle.fetchmany(batch_size)
        except psycopg.Error as e:
            raise ReadError(cursor.unit.name, str(e)) from e
        if not rows:
            cursor.exhausted = True
            return None
        return rows

    def close_unit_cursor(self, cursor: UnitCursor) -> None:
        if cursor.closed:
            return
        cursor.closed = True
        broken = False
        try:
            cursor.handle.close()
        except psycopg.Error as e:
            logging.debug(f"Error closing cursor for '{cursor.unit.name}': {e}")
            broken = True
        release_connection(cursor.connection, discard=broken or cursor.connection.dbapi_connection.closed)

    def close(self) -> None:
        """Close all connections. Safe to call more than once."""
        if self.pool is not None:
            self.pool.dispose()
            self.pool = None
            logging.debug("Database connections closed")

    def _lease(self, error_factory):
        if self.pool is None:
            raise error_factory("adapter is not connected")
        try:
            return self.pool.connect()
        except (psycopg.Error, SQLAlchemyError) as e:
            raise error_factory(str(e)) from e
